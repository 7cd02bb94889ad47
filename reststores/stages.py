"""
Pipeline Stages for reststores.

Each stage is an async function `(store, ctx) -> None` that reads and
writes the shared RequestContext. A stage fails by raising; the driver
in pipeline.py stops at the first failure and the store applies its
error policy.

Stages never decide ordering. The per-verb stage lists live in
pipeline.py, so reading one list is enough to know exactly what a verb
does and in which order.
"""

from __future__ import annotations

import copy
import inspect
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from .conditions import and_, eq, leaf, resolve_conditions
from .context import Placement, Range, Verb
from .errors import (
    BadRequestError,
    FieldError,
    InternalConsistencyError,
    MethodNotImplementedError,
    NotFoundError,
    PreconditionFailedError,
    StoreConfigurationError,
    UnprocessableEntityError,
)
from .permissions import enforce_permissions
from .positioning import reposition

if TYPE_CHECKING:
    from .context import RequestContext
    from .store import Store

logger = logging.getLogger(__name__)


async def _maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


# =============================================================================
# Gating and hooks
# =============================================================================


async def check_handled(store: Store, ctx: RequestContext) -> None:
    """Remote calls to a verb the store does not handle fail first."""
    if ctx.remote and not store.handles(ctx.verb):
        raise MethodNotImplementedError(
            f"Method {ctx.verb.value} not implemented by store {store.name}"
        )


def hook(name: str):
    """Stage calling the store hook `name(ctx, verb)`."""

    async def run_hook(store: Store, ctx: RequestContext) -> None:
        await _maybe_await(getattr(store, name)(ctx, ctx.verb))

    run_hook.__name__ = name
    run_hook.__qualname__ = f"hook.{name}"
    return run_hook


# =============================================================================
# Identity
# =============================================================================


async def check_param_ids(store: Store, ctx: RequestContext) -> None:
    """
    Validate identity parameters.

    The identity field itself is exempt for post and get_query (it does
    not exist yet, or is not part of a collection URL). Remote calls must
    carry every other paramId; local calls may omit them.
    """
    missing_from_schema = [p for p in store.param_ids if p not in store.schema]
    if missing_from_schema:
        raise StoreConfigurationError(
            f"paramIds must be in schema: {', '.join(missing_from_schema)}",
            store_name=store.name,
        )

    skip_id = ctx.verb in (Verb.POST, Verb.GET_QUERY)

    if ctx.remote:
        errors = [
            FieldError(p, f"Field required in the URL: {p}")
            for p in store.param_ids
            if not (skip_id and p == store.id_property) and ctx.params.get(p) is None
        ]
        if errors:
            raise BadRequestError("Bad parameters", errors=errors)

    if not ctx.params:
        return

    result = await store.schema.validate(
        ctx.params,
        only_object_values=True,
        skip_fields=[store.id_property] if skip_id else (),
    )
    if result.errors:
        raise BadRequestError("Bad parameters", errors=result.errors)
    ctx.params = result.validated


async def auto_lookup(store: Store, ctx: RequestContext) -> None:
    """
    Fetch records referenced by `store.auto_lookup` fields.

    The value is looked for in params, then body, then filter values.
    A referenced record that does not exist is a NotFound.
    """
    for field_name, store_name in store.auto_lookup.items():
        value = ctx.params.get(field_name)
        if value is None:
            value = ctx.body.get(field_name)
        if value is None:
            value = ctx.options.conditions.get(field_name)
        if value is None:
            continue

        target = store.registry.get(store_name)
        if target.id_property in target.schema:
            try:
                value = target.schema.cast(target.id_property, value)
            except ValidationError:
                raise BadRequestError(
                    "Bad parameters",
                    errors=[FieldError(field_name, f"Invalid reference: {value!r}")],
                )

        record = await target.backend.fetch_one({target.id_property: value})
        if record is None:
            raise NotFoundError(f"Record {field_name}={value!r} not found in {store_name}")
        ctx.lookup[field_name] = record
        logger.debug(f"[{store.name}] auto-lookup {field_name}={value!r} in {store_name}")


# =============================================================================
# Body preparation
# =============================================================================


async def strip_protected_fields(store: Store, ctx: RequestContext) -> None:
    """Drop protected fields the caller did not mark as computed."""
    ctx.body = dict(ctx.body)
    for name in store.schema.protected_fields:
        if name in ctx.body and name not in ctx.body_computed:
            del ctx.body[name]


async def enrich_body_with_params(store: Store, ctx: RequestContext) -> None:
    """Copy identity values implied by the URL into the body (remote only)."""
    if not ctx.remote:
        return
    for param in store.param_ids:
        if ctx.params.get(param) is not None:
            ctx.body[param] = ctx.params[param]


async def check_placement(store: Store, ctx: RequestContext) -> None:
    position = ctx.options.put_default_position
    if position is None:
        return
    try:
        ctx.options.put_default_position = Placement(position)
    except ValueError:
        raise BadRequestError(
            errors=[FieldError("put_default_position", f"Invalid position: {position!r}")]
        )
    if ctx.options.put_default_position == Placement.BEFORE:
        raise BadRequestError(
            errors=[FieldError("put_default_position", "Use put_before to place before a record")]
        )


async def check_single_field(store: Store, ctx: RequestContext) -> None:
    """
    Single-field update: only the named field plus identity fields may
    appear in the body, the named field must be present, and placement
    directives are refused.
    """
    name = ctx.options.field
    if name is None:
        return

    if ctx.options.put_before is not None:
        raise UnprocessableEntityError(
            errors=[FieldError("put_before", "put_before not allowed in single-field updates")]
        )
    if ctx.options.put_default_position is not None:
        raise UnprocessableEntityError(
            errors=[
                FieldError(
                    "put_default_position",
                    "put_default_position not allowed in single-field updates",
                )
            ]
        )
    if name not in store.single_fields:
        raise UnprocessableEntityError(
            errors=[FieldError(name, f"Field cannot be updated on its own: {name}")]
        )

    errors = [
        FieldError(
            key,
            f"Field not allowed because not a paramId nor the single field: {key} in {store.name}",
        )
        for key in ctx.body
        if key not in store.param_ids and key != name
    ]
    if name not in ctx.body:
        errors.append(FieldError(name, "When putting onto a field, that field must be in the payload"))
    if errors:
        raise UnprocessableEntityError(errors=errors)


async def validate_body(store: Store, ctx: RequestContext) -> None:
    """
    Run the schema over the body.

    Protected fields not present before validation are removed again
    afterwards, so schema defaults never leak into storage.
    """
    single_field = ctx.verb == Verb.PUT and ctx.options.field is not None
    protected = store.schema.protected_fields
    changed = {name for name in protected if name in ctx.body}

    result = await store.schema.validate(
        ctx.body,
        only_object_values=single_field,
        skip_fields=[store.id_property] if ctx.verb == Verb.POST else (),
    )
    if result.errors:
        raise UnprocessableEntityError(errors=result.errors)

    validated = result.validated
    for name in protected:
        if name not in changed:
            validated.pop(name, None)

    ctx.body_before_validation = ctx.body
    ctx.body = validated


async def check_unique(store: Store, ctx: RequestContext) -> None:
    """
    Report every unique field whose value already belongs to another
    record, all together in one UnprocessableEntity.
    """
    unique_fields = store.schema.unique_fields
    if not unique_fields:
        return

    own_id = ctx.doc.get(store.id_property) if ctx.put_existing and ctx.doc else None

    errors = []
    for name in unique_fields:
        value = ctx.body.get(name)
        if value is None or value == "":
            continue
        condition = eq(name, value)
        if own_id is not None:
            condition = and_(condition, leaf("ne", store.id_property, own_id))

        found = await store.backend.query(condition)
        if found.grand_total or found.records:
            message = store.schema[name].unique_message or "Field already in database"
            errors.append(FieldError(name, message))

    if errors:
        raise UnprocessableEntityError(errors=errors)


async def fill_protected_fields(store: Store, ctx: RequestContext) -> None:
    """Protected fields absent from the body keep the existing record's value."""
    for name in store.schema.protected_fields:
        if name not in ctx.body and name in ctx.doc:
            ctx.body[name] = ctx.doc[name]


async def cleanup_body(store: Store, ctx: RequestContext) -> None:
    ctx.body = store.schema.cleanup(ctx.body, "do_not_save")


# =============================================================================
# Permissions
# =============================================================================


async def check_permissions(store: Store, ctx: RequestContext) -> None:
    await enforce_permissions(store, ctx, ctx.verb)


# =============================================================================
# Persistence
# =============================================================================


async def fetch_record(store: Store, ctx: RequestContext) -> None:
    ctx.doc = await store.backend.fetch_one(ctx.params)


async def require_record(store: Store, ctx: RequestContext) -> None:
    if ctx.doc is None:
        raise NotFoundError()


async def decide_put_branch(store: Store, ctx: RequestContext) -> None:
    """
    Set put_new / put_existing from the existence probe, enforcing the
    overwrite expectation.
    """
    exists = ctx.doc is not None

    if not exists and ctx.options.field is not None:
        raise NotFoundError()

    overwrite = ctx.options.overwrite
    if overwrite is not None:
        if exists and not overwrite:
            raise PreconditionFailedError("Record already exists")
        if not exists and overwrite:
            raise PreconditionFailedError("Record does not exist")

    ctx.put_existing = exists
    ctx.put_new = not exists
    if exists:
        ctx.original_doc = copy.deepcopy(ctx.doc)


async def insert_record(store: Store, ctx: RequestContext) -> None:
    forced_id = None
    if ctx.verb == Verb.POST:
        forced_id = await _maybe_await(store.make_id(ctx))
    ctx.doc = await store.backend.insert(ctx.body, forced_id)


async def update_record(store: Store, ctx: RequestContext) -> None:
    updated = await store.backend.update(
        ctx.params,
        ctx.body,
        delete_unset_fields=ctx.options.field is None,
    )
    if updated is None:
        raise InternalConsistencyError(
            f"[{store.name}] record {ctx.params!r} vanished between fetch and update"
        )
    ctx.doc = updated


async def delete_record(store: Store, ctx: RequestContext) -> None:
    deleted = await store.backend.delete(ctx.params)
    if deleted is None:
        raise InternalConsistencyError(
            f"[{store.name}] record {ctx.params!r} vanished between fetch and delete"
        )


async def reposition_record(store: Store, ctx: RequestContext) -> None:
    if not store.positioning:
        return
    await reposition(
        store.backend,
        ctx.doc,
        put_before=ctx.options.put_before,
        put_default_position=ctx.options.put_default_position,
        existing=ctx.put_existing,
    )


# =============================================================================
# Queries
# =============================================================================


async def validate_filters(store: Store, ctx: RequestContext) -> None:
    """Filter values come from the query string: failures are BadRequest."""
    result = await store.search_schema.validate(ctx.options.conditions, only_object_values=True)
    if result.errors:
        raise BadRequestError("Bad search filter", errors=result.errors)
    ctx.filter_values = result.validated


async def resolve_query_conditions(store: Store, ctx: RequestContext) -> None:
    """
    Resolve the store's template, then scope the result to the parent
    identity values in params (nested stores only see their children).
    """
    resolved = resolve_conditions(
        store.query_conditions,
        ctx.filter_values,
        store.search_schema.field_names,
        ctx,
    )
    scope = [
        eq(param, ctx.params[param])
        for param in store.param_ids
        if param != store.id_property and ctx.params.get(param) is not None
    ]
    parts = scope + [resolved] if resolved else scope
    if len(parts) > 1:
        resolved = and_(*parts)
    elif parts:
        resolved = parts[0]
    ctx.resolved_conditions = resolved


async def prepare_query_window(store: Store, ctx: RequestContext) -> None:
    """Effective sort and range, with the hard limit applied."""
    requested_sort = dict(ctx.options.sort or {})
    unsortable = [name for name in requested_sort if name not in store.sortable_fields]
    if unsortable:
        raise BadRequestError(
            "Bad sort",
            errors=[FieldError(name, f"Field not sortable: {name}") for name in unsortable],
        )
    ctx.query_sort = requested_sort or dict(store.default_sort or {})

    window = ctx.options.range or Range()
    negative = [
        name for name, value in (("skip", window.skip), ("limit", window.limit))
        if value is not None and value < 0
    ]
    if negative:
        raise BadRequestError(
            "Bad range",
            errors=[FieldError(name, f"Must not be negative: {name}") for name in negative],
        )

    limit = window.limit if window.limit is not None else store.default_query_limit
    if not ctx.options.skip_hard_limit and limit > store.hard_limit_on_queries:
        logger.debug(
            f"[{store.name}] limit {limit} capped at hard limit {store.hard_limit_on_queries}"
        )
        limit = store.hard_limit_on_queries
    ctx.query_range = Range(skip=window.skip or 0, limit=limit)


async def run_query(store: Store, ctx: RequestContext) -> None:
    result = await store.backend.query(
        ctx.resolved_conditions,
        ctx.query_sort,
        ctx.query_range,
        delete=bool(ctx.options.delete or store.delete_after_get_query),
    )
    ctx.docs = result.records
    ctx.total = result.total
    ctx.grand_total = result.grand_total
