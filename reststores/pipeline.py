"""
Store Pipeline for reststores.

Each verb is an explicit, ordered list of stages run by a single driver
loop over a shared RequestContext. The first failing stage aborts the
run; the exception propagates to the store, which applies its error
policy.

Lifecycle of one run:
1. Log start with the verb's stage names
2. For each stage: skip it if its `when` predicate says so, otherwise
   run it and record its timing on the context
3. Log completion, or the failing stage and re-raise

Example:
    pipeline = PIPELINES[Verb.GET]
    ctx = await pipeline.execute(store, ctx)
    ctx.stage_log   # ['check_handled', 'before_check_param_ids', ...]
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

from . import stages
from .context import Verb
from .errors import StoreError
from .observability import PipelineLogger
from .stages import hook

if TYPE_CHECKING:
    from .context import RequestContext
    from .store import Store

logger = logging.getLogger(__name__)

StageFn = Callable[["Store", "RequestContext"], Awaitable[None]]


@dataclass(frozen=True)
class Stage:
    """
    One step of a verb's state machine.

    Attributes:
        name: Unique within the verb, used for timings and the audit trail
        run: The stage function
        when: Optional predicate; the stage is skipped when it returns False
    """

    name: str
    run: StageFn
    when: Callable[[RequestContext], bool] | None = None

    def applies(self, ctx: RequestContext) -> bool:
        return self.when is None or self.when(ctx)


def _stage(fn: StageFn, when: Callable[[RequestContext], bool] | None = None) -> Stage:
    return Stage(fn.__name__, fn, when)


def _hooked(
    name: str,
    fn: StageFn,
    when: Callable[[RequestContext], bool] | None = None,
) -> list[Stage]:
    """before_<name>, the stage itself, after_<name>."""
    return [
        Stage(f"before_{name}", hook(f"before_{name}"), when),
        Stage(fn.__name__, fn, when),
        Stage(f"after_{name}", hook(f"after_{name}"), when),
    ]


def _is_new(ctx: RequestContext) -> bool:
    return ctx.put_new


def _is_existing(ctx: RequestContext) -> bool:
    return ctx.put_existing


class StorePipeline:
    """Driver for one verb's ordered stages."""

    def __init__(self, verb: Verb, stage_list: list[Stage]):
        names = [s.name for s in stage_list]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate stage names in {verb.value} pipeline: {duplicates}")
        self.verb = verb
        self.stages = stage_list

    @property
    def stage_names(self) -> list[str]:
        return [s.name for s in self.stages]

    async def execute(self, store: Store, ctx: RequestContext) -> RequestContext:
        """
        Run every applicable stage in order.

        Raises:
            Whatever the failing stage raised, unchanged
        """
        ctx.verb = self.verb
        ctx.store_name = store.name
        plog = PipelineLogger(request_id=ctx.short_id, store=store.name, verb=self.verb.value)
        plog.pipeline_started(
            store=store.name,
            verb=self.verb.value,
            stages=self.stage_names,
            remote=ctx.remote,
        )

        for stage in self.stages:
            if not stage.applies(ctx):
                plog.stage_skipped(stage.name)
                continue

            stage_start = time.perf_counter()
            try:
                await stage.run(store, ctx)
            except Exception as e:
                kind = e.kind.value if isinstance(e, StoreError) else type(e).__name__
                plog.pipeline_failed(stage.name, kind, str(e))
                raise

            duration = (time.perf_counter() - stage_start) * 1000
            ctx.record_stage(stage.name, duration)
            plog.stage_completed(stage.name, duration)

        plog.pipeline_completed(ctx.elapsed_ms)
        if store.settings.debug:
            logger.info(f"Pipeline audit: {ctx.to_audit_dict()}")
        return ctx

    def __repr__(self) -> str:
        return f"StorePipeline(verb={self.verb.value}, stages={len(self.stages)})"


# =============================================================================
# Per-verb state machines
# =============================================================================


def _identity_stages() -> list[Stage]:
    return [
        _stage(stages.check_handled),
        *_hooked("check_param_ids", stages.check_param_ids),
        _stage(stages.auto_lookup),
    ]


def _permission_stages() -> list[Stage]:
    return _hooked("check_permissions", stages.check_permissions)


def _fetch_stages() -> list[Stage]:
    return _hooked("db_operation_fetch_one", stages.fetch_record)


def build_post_pipeline() -> StorePipeline:
    return StorePipeline(
        Verb.POST,
        [
            *_identity_stages(),
            _stage(stages.strip_protected_fields),
            _stage(stages.enrich_body_with_params),
            _stage(stages.check_placement),
            *_hooked("validate", stages.validate_body),
            _stage(stages.check_unique),
            *_permission_stages(),
            _stage(stages.cleanup_body),
            *_hooked("db_operation_insert", stages.insert_record),
            *_hooked("reposition", stages.reposition_record),
            Stage("before_return", hook("before_return")),
        ],
    )


def build_put_pipeline() -> StorePipeline:
    return StorePipeline(
        Verb.PUT,
        [
            *_identity_stages(),
            _stage(stages.strip_protected_fields),
            _stage(stages.enrich_body_with_params),
            _stage(stages.check_single_field),
            _stage(stages.check_placement),
            *_hooked("validate", stages.validate_body),
            *_fetch_stages(),
            _stage(stages.decide_put_branch),
            _stage(stages.check_unique),
            *_permission_stages(),
            _stage(stages.fill_protected_fields, when=_is_existing),
            _stage(stages.cleanup_body),
            *_hooked("db_operation_insert", stages.insert_record, when=_is_new),
            *_hooked("db_operation_update", stages.update_record, when=_is_existing),
            *_hooked("reposition", stages.reposition_record),
            Stage("before_return", hook("before_return")),
        ],
    )


def build_get_pipeline() -> StorePipeline:
    return StorePipeline(
        Verb.GET,
        [
            *_identity_stages(),
            *_fetch_stages(),
            _stage(stages.require_record),
            *_permission_stages(),
            Stage("before_return", hook("before_return")),
        ],
    )


def build_get_query_pipeline() -> StorePipeline:
    return StorePipeline(
        Verb.GET_QUERY,
        [
            *_identity_stages(),
            *_hooked("validate", stages.validate_filters),
            _stage(stages.resolve_query_conditions),
            _stage(stages.prepare_query_window),
            *_permission_stages(),
            *_hooked("db_operation_query", stages.run_query),
            Stage("before_return", hook("before_return")),
        ],
    )


def build_delete_pipeline() -> StorePipeline:
    return StorePipeline(
        Verb.DELETE,
        [
            *_identity_stages(),
            *_fetch_stages(),
            _stage(stages.require_record),
            *_permission_stages(),
            *_hooked("db_operation_delete", stages.delete_record),
            Stage("before_return", hook("before_return")),
        ],
    )


def build_pipelines() -> dict[Verb, StorePipeline]:
    return {
        Verb.POST: build_post_pipeline(),
        Verb.PUT: build_put_pipeline(),
        Verb.GET: build_get_pipeline(),
        Verb.GET_QUERY: build_get_query_pipeline(),
        Verb.DELETE: build_delete_pipeline(),
    }


PIPELINES: dict[Verb, StorePipeline] = build_pipelines()
