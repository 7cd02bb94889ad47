"""
Store for reststores.

A Store is a long-lived declaration of one resource type: its schema,
identity fields, behaviour flags and extension points. It owns nothing
but configuration; persistence and transport are injected.

Declaring a store:

    class BooksStore(Store):
        name = "books"
        public_url = "/authors/:authorId/books/:bookId"
        schema = Schema({
            "title": FieldSpec(str, required=True, searchable=True),
            "isbn": FieldSpec(str, unique=True),
        })
        handle_get = handle_get_query = handle_post = True

    registry = StoreRegistry()
    books = BooksStore(InMemoryBackend(), registry)

Calling it:
    - Direct API: `await books.get(12, {"api_params": {...}})` and friends.
      Local calls skip handle flags and permissions, and re-raise failures.
    - Remote: a transport binding builds a RequestContext and awaits
      `books.handle_remote(verb, ctx)`; the outcome is transmitted through
      the binding's send().
"""

from __future__ import annotations

import copy
import logging
import posixpath
import re
from typing import TYPE_CHECKING, Any, Iterable, Mapping, Sequence

from .conditions import default_conditions, unknown_references
from .config import StoreSettings, get_settings
from .context import RequestContext, RequestOptions, Verb
from .errors import (
    ErrorKind,
    ServiceUnavailableError,
    StoreConfigurationError,
    StoreError,
    is_taxonomy_error,
)
from .permissions import PermissionResult
from .pipeline import PIPELINES
from .schema import FieldSpec, Schema
from .transport import ERROR

if TYPE_CHECKING:
    from .persistence.base import PersistenceBackend
    from .registry import StoreRegistry
    from .transport import TransportBinding

logger = logging.getLogger(__name__)

CHAIN_MODES = ("all", "none", "nonhttp")

_URL_PARAM = re.compile(r":([^/]+)")


def param_ids_from_url(url: str) -> list[str]:
    """'/authors/:authorId/books/:bookId' -> ['authorId', 'bookId']"""
    return _URL_PARAM.findall(url)


class Store:
    """
    Base class for stores.

    Class attributes are the declaration; the constructor validates them
    and derives what was left out (paramIds from the public URL, the
    identity field, the search schema, the default condition template).
    """

    # ==================== Declaration ====================

    name: str = ""
    schema: Schema | None = None
    search_schema: Schema | None = None

    param_ids: Sequence[str] = ()
    id_property: str | None = None
    public_url: str | None = None
    public_url_prefix: str | None = None

    handle_post: bool = False
    handle_put: bool = False
    handle_get: bool = False
    handle_get_query: bool = False
    handle_delete: bool = False

    echo_after_post: bool | None = None
    echo_after_put: bool | None = None
    echo_after_delete: bool | None = None

    chain_errors: str | None = None

    positioning: bool = False
    query_conditions: dict[str, Any] | None = None
    default_sort: Mapping[str, int] | None = None
    sortable_fields: Sequence[str] = ()
    hard_limit_on_queries: int | None = None
    default_query_limit: int | None = None
    delete_after_get_query: bool = False

    # field name -> name of the store holding the referenced record
    auto_lookup: Mapping[str, str] = {}

    def __init__(
        self,
        backend: PersistenceBackend,
        registry: StoreRegistry,
        transport: TransportBinding | None = None,
        settings: StoreSettings | None = None,
    ):
        self.settings = settings or get_settings()

        if not self.name:
            raise StoreConfigurationError(
                f"You must define a store name for {self.__class__.__name__}"
            )
        if self.schema is None:
            raise StoreConfigurationError("You must define a schema", store_name=self.name)

        # Instance copies so class-level declarations are never mutated
        self.schema = Schema(dict(self.schema.structure))
        self.param_ids = list(self.param_ids)
        self.sortable_fields = list(self.sortable_fields)
        self.auto_lookup = dict(self.auto_lookup)

        if not self.param_ids and self.public_url:
            self.param_ids = param_ids_from_url(self.public_url)

        if not self.id_property:
            if not self.param_ids:
                raise StoreConfigurationError(
                    "Store needs id_property, or param_ids (id_property is the last one)",
                    store_name=self.name,
                )
            self.id_property = self.param_ids[-1]
        if not self.param_ids:
            self.param_ids = [self.id_property]

        for param in self.param_ids:
            if param not in self.schema:
                self.schema.add_field(param, FieldSpec.id())

        if self.search_schema is None:
            self.search_schema = self.schema.subset(
                n for n in self.schema.searchable_fields if n not in self.param_ids
            )
        else:
            self.search_schema = Schema(dict(self.search_schema.structure))

        self.single_fields: list[str] = self.schema.single_fields

        if self.query_conditions is None:
            self.query_conditions = default_conditions(self.search_schema.field_names)
        else:
            self.query_conditions = copy.deepcopy(self.query_conditions)
        unknown = unknown_references(self.query_conditions, self.search_schema.field_names)
        if unknown:
            logger.warning(
                f"[{self.name}] query_conditions reference non-searchable fields "
                f"{sorted(unknown)}: resolving them will fail"
            )

        self.chain_errors = self.chain_errors or self.settings.chain_errors
        if self.chain_errors not in CHAIN_MODES:
            raise StoreConfigurationError(
                f"chain_errors must be one of {CHAIN_MODES}, got {self.chain_errors!r}",
                store_name=self.name,
            )

        if self.hard_limit_on_queries is None:
            self.hard_limit_on_queries = self.settings.hard_limit_on_queries
        if self.default_query_limit is None:
            self.default_query_limit = self.settings.default_query_limit
        for flag in ("echo_after_post", "echo_after_put", "echo_after_delete"):
            if getattr(self, flag) is None:
                setattr(self, flag, self.settings.echo_after_write)

        self.backend = backend
        self.backend.attach(self)
        self.transport = transport
        self.registry = registry
        registry.register(self)

    # ==================== Introspection ====================

    def handles(self, verb: Verb) -> bool:
        return bool(getattr(self, f"handle_{verb.value}"))

    def full_public_url(self) -> str | None:
        if not self.public_url_prefix:
            return self.public_url
        if self.public_url is None:
            return None
        return posixpath.join(self.public_url_prefix, self.public_url.lstrip("/"))

    def stage_names(self, verb: Verb | str) -> list[str]:
        """Stage names of a verb's state machine, in execution order."""
        return PIPELINES[Verb(verb)].stage_names

    # ==================== Extension points ====================

    async def init(self) -> None:
        """Called once at startup by StoreRegistry.init_all()."""

    def check_permissions(self, ctx: RequestContext, verb: Verb) -> PermissionResult | bool:
        """
        Permission gate for remote calls. Always grants by default.

        May be async; may return PermissionResult, a bool, or a
        (granted, message) tuple.
        """
        return PermissionResult.allow()

    async def make_id(self, ctx: RequestContext) -> Any:
        """Forced id for records created by post (None lets the backend decide)."""
        return None

    def format_error_response(self, error: StoreError) -> Any:
        return error.to_dict()

    def log_error(self, ctx: RequestContext, error: BaseException) -> None:
        if isinstance(error, StoreError) and error.kind != ErrorKind.SERVICE_UNAVAILABLE:
            logger.info(
                f"[{self.name}] {ctx.verb.value if ctx.verb else '?'} "
                f"(request {ctx.short_id}) failed: {error.kind.value}: {error.message}"
            )
            return
        original = getattr(error, "original_error", None) or error
        logger.error(
            f"[{self.name}] {ctx.verb.value if ctx.verb else '?'} "
            f"(request {ctx.short_id}) failed: {original!r}",
            exc_info=(type(original), original, original.__traceback__),
        )

    def error_in_sending(
        self,
        ctx: RequestContext,
        verb: Verb,
        data: Any,
        when: str,
        error: BaseException,
    ) -> None:
        """Called when transmitting an outcome fails. Never propagates."""
        self._log_error_safely(ctx, error)

    # Hooks: async (ctx, verb); raising aborts the pipeline

    async def before_check_param_ids(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_check_param_ids(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_validate(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_validate(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_check_permissions(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_check_permissions(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_db_operation_fetch_one(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_db_operation_fetch_one(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_db_operation_insert(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_db_operation_insert(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_db_operation_update(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_db_operation_update(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_db_operation_delete(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_db_operation_delete(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_db_operation_query(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_db_operation_query(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_reposition(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def after_reposition(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    async def before_return(self, ctx: RequestContext, verb: Verb) -> None:
        pass

    # ==================== Execution ====================

    async def execute(self, ctx: RequestContext, verb: Verb | str) -> RequestContext:
        """
        Run a verb's pipeline on a prepared context and apply the error
        policy. Returns the context; for remote contexts the outcome has
        also been transmitted.
        """
        verb = Verb(verb)
        ctx.options = copy.copy(RequestOptions.from_mapping(ctx.options))
        try:
            await PIPELINES[verb].execute(self, ctx)
        except Exception as error:
            if not await self._dispatch_error(ctx, verb, error):
                raise
            return ctx

        if ctx.remote:
            await self.send_data(ctx, verb, self._success_payload(ctx, verb))
        return ctx

    async def handle_remote(self, verb: Verb | str, ctx: RequestContext) -> RequestContext:
        """Entry point for transport bindings."""
        if self.transport is None:
            raise StoreConfigurationError("Remote call on a store without transport", self.name)
        ctx.remote = True
        return await self.execute(ctx, verb)

    def _success_payload(self, ctx: RequestContext, verb: Verb) -> Any:
        if verb == Verb.GET_QUERY:
            return ctx.docs
        echo = {
            Verb.POST: self.echo_after_post,
            Verb.PUT: self.echo_after_put,
            Verb.DELETE: self.echo_after_delete,
        }.get(verb, True)
        return ctx.doc if echo else None

    @staticmethod
    def success_status(ctx: RequestContext, verb: Verb, data: Any) -> int:
        if verb == Verb.POST:
            return 201
        if verb == Verb.PUT and ctx.put_new:
            return 201
        if verb == Verb.DELETE and data is None:
            return 204
        return 200

    async def send_data(
        self,
        ctx: RequestContext,
        verb: Verb,
        data: Any,
        error: StoreError | None = None,
    ) -> None:
        """Transmit an outcome through the transport. Failures go to error_in_sending."""
        status: int | str = ERROR if error is not None else self.success_status(ctx, verb, data)
        try:
            await self.transport.send(ctx, verb, data, status, error)
        except Exception as e:
            try:
                self.error_in_sending(ctx, verb, data, "during", e)
            except Exception as nested:
                logger.warning(f"[{self.name}] error_in_sending raised: {nested!r}")

    async def _dispatch_error(self, ctx: RequestContext, verb: Verb, error: Exception) -> bool:
        """
        Apply the chaining policy.

        Returns True when the failure was transmitted, False when the
        caller must re-raise it.
        """
        if not ctx.remote:
            self._log_error_safely(ctx, error)
            return False

        if self.chain_errors == "all" or (
            self.chain_errors == "nonhttp" and not is_taxonomy_error(error)
        ):
            self._log_error_safely(ctx, error)
            return False

        if not isinstance(error, StoreError):
            error = ServiceUnavailableError.wrap(error)

        await self.send_data(ctx, verb, self.format_error_response(error), error=error)
        self._log_error_safely(ctx, error)
        return True

    def _log_error_safely(self, ctx: RequestContext, error: BaseException) -> None:
        try:
            self.log_error(ctx, error)
        except Exception as e:
            logger.warning(f"[{self.name}] log_error raised: {e!r}")

    # ==================== Direct API ====================

    def _local_context(
        self,
        verb: Verb,
        params: dict[str, Any],
        options: RequestOptions,
        body: Mapping[str, Any] | None = None,
        session: Mapping[str, Any] | None = None,
        body_computed: Iterable[str] = (),
    ) -> RequestContext:
        return RequestContext(
            store_name=self.name,
            verb=verb,
            remote=False,
            params=params,
            body=dict(body or {}),
            body_computed=set(body_computed),
            options=options,
            session=dict(session or {}),
        )

    def _identity_params(self, options: RequestOptions, id_value: Any) -> dict[str, Any]:
        if options.api_params is not None:
            return dict(options.api_params)
        if id_value is None:
            return {}
        return {self.id_property: id_value}

    async def get(
        self,
        id: Any = None,
        options: RequestOptions | Mapping[str, Any] | None = None,
        *,
        session: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        opts = RequestOptions.from_mapping(options)
        ctx = self._local_context(Verb.GET, self._identity_params(opts, id), opts, session=session)
        await self.execute(ctx, Verb.GET)
        return ctx.doc

    async def get_query(
        self,
        options: RequestOptions | Mapping[str, Any] | None = None,
        *,
        session: Mapping[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        opts = RequestOptions.from_mapping(options)
        ctx = self._local_context(Verb.GET_QUERY, self._identity_params(opts, None), opts, session=session)
        await self.execute(ctx, Verb.GET_QUERY)
        return ctx.docs

    async def put(
        self,
        body: Mapping[str, Any],
        options: RequestOptions | Mapping[str, Any] | None = None,
        *,
        session: Mapping[str, Any] | None = None,
        body_computed: Iterable[str] = (),
    ) -> dict[str, Any]:
        opts = RequestOptions.from_mapping(options)
        if opts.api_params is None and body.get(self.id_property) is None:
            raise ValueError(
                f"{self.name}.put() needs '{self.id_property}' in the body or api_params"
            )
        params = self._identity_params(opts, body.get(self.id_property))
        ctx = self._local_context(
            Verb.PUT, params, opts, body=body, session=session, body_computed=body_computed
        )
        await self.execute(ctx, Verb.PUT)
        return ctx.doc

    async def post(
        self,
        body: Mapping[str, Any],
        options: RequestOptions | Mapping[str, Any] | None = None,
        *,
        session: Mapping[str, Any] | None = None,
        body_computed: Iterable[str] = (),
    ) -> dict[str, Any]:
        opts = RequestOptions.from_mapping(options)
        ctx = self._local_context(
            Verb.POST,
            self._identity_params(opts, None),
            opts,
            body=body,
            session=session,
            body_computed=body_computed,
        )
        await self.execute(ctx, Verb.POST)
        return ctx.doc

    async def delete(
        self,
        id: Any = None,
        options: RequestOptions | Mapping[str, Any] | None = None,
        *,
        session: Mapping[str, Any] | None = None,
    ) -> dict[str, Any]:
        opts = RequestOptions.from_mapping(options)
        ctx = self._local_context(Verb.DELETE, self._identity_params(opts, id), opts, session=session)
        await self.execute(ctx, Verb.DELETE)
        return ctx.doc

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(name='{self.name}', param_ids={self.param_ids})"
