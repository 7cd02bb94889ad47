"""
FastAPI binding for reststores.

Thin transport: one route per verb per store, each translating the
inbound request into a remote RequestContext and handing it to the
store. The store calls back send(), which turns the outcome into a
Starlette response stored on the context.

Routes for a store with public_url "/authors/:authorId/books/:bookId":

    GET    /authors/{authorId}/books            get_query
    POST   /authors/{authorId}/books            post
    GET    /authors/{authorId}/books/{bookId}   get
    PUT    /authors/{authorId}/books/{bookId}   put
    DELETE /authors/{authorId}/books/{bookId}   delete

Request conventions:
    - Query string: `sort=name,-age`, `skip`, `limit`; any other key is a
      search filter value
    - If-Match: * / If-None-Match: * set the overwrite expectation
    - X-Put-Before / X-Put-Default-Position carry placement directives
    - request.state.session (set by middleware) is copied to ctx.session

Usage:
    app = FastAPI()
    binding = FastAPIBinding()
    people = PeopleStore(InMemoryBackend(), registry, transport=binding)
    binding.mount(people)
    app.include_router(binding.router)
    register_exception_handlers(app)
"""

from __future__ import annotations

import json
import logging
import re
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

from .context import Range, RequestContext, RequestOptions, Verb
from .errors import ErrorKind, StoreError
from .transport import ERROR

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.BAD_REQUEST: 400,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.PRECONDITION_FAILED: 412,
    ErrorKind.UNPROCESSABLE_ENTITY: 422,
    ErrorKind.NOT_IMPLEMENTED: 501,
    ErrorKind.SERVICE_UNAVAILABLE: 503,
}

RESERVED_QUERY_KEYS = frozenset({"sort", "skip", "limit"})

_URL_PARAM = re.compile(r":([^/]+)")


def to_route_path(url: str) -> str:
    """'/authors/:authorId' -> '/authors/{authorId}'"""
    return _URL_PARAM.sub(r"{\1}", url)


def parse_sort(value: str | None) -> dict[str, int]:
    """'name,-age' -> {'name': 1, 'age': -1}"""
    sort: dict[str, int] = {}
    for token in (value or "").split(","):
        token = token.strip()
        if not token:
            continue
        if token.startswith("-"):
            sort[token[1:]] = -1
        else:
            sort[token.lstrip("+")] = 1
    return sort


def _int_or_none(value: str | None) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except ValueError:
        return None


class MalformedRequestError(ValueError):
    """The request could not be turned into a context (e.g. bad JSON)."""


class FastAPIBinding:
    """
    Transport binding registering store routes on an APIRouter.

    Attributes:
        router: Router collecting the routes of every mounted store
    """

    def __init__(self, router: APIRouter | None = None):
        self.router = router or APIRouter()
        self.stores: list[Store] = []

    # ==================== Egress ====================

    async def send(
        self,
        ctx: RequestContext,
        verb: Verb,
        data: Any,
        status: int | str,
        error: BaseException | None = None,
    ) -> None:
        if status == ERROR:
            kind = error.kind if isinstance(error, StoreError) else ErrorKind.SERVICE_UNAVAILABLE
            code = STATUS_BY_KIND[kind]
        else:
            code = int(status)

        if data is None or code == 204:
            ctx.response = Response(status_code=code)
        else:
            ctx.response = JSONResponse(content=jsonable_encoder(data), status_code=code)

        if verb == Verb.GET_QUERY and status != ERROR:
            ctx.response.headers["X-Total-Count"] = str(ctx.grand_total)

    # ==================== Ingress ====================

    async def context_from_request(self, store: Store, verb: Verb, request: Request) -> RequestContext:
        """
        Build a remote RequestContext.

        Raises:
            MalformedRequestError: Body is not a JSON object
        """
        body: dict[str, Any] = {}
        if verb in (Verb.POST, Verb.PUT):
            raw = await request.body()
            if raw:
                try:
                    body = json.loads(raw)
                except ValueError as e:
                    raise MalformedRequestError(f"Malformed JSON body: {e}") from e
                if not isinstance(body, dict):
                    raise MalformedRequestError("Request body must be a JSON object")

        query = dict(request.query_params)
        options = RequestOptions()
        if verb == Verb.GET_QUERY:
            options.conditions = {k: v for k, v in query.items() if k not in RESERVED_QUERY_KEYS}
            options.sort = parse_sort(query.get("sort"))
            options.range = Range(
                skip=_int_or_none(query.get("skip")) or 0,
                limit=_int_or_none(query.get("limit")),
            )

        if verb == Verb.PUT:
            if request.headers.get("if-match") == "*":
                options.overwrite = True
            elif request.headers.get("if-none-match") == "*":
                options.overwrite = False

        if verb in (Verb.POST, Verb.PUT):
            put_before = request.headers.get("x-put-before")
            if put_before:
                options.put_before = put_before
                if store.id_property in store.schema:
                    try:
                        options.put_before = store.schema.cast(store.id_property, put_before)
                    except ValueError:
                        pass
            position = request.headers.get("x-put-default-position")
            if position:
                options.put_default_position = position

        return RequestContext(
            store_name=store.name,
            verb=verb,
            remote=True,
            params=dict(request.path_params),
            body=body,
            options=options,
            session=dict(getattr(request.state, "session", None) or {}),
        )

    def _endpoint(self, store: Store, verb: Verb):
        async def endpoint(request: Request) -> Response:
            try:
                ctx = await self.context_from_request(store, verb, request)
            except MalformedRequestError as e:
                return JSONResponse({"message": str(e)}, status_code=400)
            await store.handle_remote(verb, ctx)
            return ctx.response

        endpoint.__name__ = f"{store.name}_{verb.value}"
        return endpoint

    def mount(self, store: Store) -> None:
        """Register the routes of a store on this binding's router."""
        url = store.full_public_url()
        if not url:
            raise ValueError(f"Store '{store.name}' has no public_url to mount")

        item_path = to_route_path(url)
        collection_path = item_path.rsplit("/", 1)[0] or "/"

        routes = [
            (collection_path, "GET", Verb.GET_QUERY),
            (collection_path, "POST", Verb.POST),
            (item_path, "GET", Verb.GET),
            (item_path, "PUT", Verb.PUT),
            (item_path, "DELETE", Verb.DELETE),
        ]
        for path, method, verb in routes:
            self.router.add_api_route(
                path,
                self._endpoint(store, verb),
                methods=[method],
                name=f"{store.name}.{verb.value}",
                tags=[store.name],
            )

        self.stores.append(store)
        logger.info(f"Mounted store '{store.name}' at {item_path}")


def register_exception_handlers(app: FastAPI) -> None:
    """
    Render StoreErrors chained up by stores in 'all' or 'nonhttp' mode.

    Non-taxonomy errors are left to the application's own handling.
    """

    async def handle_store_error(request: Request, exc: StoreError) -> JSONResponse:
        return JSONResponse(exc.to_dict(), status_code=STATUS_BY_KIND[exc.kind])

    app.add_exception_handler(StoreError, handle_store_error)
