"""
Simple Store Example

This example demonstrates the basic store pattern:
1. Declare two stores (authors, and books nested under authors)
2. Use them in-process through the direct API
3. Expose them over HTTP with the FastAPI binding

Run the in-process demo:
    python -m examples.01-simple-store.main

Serve over HTTP with any ASGI server, e.g.:
    uvicorn "examples.01-simple-store.main:app"
"""

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from reststores import FieldSpec, PermissionResult, Schema, Store, StoreRegistry, Verb, each
from reststores.http import FastAPIBinding, register_exception_handlers
from reststores.persistence import InMemoryBackend

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# =============================================================================
# Stores
# =============================================================================


class AuthorsStore(Store):
    """Authors: anyone may read, only logged-in users may write."""

    name = "authors"
    public_url = "/authors/:authorId"
    schema = Schema({
        "name": FieldSpec(str, required=True, searchable=True),
    })

    handle_get = True
    handle_get_query = True
    handle_post = True

    def check_permissions(self, ctx, verb):
        if verb in (Verb.GET, Verb.GET_QUERY):
            return PermissionResult.allow()
        if ctx.session.get("user"):
            return PermissionResult.allow()
        return PermissionResult.deny("Log in to add authors")


class BooksStore(Store):
    """Books, kept in a user-defined order within each author."""

    name = "books"
    public_url = "/authors/:authorId/books/:bookId"
    schema = Schema({
        "title": FieldSpec(str, required=True, searchable=True),
        "isbn": FieldSpec(str, unique=True, unique_message="ISBN already registered"),
        "tags": FieldSpec(str, searchable=True),
    })
    # ?tags=scifi+classic matches books carrying every tag
    query_conditions = each("tags", {"type": "contains", "args": ["tags", "#tagsEach#"]})
    auto_lookup = {"authorId": "authors"}
    positioning = True
    sortable_fields = ("title",)

    handle_get = True
    handle_get_query = True
    handle_post = True
    handle_put = True
    handle_delete = True


# =============================================================================
# Wiring
# =============================================================================

registry = StoreRegistry()
binding = FastAPIBinding()

authors = AuthorsStore(InMemoryBackend(), registry, transport=binding)
books = BooksStore(InMemoryBackend(), registry, transport=binding)

binding.mount(authors)
binding.mount(books)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize every store once at startup."""
    logger.info("Initializing stores...")
    await registry.init_all()
    yield


app = FastAPI(title="reststores example", version="0.1.0", lifespan=lifespan)
app.include_router(binding.router)
register_exception_handlers(app)


@app.middleware("http")
async def session_from_header(request: Request, call_next):
    """Toy session: X-User header names the logged-in user."""
    user = request.headers.get("x-user")
    request.state.session = {"user": user} if user else {}
    return await call_next(request)


# =============================================================================
# In-process demo
# =============================================================================


async def main():
    """Direct API calls: no handle flags, no permission checks."""
    await registry.init_all()

    herbert = await authors.post({"name": "Frank Herbert"})
    author_id = herbert["authorId"]

    await books.post({"authorId": author_id, "title": "Dune", "tags": "scifi classic"})
    await books.post({"authorId": author_id, "title": "Dune Messiah", "tags": "scifi"})
    await books.post(
        {"authorId": author_id, "title": "Whipping Star", "tags": "scifi"},
        {"put_before": 1},
    )

    in_order = await books.get_query({"api_params": {"authorId": author_id}})
    print("Books in position order:")
    for book in in_order:
        print(f"  {book['bookId']}: {book['title']}")

    classics = await books.get_query(
        {"api_params": {"authorId": author_id}, "conditions": {"tags": "scifi classic"}}
    )
    print(f"Tagged 'scifi' and 'classic': {[b['title'] for b in classics]}")


if __name__ == "__main__":
    asyncio.run(main())
