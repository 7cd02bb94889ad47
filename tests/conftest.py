"""
Pytest configuration and fixtures for reststores tests.
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add the repository root to path for imports
# This allows `from reststores import ...` to work
repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from reststores import FieldSpec, RecordingTransport, Schema, Store, StoreRegistry, StoreSettings
from reststores.persistence import InMemoryBackend


class PeopleStore(Store):
    """Flat store exercising every field flag."""

    name = "people"
    public_url = "/people/:id"
    schema = Schema({
        "id": FieldSpec.id(),
        "name": FieldSpec(str, required=True, searchable=True),
        "surname": FieldSpec(str, searchable=True),
        "age": FieldSpec(int, searchable=True),
        "email": FieldSpec(str, unique=True),
        "username": FieldSpec(str, unique=True, unique_message="Username taken"),
        "fileName": FieldSpec(str, protected=True, default="none.png"),
        "nickname": FieldSpec(str, single_field=True),
        "scratch": FieldSpec(str, do_not_save=True),
    })

    handle_post = True
    handle_put = True
    handle_get = True
    handle_get_query = True
    handle_delete = True

    positioning = True
    sortable_fields = ("name", "age")


class AuthorsStore(Store):
    name = "authors"
    public_url = "/authors/:authorId"
    schema = Schema({
        "name": FieldSpec(str, required=True),
    })
    handle_get = True
    handle_post = True


class BooksStore(Store):
    """Nested store: every book belongs to an author."""

    name = "books"
    public_url = "/authors/:authorId/books/:bookId"
    schema = Schema({
        "title": FieldSpec(str, required=True, searchable=True),
        "isbn": FieldSpec(str, unique=True),
    })
    auto_lookup = {"authorId": "authors"}

    handle_post = True
    handle_put = True
    handle_get = True
    handle_get_query = True
    handle_delete = True


PEOPLE = [
    {"name": "Tony", "surname": "Mobily", "age": 37, "email": "tony@example.com"},
    {"name": "Chiara", "surname": "Mobily", "age": 24},
    {"name": "Daniela", "surname": "Mobily", "age": 64},
    {"name": "Sara", "surname": "Connor", "age": 29},
]


async def seed(store, bodies=PEOPLE):
    """Post each body through the direct API, in order."""
    for body in bodies:
        await store.post(body)
    return store


def make_store_class(base, **attrs):
    """Subclass `base` with overridden class attributes or methods."""
    return type(f"Custom{base.__name__}", (base,), attrs)


@pytest.fixture
def settings():
    """Library defaults, independent of the environment."""
    return StoreSettings()


@pytest.fixture
def registry():
    return StoreRegistry()


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def backend():
    return InMemoryBackend()


@pytest.fixture
def people(backend, registry, transport, settings):
    return PeopleStore(backend, registry, transport=transport, settings=settings)


@pytest.fixture
def authors(registry, transport, settings):
    return AuthorsStore(InMemoryBackend(), registry, transport=transport, settings=settings)


@pytest.fixture
def books(authors, registry, transport, settings):
    return BooksStore(InMemoryBackend(), registry, transport=transport, settings=settings)


@pytest_asyncio.fixture
async def seeded_people(people):
    """People store holding four records (ids 1-4)."""
    return await seed(people)
