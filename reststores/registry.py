"""
Store Registry for reststores.

An explicit registry object owning the name -> store mapping. Stores
register themselves at construction time; the pipeline consults the
registry for cross-store lookups (auto-lookup). The registry is mutated
only at startup and provides no synchronization.
"""

from __future__ import annotations

import inspect
import logging
from typing import TYPE_CHECKING, Iterator

from .errors import StoreConfigurationError

if TYPE_CHECKING:
    from .store import Store

logger = logging.getLogger(__name__)


class StoreNotFoundError(LookupError):
    """
    Raised when a store name is not registered.

    This is a wiring error (e.g. auto_lookup naming a store that was
    never constructed), not a client-facing not-found.
    """


class StoreRegistry:
    """
    Registry of stores by unique name.

    Example:
        registry = StoreRegistry()
        people = PeopleStore(InMemoryBackend(), registry)
        books = BooksStore(InMemoryBackend(), registry)

        await registry.init_all()
        registry.get("people") is people
    """

    def __init__(self) -> None:
        self._stores: dict[str, Store] = {}
        self._initialized: set[str] = set()

    def register(self, store: Store) -> None:
        """
        Register a store under its name.

        Raises:
            StoreConfigurationError: The name is empty or already taken
        """
        name = store.name
        if not name:
            raise StoreConfigurationError("Store has no name")
        if name in self._stores:
            raise StoreConfigurationError(f"Duplicate store name: {name}", store_name=name)
        self._stores[name] = store
        logger.info(f"Registered store: {name}")

    def get(self, name: str) -> Store:
        """
        Get a store by name.

        Raises:
            StoreNotFoundError: If no store is registered under that name
        """
        store = self._stores.get(name)
        if store is None:
            available = ", ".join(self._stores) or "(none)"
            raise StoreNotFoundError(f"No store registered as '{name}'. Available: {available}")
        return store

    def has(self, name: str) -> bool:
        return name in self._stores

    @property
    def names(self) -> list[str]:
        return list(self._stores)

    def all(self) -> list[Store]:
        return list(self._stores.values())

    def __iter__(self) -> Iterator[Store]:
        return iter(list(self._stores.values()))

    def __len__(self) -> int:
        return len(self._stores)

    def __contains__(self, name: object) -> bool:
        return name in self._stores

    def unregister(self, name: str) -> bool:
        """Returns True if the store was removed, False if not found."""
        if name in self._stores:
            del self._stores[name]
            self._initialized.discard(name)
            logger.info(f"Unregistered store: {name}")
            return True
        return False

    def clear(self) -> None:
        """Clear all registered stores (for testing)."""
        self._stores.clear()
        self._initialized.clear()
        logger.debug("Cleared all stores")

    async def init_all(self) -> list[str]:
        """
        Call every registered store's init() hook once.

        Stores already initialized are skipped, so calling this again
        after registering more stores only initializes the newcomers.

        Returns:
            Names of the stores initialized by this call
        """
        done = []
        for name, store in list(self._stores.items()):
            if name in self._initialized:
                continue
            result = store.init()
            if inspect.isawaitable(result):
                await result
            self._initialized.add(name)
            done.append(name)
        if done:
            logger.info(f"Initialized stores: {', '.join(done)}")
        return done
