"""
Persistence Protocols.

The store pipeline never talks to a database directly. It consumes the
six operations below, implemented by a backend that is injected into the
store at construction time.

Design Principle:
    Protocols define WHAT, implementations define HOW.
    The pipeline stays storage-agnostic; the in-memory backend in this
    package is a reference implementation, SQL/document backends live
    downstream.

Identity:
    Operations keyed on a record take `identity`, the validated
    paramIds mapping (e.g. {"authorId": 3, "id": 12}).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from ..context import Placement, Range
    from ..store import Store


Record = dict[str, Any]


@dataclass
class QueryResult:
    """
    A page of records.

    Attributes:
        records: Records in the requested window
        total: Number of records in this page
        grand_total: Number of matching records ignoring the window
    """

    records: list[Record] = field(default_factory=list)
    total: int = 0
    grand_total: int = 0


@runtime_checkable
class PersistenceBackend(Protocol):
    """
    Protocol for store persistence.

    Implementations:
        - InMemoryBackend: list-backed, evaluates condition trees in Python
    """

    def attach(self, store: Store) -> None:
        """Called once by the store that owns this backend."""
        ...

    async def fetch_one(self, identity: dict[str, Any]) -> Record | None:
        ...

    async def insert(self, body: Record, forced_id: Any = None) -> Record:
        ...

    async def update(
        self,
        identity: dict[str, Any],
        body: Record,
        delete_unset_fields: bool = True,
    ) -> Record | None:
        ...

    async def delete(self, identity: dict[str, Any]) -> Record | None:
        ...

    async def query(
        self,
        conditions: dict[str, Any],
        sort: dict[str, int] | None = None,
        range: Range | None = None,
        *,
        delete: bool = False,
    ) -> QueryResult:
        ...

    async def reposition(
        self,
        record: Record,
        placement: Placement,
        before_id: Any = None,
    ) -> None:
        ...


class BaseBackend(ABC):
    """
    Base class for backends.

    Keeps a reference to the owning store's identity layout and makes
    every unimplemented operation fail loudly.
    """

    def __init__(self) -> None:
        self.store_name: str = ""
        self.id_property: str = "id"
        self.param_ids: list[str] = []

    def attach(self, store: Store) -> None:
        self.store_name = store.name
        self.id_property = store.id_property
        self.param_ids = list(store.param_ids)

    def _not_functional(self, operation: str) -> NotImplementedError:
        return NotImplementedError(
            f"{operation} not implemented, store '{self.store_name}' is not functional"
        )

    @abstractmethod
    async def fetch_one(self, identity: dict[str, Any]) -> Record | None:
        ...

    async def insert(self, body: Record, forced_id: Any = None) -> Record:
        raise self._not_functional("insert")

    async def update(
        self,
        identity: dict[str, Any],
        body: Record,
        delete_unset_fields: bool = True,
    ) -> Record | None:
        raise self._not_functional("update")

    async def delete(self, identity: dict[str, Any]) -> Record | None:
        raise self._not_functional("delete")

    async def query(
        self,
        conditions: dict[str, Any],
        sort: dict[str, int] | None = None,
        range: Range | None = None,
        *,
        delete: bool = False,
    ) -> QueryResult:
        raise self._not_functional("query")

    async def reposition(
        self,
        record: Record,
        placement: Placement,
        before_id: Any = None,
    ) -> None:
        raise self._not_functional("reposition")

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(store='{self.store_name}')"
