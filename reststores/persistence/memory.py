"""
In-Memory Backend for reststores.

Keeps records in a Python list whose order is the position order, and
evaluates resolved condition trees in Python. Suitable for tests, demos
and small embedded stores; not for production data.

Supported condition operators:
    and, or
    eq, ne, lt, lte, gt, gte
    in, notIn
    contains, startsWith, endsWith, like
    isNull, isNotNull
"""

from __future__ import annotations

import copy
import logging
import re
from typing import TYPE_CHECKING, Any, Callable, Iterable

from ..context import Placement
from .base import BaseBackend, QueryResult, Record

if TYPE_CHECKING:
    from ..context import Range

logger = logging.getLogger(__name__)


def _like(value: Any, pattern: Any) -> bool:
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in str(pattern)
    )
    return re.fullmatch(regex, str(value), flags=re.IGNORECASE | re.DOTALL) is not None


def _contains(value: Any, needle: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple, set)):
        return needle in value
    return str(needle).lower() in str(value).lower()


def _compare(op: Callable[[Any, Any], bool]) -> Callable[[Any, Any], bool]:
    def check(value: Any, other: Any) -> bool:
        if value is None or other is None:
            return False
        try:
            return op(value, other)
        except TypeError:
            return False

    return check


BINARY_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "eq": lambda a, b: a == b,
    "ne": lambda a, b: a != b,
    "lt": _compare(lambda a, b: a < b),
    "lte": _compare(lambda a, b: a <= b),
    "gt": _compare(lambda a, b: a > b),
    "gte": _compare(lambda a, b: a >= b),
    "in": lambda a, b: a in (b or ()),
    "notIn": lambda a, b: a not in (b or ()),
    "contains": _contains,
    "startsWith": lambda a, b: a is not None and str(a).startswith(str(b)),
    "endsWith": lambda a, b: a is not None and str(a).endswith(str(b)),
    "like": lambda a, b: a is not None and _like(a, b),
}

UNARY_OPERATORS: dict[str, Callable[[Any], bool]] = {
    "isNull": lambda a: a is None,
    "isNotNull": lambda a: a is not None,
}


def matches(record: Record, condition: dict[str, Any] | None) -> bool:
    """
    Evaluate a resolved condition tree against one record.

    An empty condition matches everything.

    Raises:
        ValueError: Unknown operator
    """
    if not condition:
        return True

    op = condition.get("type")
    args = condition.get("args", [])

    if op == "and":
        return all(matches(record, child) for child in args)
    if op == "or":
        return any(matches(record, child) for child in args)

    if op in UNARY_OPERATORS:
        return UNARY_OPERATORS[op](record.get(args[0]))
    if op in BINARY_OPERATORS:
        return BINARY_OPERATORS[op](record.get(args[0]), args[1])

    raise ValueError(f"Unknown condition operator: {op!r}")


def _sort_records(records: list[Record], sort: dict[str, int]) -> list[Record]:
    ordered = list(records)
    # Stable sorts applied from the least significant key
    for name, direction in reversed(list(sort.items())):
        ordered.sort(
            key=lambda r: (r.get(name) is None, r.get(name)),
            reverse=int(direction) < 0,
        )
    return ordered


class InMemoryBackend(BaseBackend):
    """
    List-backed persistence.

    Records are matched on every paramId present in the identity, so
    nested stores (e.g. /authors/:authorId/books/:bookId) only see their
    own children.

    Example:
        backend = InMemoryBackend()
        store = PeopleStore(backend, registry)
        await store.post({"name": "Tony"})
    """

    def __init__(self, records: Iterable[Record] | None = None):
        super().__init__()
        self.records: list[Record] = [dict(r) for r in records or []]
        self._next_id = 1

    # ==================== Helpers ====================

    def _identity_matches(self, record: Record, identity: dict[str, Any]) -> bool:
        keys = [k for k in (self.param_ids or [self.id_property]) if k in identity]
        if not keys:
            return False
        return all(record.get(k) == identity[k] for k in keys)

    def _find_index(self, identity: dict[str, Any]) -> int | None:
        for index, record in enumerate(self.records):
            if self._identity_matches(record, identity):
                return index
        return None

    def _generate_id(self) -> int:
        taken = {r.get(self.id_property) for r in self.records}
        while self._next_id in taken:
            self._next_id += 1
        generated = self._next_id
        self._next_id += 1
        return generated

    # ==================== Operations ====================

    async def fetch_one(self, identity: dict[str, Any]) -> Record | None:
        index = self._find_index(identity)
        if index is None:
            return None
        return copy.deepcopy(self.records[index])

    async def insert(self, body: Record, forced_id: Any = None) -> Record:
        record = copy.deepcopy(body)
        if forced_id is not None:
            record[self.id_property] = forced_id
        elif record.get(self.id_property) is None:
            record[self.id_property] = self._generate_id()

        if self._find_index(record) is not None:
            raise ValueError(
                f"Duplicate {self.id_property} {record[self.id_property]!r} in '{self.store_name}'"
            )

        self.records.append(record)
        logger.debug(f"[{self.store_name}] inserted {self.id_property}={record[self.id_property]}")
        return copy.deepcopy(record)

    async def update(
        self,
        identity: dict[str, Any],
        body: Record,
        delete_unset_fields: bool = True,
    ) -> Record | None:
        index = self._find_index(identity)
        if index is None:
            return None

        current = self.records[index]
        if delete_unset_fields:
            updated = {k: current[k] for k in identity if k in current}
            updated.update(copy.deepcopy(body))
        else:
            updated = {**current, **copy.deepcopy(body)}
        for key, value in identity.items():
            updated[key] = value

        self.records[index] = updated
        return copy.deepcopy(updated)

    async def delete(self, identity: dict[str, Any]) -> Record | None:
        index = self._find_index(identity)
        if index is None:
            return None
        return self.records.pop(index)

    async def query(
        self,
        conditions: dict[str, Any],
        sort: dict[str, int] | None = None,
        range: Range | None = None,
        *,
        delete: bool = False,
    ) -> QueryResult:
        found = [r for r in self.records if matches(r, conditions)]
        if sort:
            found = _sort_records(found, sort)

        grand_total = len(found)
        skip = range.skip if range else 0
        limit = range.limit if range else None
        page = found[skip:] if limit is None else found[skip : skip + limit]

        if delete and page:
            doomed = {id(r) for r in page}
            self.records = [r for r in self.records if id(r) not in doomed]
            logger.info(f"[{self.store_name}] deleted {len(page)} record(s) after query")

        return QueryResult(
            records=copy.deepcopy(page),
            total=len(page),
            grand_total=grand_total,
        )

    async def reposition(
        self,
        record: Record,
        placement: Placement,
        before_id: Any = None,
    ) -> None:
        index = self._find_index(record)
        if index is None:
            logger.warning(
                f"[{self.store_name}] cannot reposition missing record "
                f"{record.get(self.id_property)!r}"
            )
            return

        moving = self.records.pop(index)
        target = len(self.records)

        if placement == Placement.START:
            target = 0
        elif placement == Placement.BEFORE:
            for i, other in enumerate(self.records):
                if other.get(self.id_property) == before_id:
                    target = i
                    break
            else:
                logger.debug(
                    f"[{self.store_name}] put_before target {before_id!r} not found, "
                    "placing at end"
                )

        self.records.insert(target, moving)

    @property
    def ids(self) -> list[Any]:
        """Ids in position order."""
        return [r.get(self.id_property) for r in self.records]
