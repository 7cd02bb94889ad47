"""
Request Context for reststores.

The context carries request-scoped state through every stage of a
store pipeline. It is created fresh per call (by a transport binding for
remote calls, by the direct API for local ones) and owned exclusively by
the pipeline run that created it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


def _utc_now() -> datetime:
    return datetime.now(UTC)


class Verb(str, Enum):
    """The five store operations."""

    POST = "post"
    PUT = "put"
    GET = "get"
    GET_QUERY = "get_query"
    DELETE = "delete"


class Placement(str, Enum):
    """Where a repositioned record goes."""

    START = "start"
    END = "end"
    BEFORE = "before"


@dataclass
class Range:
    """Query window: skip N records, return at most `limit`."""

    skip: int = 0
    limit: int | None = None


@dataclass
class RequestOptions:
    """
    Verb-specific directives.

    Query:
        conditions: Live filter values (validated against the search schema)
        sort: {field: 1 | -1}
        range: Skip/limit window
        delete: Delete the fetched records after the query
        skip_hard_limit: Ignore the store's hard limit on queries

    Update:
        field: Single-field update target
        overwrite: True = record must exist, False = record must be new
        put_before: Identity of the record to place this one before
        put_default_position: "start" or "end"

    Direct API:
        api_params: Explicit identity params (instead of deriving from id)
    """

    conditions: dict[str, Any] = field(default_factory=dict)
    sort: dict[str, int] = field(default_factory=dict)
    range: Range = field(default_factory=Range)
    delete: bool = False
    skip_hard_limit: bool = False

    field: str | None = None
    overwrite: bool | None = None
    put_before: Any = None
    put_default_position: Placement | str | None = None

    api_params: dict[str, Any] | None = None

    @classmethod
    def from_mapping(cls, options: RequestOptions | dict[str, Any] | None) -> RequestOptions:
        """Accept an options object, a plain dict, or None."""
        if options is None:
            return cls()
        if isinstance(options, cls):
            return options
        data = dict(options)
        window = data.pop("range", None)
        if isinstance(window, dict):
            data["range"] = Range(**window)
        elif window is not None:
            data["range"] = window
        return cls(**data)

    @property
    def has_placement(self) -> bool:
        return self.put_before is not None or self.put_default_position is not None


@dataclass
class RequestContext:
    """
    Request-scoped state passed to every pipeline stage.

    Inputs (set by the caller):
    - remote: True when the call came through a transport binding
    - params: Identity field name -> raw value
    - body: Field name -> raw value (create/update payload)
    - body_computed: Protected fields an upstream step already computed
    - options: Verb-specific directives
    - session: Caller-supplied session data (for permission checks)

    Produced by the pipeline:
    - doc: Current record (fetched, inserted, updated or deleted)
    - original_doc: The record as it was before an update
    - put_new / put_existing: Branch taken by an update-or-create
    - filter_values: Query filter values after search-schema validation
    - resolved_conditions: Condition tree handed to the backend
    - query_sort / query_range: Effective sort and window of a query
    - docs / total / grand_total: Query results
    - lookup: Records fetched by auto-lookup
    """

    # Execution identification
    execution_id: UUID = field(default_factory=uuid4)
    started_at: datetime = field(default_factory=_utc_now)

    store_name: str = ""
    verb: Verb | None = None
    remote: bool = False

    # Request inputs
    params: dict[str, Any] = field(default_factory=dict)
    body: dict[str, Any] = field(default_factory=dict)
    body_computed: set[str] = field(default_factory=set)
    options: RequestOptions = field(default_factory=RequestOptions)
    session: dict[str, Any] = field(default_factory=dict)

    # Pipeline products
    body_before_validation: dict[str, Any] | None = None
    doc: dict[str, Any] | None = None
    original_doc: dict[str, Any] | None = None
    put_new: bool = False
    put_existing: bool = False
    filter_values: dict[str, Any] = field(default_factory=dict)
    resolved_conditions: dict[str, Any] = field(default_factory=dict)
    query_sort: dict[str, int] = field(default_factory=dict)
    query_range: Range | None = None
    docs: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0
    grand_total: int = 0
    lookup: dict[str, Any] = field(default_factory=dict)

    # Set by transport bindings that need to hand a response back
    response: Any = None

    # Audit trail
    stage_timings: dict[str, float] = field(default_factory=dict)
    stage_log: list[str] = field(default_factory=list)

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since the request started."""
        delta = datetime.now(UTC) - self.started_at
        return delta.total_seconds() * 1000

    @property
    def short_id(self) -> str:
        return str(self.execution_id)[:8]

    def record_stage(self, stage_name: str, duration_ms: float) -> None:
        """Record a completed stage in the audit trail."""
        self.stage_log.append(stage_name)
        self.stage_timings[stage_name] = duration_ms

    def to_audit_dict(self) -> dict[str, Any]:
        """Generate an audit record for logging."""
        return {
            "execution_id": str(self.execution_id),
            "started_at": self.started_at.isoformat(),
            "duration_ms": self.elapsed_ms,
            "store": self.store_name,
            "verb": self.verb.value if self.verb else None,
            "remote": self.remote,
            "put_new": self.put_new,
            "put_existing": self.put_existing,
            "stages": list(self.stage_log),
            "stage_timings": dict(self.stage_timings),
        }
