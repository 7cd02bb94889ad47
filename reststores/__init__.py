"""
reststores - Declarative REST stores over pluggable persistence.

Declare a resource once (schema, identity fields, behaviour flags) and
get a full create/read/update/delete/query lifecycle:

- **Request Pipeline**: one explicit, ordered stage list per verb
- **Condition Resolver**: static query templates resolved against live filters
- **Permission Gate**: a single `check_permissions(ctx, verb)` extension point
- **Repositioning**: caller-controlled record ordering
- **Pluggable edges**: persistence backends and transport bindings are injected

Quick Start:
    >>> from reststores import Store, Schema, FieldSpec, StoreRegistry
    >>> from reststores.persistence import InMemoryBackend
    >>>
    >>> class People(Store):
    ...     name = "people"
    ...     id_property = "id"
    ...     schema = Schema({"name": FieldSpec(str, required=True, searchable=True)})
    >>>
    >>> people = People(InMemoryBackend(), StoreRegistry())
    >>> await people.post({"name": "Tony"})
    {'name': 'Tony', 'id': 1}

The FastAPI binding lives in `reststores.http`.
"""

__version__ = "0.1.0"

from reststores.conditions import and_, each, eq, leaf, or_, resolve_conditions
from reststores.config import StoreSettings, get_settings
from reststores.context import Placement, Range, RequestContext, RequestOptions, Verb
from reststores.errors import (
    BadRequestError,
    ErrorKind,
    FieldError,
    ForbiddenError,
    InternalConsistencyError,
    MethodNotImplementedError,
    NotFoundError,
    PreconditionFailedError,
    ServiceUnavailableError,
    StoreConfigurationError,
    StoreError,
    UnprocessableEntityError,
)
from reststores.permissions import PermissionResult
from reststores.registry import StoreNotFoundError, StoreRegistry
from reststores.schema import FieldSpec, Schema
from reststores.store import Store
from reststores.transport import RecordingTransport, TransportBinding

__all__ = [
    "__version__",
    # Core
    "Store",
    "StoreRegistry",
    "StoreNotFoundError",
    "Schema",
    "FieldSpec",
    "RequestContext",
    "RequestOptions",
    "Range",
    "Placement",
    "Verb",
    "PermissionResult",
    "StoreSettings",
    "get_settings",
    # Transport
    "TransportBinding",
    "RecordingTransport",
    # Conditions
    "resolve_conditions",
    "leaf",
    "eq",
    "and_",
    "or_",
    "each",
    # Errors
    "ErrorKind",
    "FieldError",
    "StoreError",
    "BadRequestError",
    "ForbiddenError",
    "NotFoundError",
    "PreconditionFailedError",
    "UnprocessableEntityError",
    "MethodNotImplementedError",
    "ServiceUnavailableError",
    "StoreConfigurationError",
    "InternalConsistencyError",
]
