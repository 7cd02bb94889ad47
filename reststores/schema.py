"""
Schema collaborator for reststores.

A Schema validates and casts a flat mapping of field name -> value against
a declared structure. Casting is delegated to pydantic TypeAdapters, so a
field's type can be anything pydantic understands (int, str, datetime,
Annotated[str, StringConstraints(...)], Literal[...], ...).

The pipeline treats the schema as a black box:

    result = await schema.validate(body, skip_fields=["id"])
    if result.errors:
        raise UnprocessableEntityError(errors=result.errors)
    body = result.validated

It also reports, per field, whether it is protected, searchable, unique,
single-field or an identity field.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Iterable, Mapping

from pydantic import TypeAdapter, ValidationError

from .errors import FieldError

logger = logging.getLogger(__name__)


class _Unset:
    """Sentinel for 'no default declared'."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class FieldSpec:
    """
    Declaration of one schema field.

    Attributes:
        type: Python/pydantic type used for casting
        required: Missing value is a validation error
        default: Value applied when the field is absent
        default_factory: Callable producing the default (wins over default)
        protected: Clients may not set it unless marked computed
        searchable: Eligible for query filters
        unique: Checked for conflicting values before writes
        single_field: May be updated on its own (options.field)
        do_not_save: Removed from the body before persistence
        is_id: Identity-type field
        unique_message: Error message used on uniqueness conflicts
    """

    type: Any = str
    required: bool = False
    default: Any = UNSET
    default_factory: Callable[[], Any] | None = None
    protected: bool = False
    searchable: bool = False
    unique: bool = False
    single_field: bool = False
    do_not_save: bool = False
    is_id: bool = False
    unique_message: str | None = None

    @classmethod
    def id(cls, type: Any = int, **kwargs: Any) -> FieldSpec:
        """Identity field, integer by default."""
        return cls(type=type, is_id=True, **kwargs)

    @property
    def has_default(self) -> bool:
        return self.default_factory is not None or self.default is not UNSET

    def make_default(self) -> Any:
        if self.default_factory is not None:
            return self.default_factory()
        return copy.deepcopy(self.default)

    def evolve(self, **changes: Any) -> FieldSpec:
        return replace(self, **changes)


@dataclass
class ValidationResult:
    """Outcome of Schema.validate()."""

    validated: dict[str, Any] = field(default_factory=dict)
    errors: list[FieldError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


class Schema:
    """
    Declared structure of a store's records.

    Example:
        schema = Schema({
            "id": FieldSpec.id(),
            "name": FieldSpec(str, required=True, searchable=True),
            "email": FieldSpec(str, unique=True),
            "fileName": FieldSpec(str, protected=True, default="none.png"),
        })
    """

    def __init__(self, structure: Mapping[str, FieldSpec] | None = None):
        self.structure: dict[str, FieldSpec] = dict(structure or {})
        self._adapters: dict[str, TypeAdapter[Any]] = {}

    # ==================== Introspection ====================

    def __contains__(self, name: object) -> bool:
        return name in self.structure

    def __getitem__(self, name: str) -> FieldSpec:
        return self.structure[name]

    def __len__(self) -> int:
        return len(self.structure)

    @property
    def field_names(self) -> list[str]:
        return list(self.structure)

    def _flagged(self, flag: str) -> list[str]:
        return [name for name, spec in self.structure.items() if getattr(spec, flag)]

    @property
    def protected_fields(self) -> list[str]:
        return self._flagged("protected")

    @property
    def searchable_fields(self) -> list[str]:
        return self._flagged("searchable")

    @property
    def unique_fields(self) -> list[str]:
        return self._flagged("unique")

    @property
    def single_fields(self) -> list[str]:
        return self._flagged("single_field")

    @property
    def id_fields(self) -> list[str]:
        return self._flagged("is_id")

    # ==================== Derivation ====================

    def add_field(self, name: str, spec: FieldSpec) -> None:
        """Add a field in place (construction time only)."""
        self.structure[name] = spec
        self._adapters.pop(name, None)

    def subset(self, names: Iterable[str]) -> Schema:
        """New schema with only the given fields, in declaration order."""
        wanted = set(names)
        return self.__class__(
            {name: spec for name, spec in self.structure.items() if name in wanted}
        )

    def cleanup(self, body: Mapping[str, Any], flag: str = "do_not_save") -> dict[str, Any]:
        """Copy of body without the fields carrying `flag`."""
        drop = set(self._flagged(flag))
        return {k: v for k, v in body.items() if k not in drop}

    # ==================== Validation ====================

    def _adapter(self, name: str) -> TypeAdapter[Any]:
        adapter = self._adapters.get(name)
        if adapter is None:
            adapter = TypeAdapter(self.structure[name].type)
            self._adapters[name] = adapter
        return adapter

    def cast(self, name: str, value: Any) -> Any:
        """Cast a single value. Raises pydantic.ValidationError."""
        return self._adapter(name).validate_python(value)

    async def validate(
        self,
        data: Mapping[str, Any] | None,
        *,
        only_object_values: bool = False,
        skip_fields: Iterable[str] = (),
    ) -> ValidationResult:
        """
        Validate and cast `data`.

        Args:
            data: Raw field values
            only_object_values: Only look at fields present in data
                (no required checks, no defaults)
            skip_fields: Fields exempt from required-ness and casting

        Returns:
            ValidationResult with the cast values and field errors.
            `data` itself is never modified.
        """
        data = dict(data or {})
        skipped = set(skip_fields)
        result = ValidationResult()

        for name in data:
            if name not in self.structure:
                result.errors.append(FieldError(name, f"Field not allowed: {name}"))

        for name, spec in self.structure.items():
            present = name in data and data[name] is not None

            if not present:
                if only_object_values:
                    if name in data:
                        result.validated[name] = None
                    continue
                if spec.has_default:
                    result.validated[name] = spec.make_default()
                elif spec.required and name not in skipped:
                    result.errors.append(FieldError(name, f"Field required: {name}"))
                elif name in data:
                    result.validated[name] = None
                continue

            value = data[name]
            if name in skipped:
                result.validated[name] = value
                continue

            try:
                result.validated[name] = self.cast(name, value)
            except ValidationError as e:
                detail = e.errors()[0]["msg"] if e.errors() else str(e)
                result.errors.append(FieldError(name, detail))

        if result.errors:
            logger.debug(
                f"Schema validation produced {len(result.errors)} error(s): "
                f"{[e.field for e in result.errors]}"
            )
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(fields={self.field_names})"
