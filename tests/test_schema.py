"""
Tests for the Schema collaborator.
"""

from datetime import date

import pytest

from reststores.schema import UNSET, FieldSpec, Schema


@pytest.fixture
def schema():
    return Schema({
        "id": FieldSpec.id(),
        "name": FieldSpec(str, required=True, searchable=True),
        "age": FieldSpec(int, searchable=True),
        "born": FieldSpec(date),
        "email": FieldSpec(str, unique=True),
        "fileName": FieldSpec(str, protected=True, default="none.png"),
        "tags": FieldSpec(list[str], default_factory=list),
        "nickname": FieldSpec(str, single_field=True),
        "scratch": FieldSpec(str, do_not_save=True),
    })


class TestFieldSpec:
    """Tests for FieldSpec declarations."""

    def test_id_field_defaults_to_int(self):
        spec = FieldSpec.id()
        assert spec.is_id is True
        assert spec.type is int

    def test_default_detection(self):
        assert FieldSpec(str).has_default is False
        assert FieldSpec(str).default is UNSET
        assert FieldSpec(str, default=None).has_default is True
        assert FieldSpec(list, default_factory=list).has_default is True

    def test_mutable_defaults_are_copied(self):
        spec = FieldSpec(list, default=[1])
        first = spec.make_default()
        first.append(2)
        assert spec.make_default() == [1]

    def test_evolve_returns_new_spec(self):
        spec = FieldSpec(str)
        required = spec.evolve(required=True)
        assert required.required is True
        assert spec.required is False


class TestIntrospection:
    """Tests for per-field flags."""

    def test_flag_lists(self, schema):
        assert schema.protected_fields == ["fileName"]
        assert schema.searchable_fields == ["name", "age"]
        assert schema.unique_fields == ["email"]
        assert schema.single_fields == ["nickname"]
        assert schema.id_fields == ["id"]

    def test_subset_keeps_declaration_order(self, schema):
        subset = schema.subset(["age", "name"])
        assert subset.field_names == ["name", "age"]

    def test_add_field(self, schema):
        schema.add_field("parentId", FieldSpec.id())
        assert "parentId" in schema
        assert schema["parentId"].is_id

    def test_cleanup_removes_flagged_fields(self, schema):
        assert schema.cleanup({"name": "Tony", "scratch": "tmp"}) == {"name": "Tony"}


class TestValidate:
    """Tests for Schema.validate()."""

    @pytest.mark.asyncio
    async def test_casts_values(self, schema):
        result = await schema.validate({"name": "Tony", "age": "37", "born": "1980-02-01"})
        assert result.ok
        assert result.validated["age"] == 37
        assert result.validated["born"] == date(1980, 2, 1)

    @pytest.mark.asyncio
    async def test_applies_defaults(self, schema):
        result = await schema.validate({"name": "Tony"})
        assert result.validated["fileName"] == "none.png"
        assert result.validated["tags"] == []
        assert "email" not in result.validated

    @pytest.mark.asyncio
    async def test_required_field_missing(self, schema):
        result = await schema.validate({"age": 3})
        assert not result.ok
        assert [(e.field, e.message) for e in result.errors] == [("name", "Field required: name")]

    @pytest.mark.asyncio
    async def test_unknown_field(self, schema):
        result = await schema.validate({"name": "Tony", "colour": "red"})
        assert [e.field for e in result.errors] == ["colour"]
        assert result.errors[0].message == "Field not allowed: colour"

    @pytest.mark.asyncio
    async def test_cast_error_reports_field(self, schema):
        result = await schema.validate({"name": "Tony", "age": "old"})
        assert [e.field for e in result.errors] == ["age"]
        assert result.errors[0].message

    @pytest.mark.asyncio
    async def test_only_object_values_ignores_missing_fields(self, schema):
        result = await schema.validate({"age": "5"}, only_object_values=True)
        assert result.ok
        assert result.validated == {"age": 5}

    @pytest.mark.asyncio
    async def test_skip_fields_are_neither_required_nor_cast(self):
        schema = Schema({"id": FieldSpec.id(required=True), "name": FieldSpec(str)})

        result = await schema.validate({"name": "x"}, skip_fields=["id"])
        assert result.ok

        result = await schema.validate({"id": "abc"}, skip_fields=["id"])
        assert result.validated["id"] == "abc"

    @pytest.mark.asyncio
    async def test_input_is_not_modified(self, schema):
        data = {"name": "Tony", "age": "37"}
        await schema.validate(data)
        assert data == {"name": "Tony", "age": "37"}
