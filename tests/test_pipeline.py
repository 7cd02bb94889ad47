"""
Tests for the per-verb state machines and their driver.
"""

from unittest.mock import AsyncMock

import pytest

from conftest import PeopleStore, make_store_class
from reststores import ForbiddenError, RequestContext, RequestOptions, Verb
from reststores.persistence import InMemoryBackend
from reststores.pipeline import PIPELINES, Stage, StorePipeline

HOOKS = [
    "before_check_param_ids",
    "after_check_param_ids",
    "before_validate",
    "after_validate",
    "before_check_permissions",
    "after_check_permissions",
    "before_db_operation_fetch_one",
    "after_db_operation_fetch_one",
    "before_db_operation_insert",
    "after_db_operation_insert",
    "before_db_operation_update",
    "after_db_operation_update",
    "before_db_operation_delete",
    "after_db_operation_delete",
    "before_db_operation_query",
    "after_db_operation_query",
    "before_reposition",
    "after_reposition",
    "before_return",
]


def recording_store_class(calls):
    """PeopleStore whose hooks append their name to `calls`."""

    def make_hook(name):
        async def run(self, ctx, verb):
            calls.append(name)

        return run

    return make_store_class(PeopleStore, **{name: make_hook(name) for name in HOOKS})


class TestStageLists:
    """Each verb's stages, in order."""

    def test_get(self, people):
        assert people.stage_names(Verb.GET) == [
            "check_handled",
            "before_check_param_ids",
            "check_param_ids",
            "after_check_param_ids",
            "auto_lookup",
            "before_db_operation_fetch_one",
            "fetch_record",
            "after_db_operation_fetch_one",
            "require_record",
            "before_check_permissions",
            "check_permissions",
            "after_check_permissions",
            "before_return",
        ]

    def test_delete(self, people):
        assert people.stage_names(Verb.DELETE)[-5:] == [
            "after_check_permissions",
            "before_db_operation_delete",
            "delete_record",
            "after_db_operation_delete",
            "before_return",
        ]

    def test_get_query(self, people):
        assert people.stage_names(Verb.GET_QUERY)[5:] == [
            "before_validate",
            "validate_filters",
            "after_validate",
            "resolve_query_conditions",
            "prepare_query_window",
            "before_check_permissions",
            "check_permissions",
            "after_check_permissions",
            "before_db_operation_query",
            "run_query",
            "after_db_operation_query",
            "before_return",
        ]

    def test_post(self, people):
        names = people.stage_names(Verb.POST)
        assert names.index("validate_body") < names.index("check_unique")
        assert names.index("check_unique") < names.index("check_permissions")
        assert names.index("check_permissions") < names.index("insert_record")
        assert names.index("insert_record") < names.index("reposition_record")
        assert names[-1] == "before_return"

    def test_put_permission_after_existence_probe(self, people):
        names = people.stage_names(Verb.PUT)
        assert names.index("fetch_record") < names.index("decide_put_branch")
        assert names.index("decide_put_branch") < names.index("check_permissions")
        assert names.index("check_single_field") < names.index("validate_body")

    def test_handled_check_is_first(self):
        for pipeline in PIPELINES.values():
            assert pipeline.stage_names[0] == "check_handled"


class TestHookOrder:
    """Hooks fire around their stage, and only for the branch taken."""

    @pytest.mark.asyncio
    async def test_put_new(self, registry, settings):
        calls = []
        store = recording_store_class(calls)(InMemoryBackend(), registry, settings=settings)

        ctx = RequestContext(params={"id": 1}, body={"id": 1, "name": "Tony"})
        await store.execute(ctx, Verb.PUT)

        assert calls == [
            "before_check_param_ids",
            "after_check_param_ids",
            "before_validate",
            "after_validate",
            "before_db_operation_fetch_one",
            "after_db_operation_fetch_one",
            "before_check_permissions",
            "after_check_permissions",
            "before_db_operation_insert",
            "after_db_operation_insert",
            "before_reposition",
            "after_reposition",
            "before_return",
        ]
        assert "update_record" not in ctx.stage_log
        assert "fill_protected_fields" not in ctx.stage_log
        assert "insert_record" in ctx.stage_log

    @pytest.mark.asyncio
    async def test_put_existing(self, registry, settings):
        calls = []
        store = recording_store_class(calls)(InMemoryBackend(), registry, settings=settings)
        await store.post({"name": "Tony"})
        calls.clear()

        ctx = RequestContext(params={"id": 1}, body={"id": 1, "name": "Anthony"})
        await store.execute(ctx, Verb.PUT)

        assert "before_db_operation_update" in calls
        assert "before_db_operation_insert" not in calls
        assert "insert_record" not in ctx.stage_log

    @pytest.mark.asyncio
    async def test_get_query(self, registry, settings):
        calls = []
        store = recording_store_class(calls)(InMemoryBackend(), registry, settings=settings)

        await store.get_query()

        assert calls == [
            "before_check_param_ids",
            "after_check_param_ids",
            "before_validate",
            "after_validate",
            "before_check_permissions",
            "after_check_permissions",
            "before_db_operation_query",
            "after_db_operation_query",
            "before_return",
        ]


class TestDriver:
    """Tests for StorePipeline.execute()."""

    @pytest.mark.asyncio
    async def test_stage_log_and_timings(self, seeded_people):
        ctx = RequestContext(params={"id": 1})
        await seeded_people.execute(ctx, Verb.GET)

        assert ctx.stage_log == seeded_people.stage_names(Verb.GET)
        assert set(ctx.stage_timings) == set(ctx.stage_log)
        assert ctx.to_audit_dict()["verb"] == "get"

    @pytest.mark.asyncio
    async def test_raising_hook_aborts(self, registry, settings):
        Guarded = make_store_class(
            PeopleStore,
            before_db_operation_insert=AsyncMock(side_effect=ForbiddenError("Closed")),
        )
        store = Guarded(InMemoryBackend(), registry, settings=settings)

        ctx = RequestContext(body={"name": "Tony"})
        with pytest.raises(ForbiddenError):
            await store.execute(ctx, Verb.POST)

        assert store.backend.records == []
        assert ctx.stage_log[-1] == "cleanup_body"
        assert "before_db_operation_insert" not in ctx.stage_log

    @pytest.mark.asyncio
    async def test_sync_hooks_are_supported(self, registry, settings):
        seen = []
        Synced = make_store_class(
            PeopleStore, before_return=lambda self, ctx, verb: seen.append(verb)
        )
        store = Synced(InMemoryBackend(), registry, settings=settings)

        await store.post({"name": "Tony"})

        assert seen == [Verb.POST]

    @pytest.mark.asyncio
    async def test_skipped_stage(self, people):
        async def never(store, ctx):
            raise AssertionError("should not run")

        async def always(store, ctx):
            pass

        pipeline = StorePipeline(
            Verb.GET,
            [Stage("never", never, when=lambda ctx: False), Stage("always", always)],
        )
        ctx = await pipeline.execute(people, RequestContext())

        assert ctx.stage_log == ["always"]

    def test_duplicate_stage_names(self):
        async def noop(store, ctx):
            pass

        with pytest.raises(ValueError, match="Duplicate stage names"):
            StorePipeline(Verb.GET, [Stage("a", noop), Stage("a", noop)])

    @pytest.mark.asyncio
    async def test_caller_options_are_not_mutated(self, people):
        options = RequestOptions(put_default_position="start")
        await people.post({"name": "Tony"}, options)

        assert options.put_default_position == "start"
