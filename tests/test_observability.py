"""
Tests for structured pipeline logging.
"""

import json
import logging

import pytest

from reststores.observability import PIPELINE_LOGGER_NAME, JSONLogger, PipelineLogger


def records(caplog):
    return [json.loads(r.getMessage()) for r in caplog.records if r.name == PIPELINE_LOGGER_NAME]


class TestJSONLogger:
    """Tests for JSON-formatted records."""

    def test_emits_json_with_context(self, caplog):
        caplog.set_level(logging.DEBUG, logger=PIPELINE_LOGGER_NAME)
        logger = JSONLogger(request_id="abc123", extra_context={"store": "people"})

        logger.info("Hello", verb="get")

        [entry] = records(caplog)
        assert entry["message"] == "Hello"
        assert entry["level"] == "info"
        assert entry["store"] == "people"
        assert entry["verb"] == "get"
        assert entry["request_id"] == "abc123"
        assert "timestamp" in entry

    def test_disabled_level_is_skipped(self, caplog):
        caplog.set_level(logging.INFO, logger=PIPELINE_LOGGER_NAME)

        JSONLogger().debug("Quiet")

        assert records(caplog) == []

    def test_with_context_merges(self, caplog):
        caplog.set_level(logging.DEBUG, logger=PIPELINE_LOGGER_NAME)
        base = JSONLogger(extra_context={"store": "people"})

        base.with_context(verb="put").warning("Careful")

        [entry] = records(caplog)
        assert entry["store"] == "people"
        assert entry["verb"] == "put"


class TestPipelineLogger:
    """Tests for pipeline lifecycle events."""

    def test_lifecycle_events(self, caplog):
        caplog.set_level(logging.DEBUG, logger=PIPELINE_LOGGER_NAME)
        plog = PipelineLogger(request_id="r1", store="people", verb="get")

        plog.pipeline_started(store="people", verb="get", stages=["a", "b"], remote=True)
        plog.stage_completed("a", 1.234)
        plog.stage_skipped("b")
        plog.pipeline_completed(2.5)

        entries = records(caplog)
        assert [e["message"] for e in entries] == [
            "Pipeline started",
            "Stage completed",
            "Stage skipped",
            "Pipeline completed",
        ]
        assert entries[0]["stage_count"] == 2
        assert entries[1]["duration_ms"] == 1.23
        assert all(e["request_id"] == "r1" for e in entries)

    def test_failure_is_a_warning(self, caplog):
        caplog.set_level(logging.DEBUG, logger=PIPELINE_LOGGER_NAME)
        plog = PipelineLogger(request_id="r2")

        plog.pipeline_failed("validate_body", "unprocessable_entity", "Unprocessable entity")

        [record] = [r for r in caplog.records if r.name == PIPELINE_LOGGER_NAME]
        assert record.levelno == logging.WARNING
        entry = json.loads(record.getMessage())
        assert entry["success"] is False
        assert entry["stage"] == "validate_body"
        assert entry["error_kind"] == "unprocessable_entity"


class TestPipelineRunLogging:
    """The driver logs every run of a store pipeline."""

    @pytest.mark.asyncio
    async def test_store_call_is_logged(self, caplog, people):
        caplog.set_level(logging.DEBUG, logger=PIPELINE_LOGGER_NAME)

        await people.post({"name": "Tony"})

        entries = records(caplog)
        assert entries[0]["message"] == "Pipeline started"
        assert entries[0]["store"] == "people"
        assert entries[0]["verb"] == "post"
        assert entries[-1]["message"] == "Pipeline completed"

    @pytest.mark.asyncio
    async def test_failing_stage_is_named(self, caplog, people):
        caplog.set_level(logging.DEBUG, logger=PIPELINE_LOGGER_NAME)

        with pytest.raises(Exception):
            await people.post({"age": 3})

        failed = [e for e in records(caplog) if e["message"] == "Pipeline failed"]
        assert failed[0]["stage"] == "validate_body"
