"""Tests for the per-process runtime."""

import os
import pathlib
import sys

import orjson
import pytest

from proctrace.config import TraceSettings
from proctrace.runtime import (
    EXIT_OK,
    EXIT_STARTUP_ERROR,
    ParentMode,
    Role,
    exit_code_for,
    next_hop_args,
    run_process,
    run_process_with_exit_code,
)
from proctrace.trace.errors import ChildFailed, DecodeError, DecodeErrorKind, SpawnFailed
from proctrace.trace.ids import new_id
from proctrace.trace.traceparent import decode, encode

TRACE_ID = "0af7651916cd43dd8448eb211c80319c"
SPAN_ID = "b7ad6b7169203331"

# Writes the TRACEPARENT/RUN_ID/PARENT_ID it was given to the file named by its first argument.
CAPTURE_SCRIPT = (
    "import json, os, sys; "
    "json.dump({k: os.environ.get(k) for k in ('RUN_ID', 'PARENT_ID', 'TRACEPARENT')}, "
    "open(sys.argv[1], 'w'))"
)


def _clean_env(**extra: str) -> dict[str, str]:
    env = {
        k: v for k, v in os.environ.items() if k not in ("RUN_ID", "PARENT_ID", "TRACEPARENT")
    }
    env.update(extra)
    return env


def _settings(tmp_path: pathlib.Path, **overrides) -> TraceSettings:
    values = {"trace_dir": tmp_path / "logs", "work_duration_seconds": 0}
    values.update(overrides)
    return TraceSettings(**values)


def _spans(trace_dir: pathlib.Path) -> list[dict]:
    spans = []
    for path in trace_dir.rglob("*.json"):
        for line in path.read_bytes().splitlines():
            record = orjson.loads(line)
            for entry in record["resourceSpans"]:
                for scope in entry["scopeSpans"]:
                    spans.extend(scope["spans"])
    return spans


def _attr(span: dict, key: str):
    for attribute in span["attributes"]:
        if attribute["key"] == key:
            return attribute["value"]["stringValue"]
    return None


class TestNextHop:
    """Test the chain layout."""

    def test_chain_order(self) -> None:
        """Test parent spawn-self -> parent spawn-child -> child -> grandchild."""
        assert next_hop_args(Role.PARENT, ParentMode.SPAWN_SELF) == ["parent", "spawn-child"]
        assert next_hop_args(Role.PARENT, ParentMode.SPAWN_CHILD) == ["child"]
        assert next_hop_args(Role.CHILD) == ["grandchild"]
        assert next_hop_args(Role.GRANDCHILD) is None


class TestExitCodes:
    """Test error to exit code mapping."""

    def test_startup_errors(self) -> None:
        """Test that identity and decode errors map to the startup exit code."""
        error = DecodeError(DecodeErrorKind.INVALID_ID, "x", "bad")
        assert exit_code_for(error) == EXIT_STARTUP_ERROR

    def test_child_failed_propagates_status(self) -> None:
        """Test that a failed child's status is reused."""
        assert exit_code_for(ChildFailed(["x"], 5)) == 5

    def test_spawn_failed(self) -> None:
        """Test that spawn failures exit 1."""
        assert exit_code_for(SpawnFailed(["x"], FileNotFoundError("x"))) == 1


class TestRunProcess:
    """Test run_process in-process, with a stand-in next hop."""

    @pytest.mark.asyncio
    async def test_root_publishes_context_to_next_hop(self, tmp_path: pathlib.Path) -> None:
        """Test that the spawned process receives RUN_ID, PARENT_ID and a new TRACEPARENT."""
        capture = tmp_path / "captured.json"
        settings = _settings(
            tmp_path, spawn_command=[sys.executable, "-c", CAPTURE_SCRIPT, str(capture)]
        )

        code = await run_process(Role.CHILD, settings, environ=_clean_env())

        assert code == EXIT_OK
        captured = orjson.loads(capture.read_bytes())
        [span] = _spans(settings.trace_dir)

        assert captured["RUN_ID"] == _attr(span, "run_id")
        assert captured["PARENT_ID"] == _attr(span, "self_id")
        published = decode(captured["TRACEPARENT"])
        assert published.trace_id == span["traceId"]
        assert published.parent_id == span["spanId"]
        assert span["parentSpanId"] == ""
        assert span["status"]["code"] == 1

    @pytest.mark.asyncio
    async def test_child_links_to_inherited_span(self, tmp_path: pathlib.Path) -> None:
        """Test that an inherited TRACEPARENT becomes the span's parent."""
        run_id = new_id()
        env = _clean_env(RUN_ID=run_id, TRACEPARENT=encode(TRACE_ID, SPAN_ID, 1))

        code = await run_process(Role.GRANDCHILD, _settings(tmp_path), environ=env)

        assert code == EXIT_OK
        trace_files = list((tmp_path / "logs" / run_id).glob("grandchild-*.json"))
        assert len(trace_files) == 1
        [span] = _spans(tmp_path / "logs")
        assert span["traceId"] == TRACE_ID
        assert span["parentSpanId"] == SPAN_ID
        assert span["spanId"] != SPAN_ID

    @pytest.mark.asyncio
    async def test_failed_next_hop_propagates_and_is_traced(self, tmp_path: pathlib.Path) -> None:
        """Test that ChildFailed propagates and the span is still written as ERROR."""
        settings = _settings(tmp_path, spawn_command=[sys.executable, "-c", "raise SystemExit(4)"])

        with pytest.raises(ChildFailed) as exc_info:
            await run_process(Role.CHILD, settings, environ=_clean_env())

        assert exc_info.value.status == 4
        [span] = _spans(settings.trace_dir)
        assert span["status"]["code"] == 2
        assert "child_failed" in [event["name"] for event in span["events"]]

    @pytest.mark.asyncio
    async def test_unstartable_next_hop_raises_spawn_failed(self, tmp_path: pathlib.Path) -> None:
        """Test that a next hop the OS cannot start raises SpawnFailed."""
        settings = _settings(tmp_path, spawn_command=["/nonexistent/proctrace"])

        with pytest.raises(SpawnFailed):
            await run_process(Role.CHILD, settings, environ=_clean_env())

        [span] = _spans(settings.trace_dir)
        assert span["status"]["code"] == 2

    @pytest.mark.asyncio
    async def test_workload_failure_fails_terminal_process(self, tmp_path: pathlib.Path) -> None:
        """Test that the terminal process fails when its workload command fails."""
        settings = _settings(
            tmp_path, workload_command=[sys.executable, "-c", "raise SystemExit(6)"]
        )

        code = await run_process_with_exit_code(Role.GRANDCHILD, settings, environ=_clean_env())
        assert code == 6

    @pytest.mark.asyncio
    async def test_malformed_traceparent_aborts_before_tracing(
        self, tmp_path: pathlib.Path
    ) -> None:
        """Test that a malformed TRACEPARENT exits with the startup code and writes nothing."""
        env = _clean_env(RUN_ID=new_id(), TRACEPARENT="00-nothex-1234-01")

        code = await run_process_with_exit_code(Role.CHILD, _settings(tmp_path), environ=env)

        assert code == EXIT_STARTUP_ERROR
        assert not (tmp_path / "logs").exists()

    @pytest.mark.asyncio
    async def test_invalid_run_id_aborts(self, tmp_path: pathlib.Path) -> None:
        """Test that an invalid RUN_ID exits with the startup code."""
        env = _clean_env(RUN_ID="definitely not an id")

        code = await run_process_with_exit_code(Role.PARENT, _settings(tmp_path), environ=env)
        assert code == EXIT_STARTUP_ERROR
