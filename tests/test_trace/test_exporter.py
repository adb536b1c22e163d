"""Tests for per-process span export."""

import pathlib

import orjson
import pytest

from proctrace.trace.errors import ExportError
from proctrace.trace.exporter import FileSpanExporter, trace_file_path
from proctrace.trace.span import Span
from proctrace.trace.traceparent import SpanContext

TRACE_ID = "0af7651916cd43dd8448eb211c80319c"


def _span(span_id: str, name: str = "child") -> Span:
    span = Span(name=name, context=SpanContext(TRACE_ID, span_id))
    span.end()
    return span


def _read_lines(path: pathlib.Path) -> list[dict]:
    return [orjson.loads(line) for line in path.read_bytes().splitlines() if line.strip()]


class TestTraceFilePath:
    """Test trace file naming."""

    def test_path_embeds_run_role_and_self_id(self, tmp_path: pathlib.Path) -> None:
        """Test the <trace_dir>/<run_id>/<role>-<self_id>.json layout."""
        path = trace_file_path(tmp_path, "run-1", "grandchild", "self-9")
        assert path == tmp_path / "run-1" / "grandchild-self-9.json"


class TestFileSpanExporter:
    """Test FileSpanExporter."""

    def test_flush_writes_resource_spans_record(self, tmp_path: pathlib.Path) -> None:
        """Test that a flush appends one resourceSpans record."""
        path = tmp_path / "run" / "child-1.json"
        exporter = FileSpanExporter(path, resource_attributes={"service.name": "proctrace"})
        exporter.export(_span("1111111111111111"))

        assert exporter.pending == 1
        assert exporter.flush() == 1
        assert exporter.pending == 0

        [record] = _read_lines(path)
        [resource_spans] = record["resourceSpans"]
        resource_keys = {attr["key"] for attr in resource_spans["resource"]["attributes"]}
        assert {"service.name", "process.pid"} <= resource_keys
        [scope_spans] = resource_spans["scopeSpans"]
        assert scope_spans["scope"]["name"] == "proctrace"
        assert scope_spans["spans"][0]["spanId"] == "1111111111111111"

    def test_flush_appends_records(self, tmp_path: pathlib.Path) -> None:
        """Test that successive flushes append, never truncate."""
        path = tmp_path / "child.json"
        exporter = FileSpanExporter(path)
        exporter.export(_span("1111111111111111"))
        exporter.flush()
        exporter.export(_span("2222222222222222"))
        exporter.export(_span("3333333333333333"))
        exporter.flush()

        records = _read_lines(path)
        assert len(records) == 2
        assert len(records[1]["resourceSpans"][0]["scopeSpans"][0]["spans"]) == 2
        assert exporter.exported_count == 3

    def test_flush_without_spans_writes_nothing(self, tmp_path: pathlib.Path) -> None:
        """Test that an empty flush does not create the file."""
        path = tmp_path / "child.json"
        assert FileSpanExporter(path).flush() == 0
        assert not path.exists()

    def test_context_manager_flushes_on_exit(self, tmp_path: pathlib.Path) -> None:
        """Test that leaving the block writes buffered spans."""
        path = tmp_path / "child.json"
        with FileSpanExporter(path) as exporter:
            exporter.export(_span("1111111111111111"))
            assert not path.exists()

        assert len(_read_lines(path)) == 1

    def test_context_manager_flushes_on_error(self, tmp_path: pathlib.Path) -> None:
        """Test that an exception in the block still flushes and propagates."""
        path = tmp_path / "child.json"
        with pytest.raises(ValueError):
            with FileSpanExporter(path) as exporter:
                exporter.export(_span("1111111111111111"))
                raise ValueError("workload failed")

        assert len(_read_lines(path)) == 1

    def test_export_after_shutdown_raises(self, tmp_path: pathlib.Path) -> None:
        """Test that a shut-down exporter refuses spans."""
        exporter = FileSpanExporter(tmp_path / "child.json")
        exporter.shutdown()
        with pytest.raises(ExportError):
            exporter.export(_span("1111111111111111"))

    def test_flush_failure_raises_export_error(self, tmp_path: pathlib.Path) -> None:
        """Test that an unwritable target raises ExportError and keeps the spans."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")
        exporter = FileSpanExporter(blocker / "child.json")
        exporter.export(_span("1111111111111111"))

        with pytest.raises(ExportError):
            exporter.flush()
        assert exporter.pending == 1

    def test_shutdown_failure_does_not_raise(self, tmp_path: pathlib.Path) -> None:
        """Test that export errors on exit are logged, not raised."""
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("file in the way")

        with FileSpanExporter(blocker / "child.json") as exporter:
            exporter.export(_span("1111111111111111"))

        assert exporter.exported_count == 0
