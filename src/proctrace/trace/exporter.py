"""Per-process span export to JSON files.

Each process writes its finished spans to its own file,
``<trace_dir>/<run_id>/<role>-<self_id>.json``. Every flush appends one JSON
line shaped like an OTLP/JSON export request (``{"resourceSpans": [...]}``),
so files of one run can be merged later by concatenating ``resourceSpans``.
"""

import os
import pathlib
import re
from types import TracebackType
from typing import Any

import orjson

from proctrace.telemetry import SPAN_EXPORT_FAILED, SPAN_EXPORTED, SPANS_FLUSHED, get_logger
from proctrace.trace.errors import ExportError
from proctrace.trace.span import Span, otlp_attributes

log = get_logger(__name__)

SCOPE_NAME = "proctrace"

# <role>-<self_id>.json, where self_id is a lowercase hyphenated UUID.
TRACE_FILE_NAME_RE = re.compile(
    r"^[a-z][a-z0-9_]*-[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}\.json$"
)


def trace_file_path(trace_dir: pathlib.Path, run_id: str, role: str, self_id: str) -> pathlib.Path:
    """Location of a process's trace file.

    Args:
        trace_dir: Root trace directory.
        run_id: Run id; names the run-scoped directory.
        role: Process role (parent, child, grandchild).
        self_id: The process's own id.

    Returns:
        ``trace_dir / run_id / f"{role}-{self_id}.json"``.
    """
    return trace_dir / run_id / f"{role}-{self_id}.json"


def is_trace_file(path: pathlib.Path) -> bool:
    """Whether a file name has the shape ``trace_file_path`` gives per-process files."""
    return TRACE_FILE_NAME_RE.match(path.name) is not None


def resource_spans(
    spans: list[Span], resource_attributes: dict[str, Any], scope_name: str = SCOPE_NAME
) -> dict[str, Any]:
    """Build one OTLP/JSON ResourceSpans entry."""
    return {
        "resource": {"attributes": otlp_attributes(resource_attributes)},
        "scopeSpans": [
            {
                "scope": {"name": scope_name},
                "spans": [span.to_otlp() for span in spans],
            }
        ],
    }


class FileSpanExporter:
    """Buffers finished spans and appends them to a per-process JSON file.

    Used as a context manager: leaving the block flushes whatever is buffered.
    Write failures on exit are logged as SPAN_EXPORT_FAILED and never replace
    the exception (or result) of the traced workload.

    Args:
        path: Target file. Parent directories are created on first flush.
        resource_attributes: Resource attributes written with every record
            (service.name, process.pid, ...).
    """

    def __init__(  # noqa: D107
        self, path: pathlib.Path, resource_attributes: dict[str, Any] | None = None
    ) -> None:
        self.path = path
        self.resource_attributes: dict[str, Any] = {"process.pid": os.getpid()}
        if resource_attributes:
            self.resource_attributes.update(resource_attributes)
        self._buffer: list[Span] = []
        self._closed = False
        self.exported_count = 0

    def __enter__(self) -> "FileSpanExporter":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        self.shutdown()

    @property
    def pending(self) -> int:
        """Number of buffered spans not yet written."""
        return len(self._buffer)

    def export(self, span: Span) -> None:
        """Buffer a finished span.

        Raises:
            ExportError: If the exporter was already shut down.
        """
        if self._closed:
            raise ExportError(f"exporter for {self.path} is shut down")
        self._buffer.append(span)
        log.debug(SPAN_EXPORTED, span_id=span.context.span_id, name=span.name)

    def flush(self) -> int:
        """Append buffered spans to the file as one record.

        Returns:
            Number of spans written.

        Raises:
            ExportError: If the file cannot be written. The spans stay buffered.
        """
        if not self._buffer:
            return 0

        record = {"resourceSpans": [resource_spans(self._buffer, self.resource_attributes)]}
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("ab") as f:
                f.write(orjson.dumps(record, option=orjson.OPT_APPEND_NEWLINE))
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise ExportError(f"failed to write spans to {self.path}: {e}") from e

        count = len(self._buffer)
        self._buffer.clear()
        self.exported_count += count
        log.debug(SPANS_FLUSHED, count=count, path=str(self.path))
        return count

    def shutdown(self) -> None:
        """Flush and refuse further spans. Errors are logged, not raised."""
        if self._closed:
            return
        try:
            self.flush()
        except ExportError as e:
            log.error(SPAN_EXPORT_FAILED, path=str(self.path), error=str(e), dropped=self.pending)
        finally:
            self._closed = True
