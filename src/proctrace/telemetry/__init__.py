"""Telemetry module for structured logging.

This module provides:
- Structured logging via structlog
- Per-process log context binding (run_id, self_id, role)
- Semantic event constants
"""

from proctrace.telemetry.events import (
    CHILD_EXITED,
    CHILD_FAILED,
    CHILD_KILLED,
    CHILD_SPAWN_FAILED,
    CHILD_SPAWNING,
    CHILD_TERMINATED,
    LINEAGE_RESOLVED,
    PROCESS_COMPLETED,
    PROCESS_FAILED,
    PROCESS_STARTED,
    PROCESS_STARTUP_FAILED,
    RUN_ID_INHERITED,
    RUN_ID_MINTED,
    SPAN_EXPORT_FAILED,
    SPAN_EXPORTED,
    SPANS_FLUSHED,
    TRACE_FILE_READ,
    TRACE_FILES_COMBINED,
    TRACEPARENT_FOUND,
    TRACEPARENT_INVALID,
    TRACEPARENT_MISSING,
    WORK_COMPLETED,
    WORK_STARTED,
)
from proctrace.telemetry.logger import bind_process_context, configure_logging, get_logger

__all__ = [
    # Core exports
    "get_logger",
    "configure_logging",
    "bind_process_context",
    # Event constants
    "PROCESS_STARTED",
    "PROCESS_COMPLETED",
    "PROCESS_FAILED",
    "PROCESS_STARTUP_FAILED",
    "WORK_STARTED",
    "WORK_COMPLETED",
    "RUN_ID_MINTED",
    "RUN_ID_INHERITED",
    "TRACEPARENT_FOUND",
    "TRACEPARENT_MISSING",
    "TRACEPARENT_INVALID",
    "LINEAGE_RESOLVED",
    "CHILD_SPAWNING",
    "CHILD_SPAWN_FAILED",
    "CHILD_EXITED",
    "CHILD_FAILED",
    "CHILD_TERMINATED",
    "CHILD_KILLED",
    "SPAN_EXPORTED",
    "SPANS_FLUSHED",
    "SPAN_EXPORT_FAILED",
    "TRACE_FILE_READ",
    "TRACE_FILES_COMBINED",
]
