"""Semantic event constants for structured logging.

All log events should use these constants rather than magic strings to ensure
consistency and enable reliable querying across the processes of a run.
"""

# Process lifecycle
PROCESS_STARTED = "process_started"
PROCESS_COMPLETED = "process_completed"
PROCESS_FAILED = "process_failed"
PROCESS_STARTUP_FAILED = "process_startup_failed"
WORK_STARTED = "work_started"
WORK_COMPLETED = "work_completed"

# Lineage resolution
RUN_ID_MINTED = "run_id_minted"
RUN_ID_INHERITED = "run_id_inherited"
TRACEPARENT_FOUND = "traceparent_found"
TRACEPARENT_MISSING = "traceparent_missing"
TRACEPARENT_INVALID = "traceparent_invalid"
LINEAGE_RESOLVED = "lineage_resolved"

# Process launching
CHILD_SPAWNING = "child_spawning"
CHILD_SPAWN_FAILED = "child_spawn_failed"
CHILD_EXITED = "child_exited"
CHILD_FAILED = "child_failed"
CHILD_TERMINATED = "child_terminated"
CHILD_KILLED = "child_killed"

# Span export
SPAN_EXPORTED = "span_exported"
SPANS_FLUSHED = "spans_flushed"
SPAN_EXPORT_FAILED = "span_export_failed"

# Offline combination
TRACE_FILE_READ = "trace_file_read"
TRACE_FILES_COMBINED = "trace_files_combined"
