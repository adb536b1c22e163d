"""Per-process runtime: lineage, span, work, next hop.

Every process of a chain runs ``run_process``:

1. mint its self id and resolve lineage from the inherited environment
2. open its trace file and its top-level span (both scoped)
3. do its unit of work
4. launch the next process with the outgoing context, if there is one

Errors from the next hop propagate unchanged, so every ancestor of a failed
process fails too. Spans are flushed before the exit status is reported.
"""

import asyncio
import os
from collections.abc import Mapping
from enum import Enum

from proctrace.config import TraceSettings
from proctrace.launcher import ProcessLauncher
from proctrace.telemetry import (
    PROCESS_COMPLETED,
    PROCESS_FAILED,
    PROCESS_STARTED,
    PROCESS_STARTUP_FAILED,
    WORK_COMPLETED,
    WORK_STARTED,
    bind_process_context,
    get_logger,
)
from proctrace.trace.errors import (
    ChildFailed,
    DecodeError,
    IdentityError,
    LaunchError,
    ProcTraceError,
)
from proctrace.trace.exporter import FileSpanExporter, trace_file_path
from proctrace.trace.ids import new_id
from proctrace.trace.lineage import InheritedContext, ProcessLineage, SpanLineageManager
from proctrace.trace.span import Span, process_span

log = get_logger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_STARTUP_ERROR = 2


class Role(str, Enum):
    """Process roles of the chain."""

    PARENT = "parent"
    CHILD = "child"
    GRANDCHILD = "grandchild"


class ParentMode(str, Enum):
    """What a parent process spawns."""

    SPAWN_SELF = "spawn-self"
    SPAWN_CHILD = "spawn-child"


def next_hop_args(role: Role, mode: ParentMode | None = None) -> list[str] | None:
    """CLI arguments of the next process, None for the terminal role.

    Chain: parent spawn-self -> parent spawn-child -> child -> grandchild.
    """
    if role is Role.PARENT:
        if mode is ParentMode.SPAWN_SELF:
            return [Role.PARENT.value, ParentMode.SPAWN_CHILD.value]
        return [Role.CHILD.value]
    if role is Role.CHILD:
        return [Role.GRANDCHILD.value]
    return None


def exit_code_for(error: BaseException) -> int:
    """Process exit code for an error that ended run_process."""
    if isinstance(error, (IdentityError, DecodeError)):
        return EXIT_STARTUP_ERROR
    if isinstance(error, LaunchError):
        return error.exit_code
    return EXIT_FAILURE


def resolve_lineage(environ: Mapping[str, str] | None = None) -> ProcessLineage:
    """Read the inherited context once and resolve this process's lineage.

    Raises:
        IdentityError: Invalid or missing RUN_ID.
        DecodeError: Malformed TRACEPARENT.
    """
    inherited = InheritedContext.from_environ(environ)
    return SpanLineageManager(inherited, self_id=new_id()).resolve()


async def _do_work(
    role: Role,
    lineage: ProcessLineage,
    span: Span,
    settings: TraceSettings,
    launcher: ProcessLauncher,
) -> None:
    log.info(WORK_STARTED, duration_seconds=settings.work_duration_seconds)
    if settings.work_duration_seconds:
        await asyncio.sleep(settings.work_duration_seconds)

    if role is Role.GRANDCHILD and settings.workload_command:
        span.add_event("workload_started", command=settings.workload_command)
        await launcher.launch(settings.workload_command, lineage.outgoing().to_env())
        span.add_event("workload_completed")

    log.info(WORK_COMPLETED)


async def run_process(
    role: Role,
    settings: TraceSettings,
    mode: ParentMode | None = None,
    environ: Mapping[str, str] | None = None,
    launcher: ProcessLauncher | None = None,
) -> int:
    """Run one process of the chain.

    Args:
        role: This process's role.
        settings: Loaded settings.
        mode: For the parent role, whether to re-spawn itself or the child.
        environ: Environment to read the inherited context from and to pass
            on. Defaults to os.environ.
        launcher: Launcher for the next hop.

    Returns:
        EXIT_OK on success.

    Raises:
        IdentityError: Invalid inherited RUN_ID (before any span is opened).
        DecodeError: Malformed inherited TRACEPARENT (before any span is opened).
        SpawnFailed: The next process could not be started.
        ChildFailed: The next process exited unsuccessfully.
    """
    env = os.environ if environ is None else environ
    lineage = resolve_lineage(env)
    bind_process_context(run_id=lineage.run_id, self_id=lineage.self_id, role=role.value)

    launcher = launcher or ProcessLauncher(
        base_env=env, terminate_timeout=settings.terminate_timeout_seconds
    )
    next_args = next_hop_args(role, mode)
    span_name = f"{role.value} {mode.value}" if mode is not None else role.value

    path = trace_file_path(settings.trace_dir, lineage.run_id, role.value, lineage.self_id)
    log.info(
        PROCESS_STARTED,
        lineage=lineage.state.value,
        parent_id=lineage.parent_id,
        trace_file=str(path),
    )

    resource = {"service.name": settings.service_name, "process.role": role.value}
    with FileSpanExporter(path, resource_attributes=resource) as exporter:
        with process_span(lineage, span_name, exporter, role=role.value) as span:
            await _do_work(role, lineage, span, settings, launcher)

            if next_args is not None:
                command = [*settings.spawn_command, *next_args]
                outgoing = lineage.outgoing()
                span.add_event("child_spawning", command=command, traceparent=outgoing.traceparent)
                try:
                    await launcher.launch(command, outgoing.to_env())
                except ChildFailed as e:
                    span.add_event("child_failed", status=e.status)
                    raise
                span.add_event("child_exited", status=0)

    log.info(PROCESS_COMPLETED, spans_written=exporter.exported_count)
    return EXIT_OK


async def run_process_with_exit_code(
    role: Role,
    settings: TraceSettings,
    mode: ParentMode | None = None,
    environ: Mapping[str, str] | None = None,
) -> int:
    """run_process, with every ProcTraceError logged and mapped to an exit code."""
    try:
        return await run_process(role, settings, mode=mode, environ=environ)
    except (IdentityError, DecodeError) as e:
        log.error(PROCESS_STARTUP_FAILED, error=str(e), error_type=type(e).__name__)
        return exit_code_for(e)
    except ProcTraceError as e:
        log.error(PROCESS_FAILED, error=str(e), error_type=type(e).__name__)
        return exit_code_for(e)
