"""CLI interface for proctrace.

This module provides a Typer-based command-line interface for running the
processes of a traced chain and for inspecting the trace files they leave.

Examples:
    proctrace parent spawn-self
    proctrace combine 0190a6d2-...
    proctrace tree 0190a6d2-... --json
"""

import asyncio
import json
import signal
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.tree import Tree

from proctrace.config import TraceSettings, get_settings
from proctrace.runtime import ParentMode, Role, run_process_with_exit_code
from proctrace.telemetry import configure_logging
from proctrace.trace.combine import (
    SpanNode,
    build_span_tree,
    combine_files,
    combine_run,
    run_trace_files,
)
from proctrace.trace.errors import CombineError

app = typer.Typer(help="Trace context propagation across a chain of processes")
console = Console()


def _load_settings() -> TraceSettings:
    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format, settings.log_file)
    return settings


async def _run_with_signals(role: Role, settings: TraceSettings, mode: ParentMode | None) -> int:
    """Run the process; SIGTERM/SIGHUP cancel it so a running child is stopped too.

    Returns 128 plus the number of the signal that cancelled the run. A
    cancellation no handler saw (Ctrl-C under ``asyncio.run``) propagates.
    """
    task = asyncio.ensure_future(run_process_with_exit_code(role, settings, mode=mode))
    loop = asyncio.get_running_loop()
    handled: list[int] = []
    received: list[int] = []

    def _cancel(signum: int) -> None:
        received.append(signum)
        task.cancel()

    for name in ("SIGTERM", "SIGHUP"):
        sig = getattr(signal, name, None)
        if sig is None:
            continue
        try:
            loop.add_signal_handler(sig, _cancel, sig)
            handled.append(sig)
        except (NotImplementedError, RuntimeError, AttributeError):
            continue
    try:
        return await task
    except asyncio.CancelledError:
        if not received:
            raise
        return 128 + received[0]
    finally:
        for sig in handled:
            loop.remove_signal_handler(sig)


def _run(role: Role, mode: ParentMode | None = None) -> None:
    settings = _load_settings()
    try:
        code = asyncio.run(_run_with_signals(role, settings, mode))
    except KeyboardInterrupt:
        code = 128 + signal.SIGINT
    raise typer.Exit(code)


@app.command(name="parent")
def parent_command(
    mode: ParentMode = typer.Argument(..., help="Re-spawn the parent, or spawn the child"),
) -> None:
    """Run the parent process of the chain."""
    _run(Role.PARENT, mode)


@app.command(name="child")
def child_command() -> None:
    """Run the child process of the chain (spawns the grandchild)."""
    _run(Role.CHILD)


@app.command(name="grandchild")
def grandchild_command() -> None:
    """Run the terminal process of the chain."""
    _run(Role.GRANDCHILD)


@app.command(name="combine")
def combine_command(
    run_id: str = typer.Argument(..., help="Run id whose trace files to merge"),
    output: Optional[Path] = typer.Option(
        None, "--output", "-o", help="Destination file (default: <run dir>/combined.json)"
    ),
) -> None:
    """Merge the per-process trace files of a run into one artifact.

    Examples:
        proctrace combine 0190a6d2-7c5f-7bc9-9969-82646838d255
        proctrace combine 0190a6d2-7c5f-7bc9-9969-82646838d255 -o combined.json
    """
    settings = _load_settings()
    try:
        combined = combine_run(settings.trace_dir, run_id, output)
    except CombineError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    console.print(
        f"[green]Combined {len(combined.source_files)} file(s), "
        f"{len(combined.resource_spans)} resourceSpans entries[/green]"
    )


def _add_nodes(tree: Tree, nodes: list[SpanNode]) -> None:
    for node in nodes:
        label = (
            f"[green]{node.name}[/green] [magenta]{node.span_id}[/magenta] "
            f"[dim]{node.duration_ms} ms status={node.status_code} "
            f"self_id={node.attributes.get('self_id')}[/dim]"
        )
        _add_nodes(tree.add(label), node.children)


@app.command(name="tree")
def tree_command(
    run_id: str = typer.Argument(..., help="Run id to reconstruct"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON instead of a tree"),
) -> None:
    """Reconstruct the span tree of a run from its trace files.

    Examples:
        proctrace tree 0190a6d2-7c5f-7bc9-9969-82646838d255
        proctrace tree 0190a6d2-7c5f-7bc9-9969-82646838d255 --json
    """
    settings = _load_settings()
    try:
        combined = combine_files(run_id, run_trace_files(settings.trace_dir, run_id))
    except CombineError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1) from e

    roots = build_span_tree(combined.resource_spans)
    if json_output:
        typer.echo(json.dumps([root.to_dict() for root in roots], indent=2))
        return

    tree = Tree(f"[bold blue]Run {run_id}[/bold blue]")
    _add_nodes(tree, roots)
    console.print(tree)
    if len(roots) > 1:
        console.print(f"[yellow]{len(roots)} root spans: the trace tree is broken[/yellow]")


def main() -> None:
    """Console script entry point."""
    app()


if __name__ == "__main__":
    main()
