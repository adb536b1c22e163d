"""End-to-end tests: a real parent -> child -> grandchild process chain."""

import json
import os
import pathlib
import signal
import subprocess
import sys
import time

import pytest

from proctrace.trace.combine import build_span_tree, combine_run
from proctrace.trace.ids import new_id

CHAIN_TIMEOUT_SECONDS = 60


def _chain_env(trace_dir: pathlib.Path, **extra: str) -> dict[str, str]:
    env = {
        k: v
        for k, v in os.environ.items()
        if k not in ("RUN_ID", "PARENT_ID", "TRACEPARENT") and not k.startswith("PROCTRACE_")
    }
    env["PROCTRACE_TRACE_DIR"] = str(trace_dir)
    env["PROCTRACE_WORK_DURATION_SECONDS"] = "0"
    env["PROCTRACE_LOG_LEVEL"] = "WARNING"
    env.update(extra)
    return env


def _run(args: list[str], cwd: pathlib.Path, env: dict[str, str]) -> subprocess.CompletedProcess:
    return subprocess.run(
        [sys.executable, "-m", "proctrace", *args],
        cwd=cwd,
        env=env,
        capture_output=True,
        text=True,
        timeout=CHAIN_TIMEOUT_SECONDS,
    )


def _only_run_dir(trace_dir: pathlib.Path) -> pathlib.Path:
    [run_dir] = [path for path in trace_dir.iterdir() if path.is_dir()]
    return run_dir


class TestProcessChain:
    """Run the whole chain as separate OS processes."""

    def test_chain_produces_one_linear_trace(self, tmp_path: pathlib.Path) -> None:
        """Test that every process shares one run and links into a single tree."""
        trace_dir = tmp_path / "logs"

        result = _run(["parent", "spawn-self"], tmp_path, _chain_env(trace_dir))

        assert result.returncode == 0, result.stderr
        run_dir = _only_run_dir(trace_dir)
        roles = sorted(path.name.split("-", 1)[0] for path in run_dir.glob("*.json"))
        assert roles == ["child", "grandchild", "parent", "parent"]

        combined = combine_run(trace_dir, run_dir.name)
        [root] = build_span_tree(combined.resource_spans)

        names = []
        node = root
        while True:
            names.append(node.name)
            assert node.attributes["run_id"] == run_dir.name
            if not node.children:
                break
            [node] = node.children
        assert names == ["parent spawn-self", "parent spawn-child", "child", "grandchild"]

    def test_each_process_names_its_launcher(self, tmp_path: pathlib.Path) -> None:
        """Test that parent_id of every process is the self_id of the one before it."""
        trace_dir = tmp_path / "logs"
        result = _run(["parent", "spawn-child"], tmp_path, _chain_env(trace_dir))
        assert result.returncode == 0, result.stderr

        run_dir = _only_run_dir(trace_dir)
        [root] = build_span_tree(combine_run(trace_dir, run_dir.name).resource_spans)
        [child] = root.children
        [grandchild] = child.children

        assert root.attributes["parent_id"] is None
        assert child.attributes["parent_id"] == root.attributes["self_id"]
        assert grandchild.attributes["parent_id"] == child.attributes["self_id"]
        assert len({root.trace_id, child.trace_id, grandchild.trace_id}) == 1

    def test_external_run_id_is_reused(self, tmp_path: pathlib.Path) -> None:
        """Test that a RUN_ID set by the caller names the run directory."""
        trace_dir = tmp_path / "logs"
        run_id = new_id()

        result = _run(["parent", "spawn-child"], tmp_path, _chain_env(trace_dir, RUN_ID=run_id))

        assert result.returncode == 0, result.stderr
        assert _only_run_dir(trace_dir).name == run_id

    def test_grandchild_failure_propagates_to_parent(self, tmp_path: pathlib.Path) -> None:
        """Test that a failing workload fails every ancestor and is still traced."""
        trace_dir = tmp_path / "logs"
        workload = json.dumps([sys.executable, "-c", "raise SystemExit(5)"])

        result = _run(
            ["parent", "spawn-self"],
            tmp_path,
            _chain_env(trace_dir, PROCTRACE_WORKLOAD_COMMAND=workload),
        )

        assert result.returncode == 5
        run_dir = _only_run_dir(trace_dir)
        combined = combine_run(trace_dir, run_dir.name)
        [root] = build_span_tree(combined.resource_spans)
        assert len(list(run_dir.glob("*-*.json"))) == 4

        node = root
        while True:
            assert node.status_code == 2
            if not node.children:
                break
            [node] = node.children

    def test_malformed_traceparent_exits_with_startup_error(
        self, tmp_path: pathlib.Path
    ) -> None:
        """Test that a corrupt inherited TRACEPARENT aborts before any span is written."""
        trace_dir = tmp_path / "logs"
        env = _chain_env(trace_dir, RUN_ID=new_id(), TRACEPARENT="00-abc-def-01")

        result = _run(["child"], tmp_path, env)

        assert result.returncode == 2
        assert "TRACEPARENT" in result.stderr
        assert not trace_dir.exists()

    def test_traceparent_without_run_id_exits_with_startup_error(
        self, tmp_path: pathlib.Path
    ) -> None:
        """Test that a trace context inherited without RUN_ID is rejected."""
        trace_dir = tmp_path / "logs"
        env = _chain_env(
            trace_dir, TRACEPARENT="00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01"
        )

        result = _run(["grandchild"], tmp_path, env)
        assert result.returncode == 2


# Workload that reports it is running, then blocks until signalled.
BLOCKING_WORKLOAD = (
    "import pathlib, sys, time; pathlib.Path(sys.argv[1]).write_text('ok'); time.sleep(60)"
)


def _start(
    args: list[str], cwd: pathlib.Path, env: dict[str, str], marker: pathlib.Path
) -> subprocess.Popen:
    """Start a chain process in the background and wait until its workload is running."""
    process = subprocess.Popen(
        [sys.executable, "-m", "proctrace", *args],
        cwd=cwd,
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.PIPE,
        text=True,
        # Default SIGINT disposition, so the interpreter turns Ctrl-C into KeyboardInterrupt.
        preexec_fn=lambda: signal.signal(signal.SIGINT, signal.SIG_DFL),
    )
    deadline = time.monotonic() + CHAIN_TIMEOUT_SECONDS
    while not marker.exists():
        if process.poll() is not None or time.monotonic() > deadline:
            process.kill()
            _, stderr = process.communicate()
            pytest.fail(f"workload never started: {stderr}")
        time.sleep(0.05)
    return process


def _finish(process: subprocess.Popen) -> int:
    try:
        process.communicate(timeout=CHAIN_TIMEOUT_SECONDS)
    finally:
        if process.poll() is None:
            process.kill()
            process.wait()
    return process.returncode


@pytest.mark.skipif(sys.platform == "win32", reason="needs POSIX signals")
class TestChainSignals:
    """Signal a running chain and check what it leaves behind."""

    def _workload_env(self, trace_dir: pathlib.Path, marker: pathlib.Path) -> dict[str, str]:
        workload = json.dumps([sys.executable, "-c", BLOCKING_WORKLOAD, str(marker)])
        return _chain_env(trace_dir, PROCTRACE_WORKLOAD_COMMAND=workload)

    def test_sigterm_to_root_flushes_every_descendant(self, tmp_path: pathlib.Path) -> None:
        """Test that SIGTERM to the root stops the chain with every span written."""
        trace_dir = tmp_path / "logs"
        marker = tmp_path / "workload-started"
        process = _start(
            ["parent", "spawn-child"], tmp_path, self._workload_env(trace_dir, marker), marker
        )

        process.send_signal(signal.SIGTERM)

        assert _finish(process) == 128 + signal.SIGTERM
        run_dir = _only_run_dir(trace_dir)
        roles = sorted(path.name.split("-", 1)[0] for path in run_dir.glob("*.json"))
        assert roles == ["child", "grandchild", "parent"]

        [root] = build_span_tree(combine_run(trace_dir, run_dir.name).resource_spans)
        [child] = root.children
        [grandchild] = child.children
        assert [root.status_code, child.status_code, grandchild.status_code] == [2, 2, 2]

    def test_ctrl_c_exits_130(self, tmp_path: pathlib.Path) -> None:
        """Test that SIGINT is reported as 130 and the span is still written."""
        trace_dir = tmp_path / "logs"
        marker = tmp_path / "workload-started"
        process = _start(["grandchild"], tmp_path, self._workload_env(trace_dir, marker), marker)

        process.send_signal(signal.SIGINT)

        assert _finish(process) == 128 + signal.SIGINT
        run_dir = _only_run_dir(trace_dir)
        assert len(list(run_dir.glob("grandchild-*.json"))) == 1

    def test_sighup_exits_129(self, tmp_path: pathlib.Path) -> None:
        """Test that the exit status names the signal that stopped the process."""
        trace_dir = tmp_path / "logs"
        marker = tmp_path / "workload-started"
        process = _start(["grandchild"], tmp_path, self._workload_env(trace_dir, marker), marker)

        process.send_signal(signal.SIGHUP)

        assert _finish(process) == 128 + signal.SIGHUP
        assert len(list(_only_run_dir(trace_dir).glob("grandchild-*.json"))) == 1
