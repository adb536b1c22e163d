"""Launching the next process of the chain.

The child inherits this process's environment plus the outgoing trace
context. A launched child never outlives the coroutine waiting on it: if
the wait is cancelled or fails, the child is sent SIGTERM (so it can flush
its own spans and stop its own children), killed if it has not exited within
the terminate timeout, and reaped before the error propagates. On Linux the
kernel also kills the child if this process dies without running any cleanup.
"""

import asyncio
import contextlib
import ctypes
import functools
import os
import signal
import sys
from collections.abc import Mapping, Sequence

from proctrace.telemetry import (
    CHILD_EXITED,
    CHILD_FAILED,
    CHILD_KILLED,
    CHILD_SPAWN_FAILED,
    CHILD_SPAWNING,
    CHILD_TERMINATED,
    get_logger,
)
from proctrace.trace.errors import ChildFailed, SpawnFailed

log = get_logger(__name__)

# prctl(2) option: signal delivered to this process when its parent dies.
PR_SET_PDEATHSIG = 1

DEFAULT_TERMINATE_TIMEOUT_SECONDS = 5.0


def merge_env(base: Mapping[str, str], overrides: Mapping[str, str]) -> dict[str, str]:
    """Base environment with overrides applied; overrides win on conflict."""
    env = dict(base)
    env.update(overrides)
    return env


def _kill_with_parent(launcher_pid: int) -> None:
    """Ask the kernel to SIGKILL the child when the launcher dies (Linux only).

    Runs in the forked child before exec. Covers a launcher killed with
    SIGKILL, where no cleanup code of ours gets to run. If the launcher
    already died before prctl took effect, the child exits at once.

    Args:
        launcher_pid: Pid of the launching process, captured before the fork.
    """
    libc = ctypes.CDLL(None, use_errno=True)
    libc.prctl(PR_SET_PDEATHSIG, signal.SIGKILL, 0, 0, 0)
    if os.getppid() != launcher_pid:
        os._exit(1)


class ProcessLauncher:
    """Starts a child process and translates its exit status.

    Args:
        base_env: Environment the child inherits. Defaults to a copy of
            os.environ taken at launch time.
        cwd: Working directory for the child. Defaults to the current one.
        terminate_timeout: Seconds a child gets to exit after SIGTERM before
            it is killed.
    """

    def __init__(  # noqa: D107
        self,
        base_env: Mapping[str, str] | None = None,
        cwd: str | os.PathLike[str] | None = None,
        terminate_timeout: float = DEFAULT_TERMINATE_TIMEOUT_SECONDS,
    ) -> None:
        self.base_env = base_env
        self.cwd = cwd
        self.terminate_timeout = terminate_timeout

    async def _terminate(self, process: asyncio.subprocess.Process) -> None:
        """SIGTERM the child so it can flush its own spans; SIGKILL it after the timeout."""
        if process.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            process.terminate()
        try:
            await asyncio.wait_for(process.wait(), self.terminate_timeout)
        except asyncio.TimeoutError:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await process.wait()
            log.warning(CHILD_KILLED, pid=process.pid, returncode=process.returncode)
            return
        log.warning(CHILD_TERMINATED, pid=process.pid, returncode=process.returncode)

    async def launch(self, command: Sequence[str], env_overrides: Mapping[str, str]) -> int:
        """Start ``command`` and wait for it to exit successfully.

        Args:
            command: Program and arguments.
            env_overrides: Values added to (or replacing) the inherited environment.

        Returns:
            The child's exit status (always 0).

        Raises:
            SpawnFailed: If the OS could not start the process.
            ChildFailed: If the process exited with a non-zero status.
        """
        env = merge_env(os.environ if self.base_env is None else self.base_env, env_overrides)
        log.info(CHILD_SPAWNING, command=list(command))
        preexec_fn = None
        if sys.platform.startswith("linux"):
            preexec_fn = functools.partial(_kill_with_parent, os.getpid())

        try:
            process = await asyncio.create_subprocess_exec(
                *command,
                env=env,
                cwd=self.cwd,
                preexec_fn=preexec_fn,
            )
        except OSError as e:
            log.error(CHILD_SPAWN_FAILED, command=list(command), error=str(e))
            raise SpawnFailed(command, e) from e

        try:
            status = await process.wait()
        finally:
            # Cancelled or interrupted while the child is still running.
            await asyncio.shield(self._terminate(process))

        if status != 0:
            log.error(CHILD_FAILED, command=list(command), pid=process.pid, status=status)
            raise ChildFailed(command, status)

        log.info(CHILD_EXITED, command=list(command), pid=process.pid, status=status)
        return status
