"""Error hierarchy for trace propagation, process launching, and export."""

from collections.abc import Sequence
from enum import Enum


class ProcTraceError(Exception):
    """Base exception for all proctrace errors."""

    pass


class IdentityError(ProcTraceError):
    """Raised when an inherited RUN_ID is missing or not a valid identifier."""

    pass


class DecodeErrorKind(str, Enum):
    """Classification of TRACEPARENT decode failures."""

    MALFORMED_FORMAT = "malformed_format"
    INVALID_ID = "invalid_id"
    INVALID_FLAGS = "invalid_flags"


class DecodeError(ProcTraceError):
    """Raised when a TRACEPARENT value cannot be decoded.

    Attributes:
        kind: Which part of the value was rejected.
        value: The offending raw value.
    """

    def __init__(self, kind: DecodeErrorKind, value: str, detail: str) -> None:  # noqa: D107
        self.kind = kind
        self.value = value
        self.detail = detail
        super().__init__(f"invalid TRACEPARENT {value!r} ({kind.value}): {detail}")


class LaunchError(ProcTraceError):
    """Base exception for failures launching the next process of the chain."""

    def __init__(self, command: Sequence[str], message: str) -> None:  # noqa: D107
        self.command = list(command)
        super().__init__(message)

    @property
    def exit_code(self) -> int:
        """Exit code this process should report for the failure."""
        return 1


class SpawnFailed(LaunchError):
    """Raised when the OS refuses or fails to start the child process."""

    def __init__(self, command: Sequence[str], cause: OSError) -> None:  # noqa: D107
        self.cause = cause
        super().__init__(command, f"failed to spawn {list(command)!r}: {cause}")


class ChildFailed(LaunchError):
    """Raised when the child process ran but exited unsuccessfully.

    Attributes:
        status: The child's return code. Negative values mean the child was
            killed by that signal number.
    """

    def __init__(self, command: Sequence[str], status: int) -> None:  # noqa: D107
        self.status = status
        super().__init__(command, f"spawned process {list(command)!r} failed with status {status}")

    @property
    def exit_code(self) -> int:
        """The child's status when it fits an exit code, 1 otherwise."""
        if 0 < self.status < 256:
            return self.status
        return 1


class ExportError(ProcTraceError):
    """Raised when finished spans cannot be persisted."""

    pass


class CombineError(ProcTraceError):
    """Raised when per-process trace files cannot be read or merged."""

    pass
