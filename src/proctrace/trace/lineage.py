"""Span lineage: where this process sits in the chain.

At startup every process reads its inherited context exactly once into an
InheritedContext, resolves it into a ProcessLineage (ROOT or CHILD), and
hands the resulting OutgoingContext to whatever it spawns. Nothing here
reads or writes os.environ after that first read.

Usage:
    inherited = InheritedContext.from_environ()
    lineage = SpanLineageManager(inherited).resolve()
    env = lineage.outgoing().to_env()
"""

import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from proctrace.telemetry import (
    LINEAGE_RESOLVED,
    RUN_ID_INHERITED,
    RUN_ID_MINTED,
    TRACEPARENT_FOUND,
    TRACEPARENT_INVALID,
    TRACEPARENT_MISSING,
    get_logger,
)
from proctrace.trace.errors import DecodeError, IdentityError
from proctrace.trace.ids import new_id, new_span_id, new_trace_id, parse_id
from proctrace.trace.traceparent import (
    DEFAULT_TRACE_FLAGS,
    TRACEPARENT_ENV,
    SpanContext,
    TraceParent,
)

log = get_logger(__name__)

RUN_ID_ENV = "RUN_ID"
PARENT_ID_ENV = "PARENT_ID"


class LineageState(str, Enum):
    """Position of a process in its chain."""

    ROOT = "root"
    CHILD = "child"


@dataclass(frozen=True)
class InheritedContext:
    """Protocol values a process received from its launcher.

    Attributes:
        run_id: Inherited RUN_ID, None if unset.
        parent_id: Self id of the launching process, None if unset.
        traceparent: Raw inherited TRACEPARENT, None if unset.
    """

    run_id: str | None = None
    parent_id: str | None = None
    traceparent: str | None = None

    @classmethod
    def from_environ(cls, environ: Mapping[str, str] | None = None) -> "InheritedContext":
        """Read the protocol variables once.

        Empty strings are treated as unset.

        Args:
            environ: Environment mapping. Defaults to os.environ.

        Returns:
            A snapshot of the inherited values.
        """
        env = os.environ if environ is None else environ
        return cls(
            run_id=env.get(RUN_ID_ENV) or None,
            parent_id=env.get(PARENT_ID_ENV) or None,
            traceparent=env.get(TRACEPARENT_ENV) or None,
        )


@dataclass(frozen=True)
class OutgoingContext:
    """Protocol values this process publishes to the process it spawns."""

    run_id: str
    parent_id: str
    traceparent: str

    def to_env(self) -> dict[str, str]:
        """Environment overrides for the next process."""
        return {
            RUN_ID_ENV: self.run_id,
            PARENT_ID_ENV: self.parent_id,
            TRACEPARENT_ENV: self.traceparent,
        }


@dataclass(frozen=True)
class ProcessLineage:
    """Resolved identity of this process within its run and trace.

    Attributes:
        state: ROOT if no trace context was inherited, CHILD otherwise.
        run_id: Run id shared by the whole chain.
        self_id: This process's own id.
        span_context: Identity of this process's top-level span.
        parent_span_id: Inherited span id, None for ROOT.
        parent_id: Self id of the launching process, if it published one.
    """

    state: LineageState
    run_id: str
    self_id: str
    span_context: SpanContext
    parent_span_id: str | None = None
    parent_id: str | None = None

    @property
    def trace_id(self) -> str:
        """Trace id shared by every span of the chain."""
        return self.span_context.trace_id

    @property
    def span_id(self) -> str:
        """Span id of this process's span."""
        return self.span_context.span_id

    def outgoing(self) -> OutgoingContext:
        """Context to inject into the next process, advancing the span chain by one hop."""
        return OutgoingContext(
            run_id=self.run_id,
            parent_id=self.self_id,
            traceparent=TraceParent.from_span_context(self.span_context).to_header(),
        )


class SpanLineageManager:
    """Decides ROOT vs CHILD once and mints this process's span identity.

    A malformed TRACEPARENT is fatal: falling back to ROOT would silently
    start a second trace and break the tree.

    Args:
        inherited: Values read from the environment at startup.
        self_id: This process's id. Minted if not given.
        id_factory: Run/self id generator.
        trace_id_factory: Trace id generator used in ROOT state.
        span_id_factory: Span id generator.
    """

    def __init__(
        self,
        inherited: InheritedContext,
        self_id: str | None = None,
        *,
        id_factory: Callable[[], str] = new_id,
        trace_id_factory: Callable[[], str] = new_trace_id,
        span_id_factory: Callable[[], str] = new_span_id,
    ) -> None:  # noqa: D107
        self.inherited = inherited
        self.self_id = self_id or id_factory()
        self._id_factory = id_factory
        self._trace_id_factory = trace_id_factory
        self._span_id_factory = span_id_factory
        self._lineage: ProcessLineage | None = None

    def resolve(self) -> ProcessLineage:
        """Resolve the lineage. Later calls return the first result.

        Returns:
            The resolved ProcessLineage.

        Raises:
            DecodeError: If the inherited TRACEPARENT is malformed.
            IdentityError: If the inherited RUN_ID is invalid, or a trace
                context was inherited without a RUN_ID.
        """
        if self._lineage is None:
            self._lineage = self._resolve()
        return self._lineage

    def _decode_parent(self) -> TraceParent | None:
        raw = self.inherited.traceparent
        if raw is None:
            log.info(TRACEPARENT_MISSING)
            return None
        try:
            trace_parent = TraceParent.from_header(raw)
        except DecodeError as e:
            log.error(TRACEPARENT_INVALID, traceparent=raw, kind=e.kind.value, detail=e.detail)
            raise
        log.info(TRACEPARENT_FOUND, traceparent=trace_parent.to_header())
        return trace_parent

    def _resolve_run_id(self, state: LineageState) -> str:
        run_id = self.inherited.run_id
        if run_id is not None:
            parse_id(run_id)
            log.debug(RUN_ID_INHERITED, run_id=run_id)
            return run_id
        if state is LineageState.CHILD:
            raise IdentityError(f"{TRACEPARENT_ENV} inherited without {RUN_ID_ENV}")
        run_id = self._id_factory()
        log.info(RUN_ID_MINTED, run_id=run_id)
        return run_id

    def _resolve(self) -> ProcessLineage:
        trace_parent = self._decode_parent()

        if trace_parent is None:
            state = LineageState.ROOT
            trace_id = self._trace_id_factory()
            trace_flags = DEFAULT_TRACE_FLAGS
            parent_span_id = None
        else:
            state = LineageState.CHILD
            parent_context = trace_parent.to_span_context()
            trace_id = parent_context.trace_id
            trace_flags = parent_context.trace_flags
            parent_span_id = parent_context.span_id

        run_id = self._resolve_run_id(state)

        span_id = self._span_id_factory()
        while span_id == parent_span_id:
            span_id = self._span_id_factory()

        lineage = ProcessLineage(
            state=state,
            run_id=run_id,
            self_id=self.self_id,
            span_context=SpanContext(trace_id=trace_id, span_id=span_id, trace_flags=trace_flags),
            parent_span_id=parent_span_id,
            parent_id=self.inherited.parent_id,
        )
        log.info(
            LINEAGE_RESOLVED,
            state=state.value,
            trace_id=trace_id,
            span_id=span_id,
            parent_span_id=parent_span_id,
            sampled=lineage.span_context.sampled,
        )
        return lineage
