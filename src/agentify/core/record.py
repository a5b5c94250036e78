"""Per-request compilation trace: state machine, timestamped log and progress events."""

import threading
from datetime import (
    datetime,
    timezone,
)
from enum import Enum
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
)

from pydantic import (
    BaseModel,
    Field,
)

from agentify.core.errors import (
    CompilerError,
    RecordClosedError,
)
from agentify.core.schema import AgentPluginDescriptor

MOCK_MARKER = "[MOCK]"
"""Prefix of the log line that marks a placeholder (non-functional) artifact."""


class CompilationState(str, Enum):
    """Orchestrator states.  The last three are terminal."""

    CREATED = "created"
    NORMALIZING = "normalizing"
    INSPECTING = "inspecting"
    READY = "ready"
    TOOLCHAIN_MISSING = "toolchain_missing"
    RENDERING = "rendering"
    BUILDING = "building"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEGRADED = "degraded"


class CompilationStatus(str, Enum):
    """Caller-facing status of a compile request."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DEGRADED = "degraded"


TERMINAL_STATES = {
    CompilationState.SUCCEEDED: CompilationStatus.SUCCEEDED,
    CompilationState.FAILED: CompilationStatus.FAILED,
    CompilationState.DEGRADED: CompilationStatus.DEGRADED,
}

_TRANSITIONS = {
    CompilationState.CREATED: {CompilationState.NORMALIZING, CompilationState.FAILED},
    CompilationState.NORMALIZING: {CompilationState.INSPECTING, CompilationState.FAILED},
    CompilationState.INSPECTING: {
        CompilationState.READY,
        CompilationState.TOOLCHAIN_MISSING,
        CompilationState.FAILED,
    },
    CompilationState.TOOLCHAIN_MISSING: {
        CompilationState.READY,
        CompilationState.DEGRADED,
        CompilationState.FAILED,
    },
    CompilationState.READY: {CompilationState.RENDERING, CompilationState.FAILED},
    CompilationState.RENDERING: {CompilationState.BUILDING, CompilationState.FAILED},
    CompilationState.BUILDING: {CompilationState.SUCCEEDED, CompilationState.FAILED},
}

# Progress percentage reported when a state is entered.
STATE_PROGRESS = {
    CompilationState.CREATED: 0,
    CompilationState.NORMALIZING: 5,
    CompilationState.INSPECTING: 15,
    CompilationState.TOOLCHAIN_MISSING: 20,
    CompilationState.READY: 30,
    CompilationState.RENDERING: 45,
    CompilationState.BUILDING: 60,
    CompilationState.SUCCEEDED: 100,
    CompilationState.FAILED: 100,
    CompilationState.DEGRADED: 100,
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class LogEntry(BaseModel):
    """One timestamped line of the compilation log."""

    timestamp: datetime = Field(default_factory=_now)
    message: str
    source: str = "orchestrator"


class ProgressEvent(BaseModel):
    """Emitted after every state transition for the real-time progress channel."""

    request_id: str
    sequence: int
    step: str
    progress: int = Field(..., ge=0, le=100)
    message: str
    status: CompilationStatus
    timestamp: datetime = Field(default_factory=_now)


class CompilationRecord:
    """
    Mutable trace of one compile request.

    The orchestrator and the build output reader append to it concurrently, so every mutation
    holds the record lock.  Once a terminal state is reached the record is closed.
    """

    def __init__(self, request_id: str) -> None:
        self.request_id = request_id
        self.created_at = _now()
        self.state = CompilationState.CREATED
        self.artifact_path: Optional[Path] = None
        self.error: Optional[Dict[str, Any]] = None
        self.descriptor: Optional[AgentPluginDescriptor] = None
        self._logs: List[LogEntry] = []
        self._events: List[ProgressEvent] = []
        self._lock = threading.Lock()

    # ------------------------------------------------------------------ #
    # Read side
    # ------------------------------------------------------------------ #
    @property
    def status(self) -> CompilationStatus:
        return TERMINAL_STATES.get(self.state, CompilationStatus.PENDING)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def logs(self) -> List[LogEntry]:
        with self._lock:
            return list(self._logs)

    @property
    def events(self) -> List[ProgressEvent]:
        with self._lock:
            return list(self._events)

    def messages(self) -> List[str]:
        """Log messages without timestamps."""
        return [entry.message for entry in self.logs]

    def tail(self, count: int) -> List[str]:
        """Return the last *count* log messages."""
        return self.messages()[-count:] if count > 0 else []

    # ------------------------------------------------------------------ #
    # Write side
    # ------------------------------------------------------------------ #
    def log(self, message: str, source: str = "orchestrator") -> LogEntry:
        """Append a log line.  Raises :class:`RecordClosedError` once terminal."""
        entry = LogEntry(message=message, source=source)
        with self._lock:
            self._ensure_open()
            self._logs.append(entry)
        return entry

    def transition(self, state: CompilationState, message: str) -> ProgressEvent:
        """Move to *state*, log *message* and return the progress event for it."""
        with self._lock:
            self._ensure_open()
            if state not in _TRANSITIONS.get(self.state, set()):
                raise RuntimeError(f"Illegal transition {self.state.value} -> {state.value}")
            self._logs.append(LogEntry(message=message))
            self.state = state
            event = ProgressEvent(
                request_id=self.request_id,
                sequence=len(self._events),
                step=state.value,
                progress=STATE_PROGRESS[state],
                message=message,
                status=TERMINAL_STATES.get(state, CompilationStatus.PENDING),
            )
            self._events.append(event)
        return event

    def set_error(self, error: BaseException) -> None:
        with self._lock:
            self._ensure_open()
            if isinstance(error, CompilerError):
                self.error = error.to_dict()
            else:
                self.error = {"type": type(error).__name__, "message": str(error)}

    def set_artifact(self, path: Path) -> None:
        with self._lock:
            self._ensure_open()
            self.artifact_path = path

    def _ensure_open(self) -> None:
        if self.state in TERMINAL_STATES:
            raise RecordClosedError(f"Compilation {self.request_id} is already {self.state.value}")

    # ------------------------------------------------------------------ #
    # Serialization
    # ------------------------------------------------------------------ #
    def to_dict(self, include_events: bool = True) -> Dict[str, Any]:
        """Plain JSON-compatible snapshot of the record."""
        descriptor = self.descriptor
        data: Dict[str, Any] = {
            "request_id": self.request_id,
            "created_at": self.created_at.isoformat(),
            "state": self.state.value,
            "status": self.status.value,
            "artifact_path": str(self.artifact_path) if self.artifact_path else None,
            "agent_id": descriptor.agent_id if descriptor else None,
            "agent_name": descriptor.agent_name if descriptor else None,
            "error": self.error,
            "logs": [entry.model_dump(mode="json") for entry in self.logs],
        }
        if include_events:
            data["events"] = [event.model_dump(mode="json") for event in self.events]
        return data
