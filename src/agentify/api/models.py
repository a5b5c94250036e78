"""
Pydantic models for Agentify API requests and responses.
This module defines the response schemas used by the compiler API.  Request bodies are the loose
UI configuration dicts, validated by the normalizer rather than by FastAPI.
"""

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

from agentify.compiler.toolchain import ToolchainStatus
from agentify.core.record import (
    CompilationRecord,
    ProgressEvent,
)


# ---------------------------------------------------------------------------
# Pydantic request / response schema
# ---------------------------------------------------------------------------
class CompilationResponse(BaseModel):
    """Snapshot of a compilation record."""

    request_id: str
    state: str
    status: str
    artifact_path: Optional[str] = None
    agent_id: Optional[str] = None
    agent_name: Optional[str] = None
    error: Optional[Dict[str, Any]] = None
    logs: List[Dict[str, Any]] = Field(default_factory=list)

    @classmethod
    def from_record(cls, record: CompilationRecord) -> "CompilationResponse":
        return cls(**record.to_dict(include_events=False))


class SubmitResponse(BaseModel):
    """Returned when a compile is queued."""

    request_id: str
    status: str


class EventsResponse(BaseModel):
    """Progress events of a compile, for clients polling instead of subscribing."""

    request_id: str
    status: str
    events: List[ProgressEvent]


class CancelResponse(BaseModel):
    """Result of a cancellation request."""

    request_id: str
    cancelled: bool


class ToolchainResponse(BaseModel):
    """Current availability of every known build tool."""

    ready: bool
    tools: List[ToolchainStatus]
