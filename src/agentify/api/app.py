"""
Core API backend for Agentify.

This module exposes the agent compiler through a RESTful API used by the configuration UI.
It exposes the following endpoints:
- **GET /health**  - liveness probe for health checks.
- **GET /toolchain** - availability of the build tools on this host.
- **POST /normalize** - preview the canonical descriptor of a UI configuration.
- **POST /compile** - compile synchronously and return the full record.
- **POST /compilations** - queue a compile, returns a request ID.
- **GET /compilations** - list request IDs held in memory.
- **GET /compilations/{id}** - record snapshot (archived records once released).
- **GET /compilations/{id}/events** - progress events (``?after=<sequence>``).
- **GET /compilations/{id}/stream** - server-sent ``compilation_update`` events.
- **DELETE /compilations/{id}** - cancel a running compile.
"""

import asyncio
import json
import logging
import threading
from collections import OrderedDict
from typing import (
    Any,
    AsyncIterator,
    Dict,
    List,
    Optional,
)

from fastapi import (
    Body,
    Depends,
    FastAPI,
    HTTPException,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from agentify.api.models import (
    CancelResponse,
    CompilationResponse,
    EventsResponse,
    SubmitResponse,
    ToolchainResponse,
)
from agentify.common import (
    AnsiColors,
    colored_print,
)
from agentify.compiler.normalizer import normalize
from agentify.compiler.orchestrator import (
    CompilationOrchestrator,
    CompileHandle,
)
from agentify.compiler.record_store import load_records
from agentify.config import settings
from agentify.core.errors import ValidationError

logger = logging.getLogger(__name__)

# Compile handles by request ID, oldest first. Terminal handles beyond
# settings.MAX_TRACKED_COMPILATIONS are dropped and served from the on-disk archive.
compilations: "OrderedDict[str, CompileHandle]" = OrderedDict()
_compilations_lock = threading.Lock()

_orchestrator: Optional[CompilationOrchestrator] = None
_orchestrator_lock = threading.Lock()

STREAM_POLL_INTERVAL = 0.2  # seconds between checks for new progress events

app = FastAPI(
    title="Agentify Compiler API",
    version="0.1.0",
    description="Compiles agent configurations into plugin modules",
)

# Add CORS middleware to allow requests from the configuration UI
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def get_orchestrator() -> CompilationOrchestrator:
    """Return the process-wide orchestrator, created from settings on first use."""
    global _orchestrator  # pylint: disable=global-statement
    with _orchestrator_lock:
        if _orchestrator is None:
            _orchestrator = CompilationOrchestrator.from_settings(settings)
        return _orchestrator


def track(handle: CompileHandle) -> None:
    """Remember *handle* and forget the oldest finished handles beyond the configured cap."""
    with _compilations_lock:
        compilations[handle.request_id] = handle
        finished = [
            rid
            for rid, h in compilations.items()
            if rid != handle.request_id and h.record.is_terminal
        ]
        excess = len(compilations) - settings.MAX_TRACKED_COMPILATIONS
        for request_id in finished[: max(excess, 0)]:
            del compilations[request_id]
            logger.debug("Released compilation %s (archived)", request_id)


def get_handle(request_id: str) -> CompileHandle:
    """Look up a compile handle or raise 404."""
    handle = compilations.get(request_id)
    if handle is None:
        raise HTTPException(status_code=404, detail=f"Unknown compilation '{request_id}'")
    return handle


def find_archived(request_id: str, orchestrator: CompilationOrchestrator) -> Dict[str, Any]:
    """Look up a released compilation in the on-disk archive or raise 404."""
    for data in reversed(load_records(orchestrator.environment.log_root)):
        if data.get("request_id") == request_id:
            return data
    raise HTTPException(status_code=404, detail=f"Unknown compilation '{request_id}'")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.get("/toolchain", response_model=ToolchainResponse, summary="Build tool availability")
def toolchain(
    orchestrator: CompilationOrchestrator = Depends(get_orchestrator),
) -> ToolchainResponse:
    """Probe every known build tool."""
    statuses = orchestrator.inspector.detect()
    return ToolchainResponse(ready=all(s.available for s in statuses), tools=statuses)


@app.post("/normalize", summary="Preview the canonical descriptor")
def normalize_endpoint(config: Dict[str, Any] = Body(...)) -> Dict[str, Any]:
    """Convert a UI configuration into the descriptor the compiler would build."""
    try:
        descriptor = normalize(config)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.to_dict()) from exc
    return descriptor.model_dump(mode="json")


@app.post("/compile", response_model=CompilationResponse, summary="Compile synchronously")
def compile_endpoint(
    config: Dict[str, Any] = Body(...),
    orchestrator: CompilationOrchestrator = Depends(get_orchestrator),
) -> CompilationResponse:
    """Compile a configuration and wait for the terminal record."""
    record = orchestrator.compile(config)
    response = CompilationResponse.from_record(record)
    if record.error and record.error.get("type") == ValidationError.kind:
        raise HTTPException(status_code=422, detail=response.model_dump())
    return response


@app.post(
    "/compilations",
    response_model=SubmitResponse,
    status_code=202,
    summary="Queue a compile",
)
def submit_endpoint(
    config: Dict[str, Any] = Body(...),
    orchestrator: CompilationOrchestrator = Depends(get_orchestrator),
) -> SubmitResponse:
    """Queue a compile on the worker pool and return its request ID."""
    handle = orchestrator.submit(config)
    track(handle)
    logger.info("Queued compilation %s", handle.request_id)
    return SubmitResponse(request_id=handle.request_id, status=handle.record.status.value)


@app.get("/compilations", response_model=List[str], summary="List compilations")
async def list_compilations() -> List[str]:
    """List the request IDs still held in memory."""
    with _compilations_lock:
        return list(compilations.keys())


@app.get(
    "/compilations/{request_id}",
    response_model=CompilationResponse,
    summary="Compilation status",
)
def get_compilation(
    request_id: str,
    orchestrator: CompilationOrchestrator = Depends(get_orchestrator),
) -> CompilationResponse:
    """Return the current snapshot of a compilation record, falling back to the archive."""
    handle = compilations.get(request_id)
    if handle is not None:
        return CompilationResponse.from_record(handle.record)
    return CompilationResponse(**find_archived(request_id, orchestrator))


@app.get(
    "/compilations/{request_id}/events",
    response_model=EventsResponse,
    summary="Compilation progress events",
)
async def get_events(request_id: str, after: int = -1) -> EventsResponse:
    """Return progress events with a sequence number greater than *after*."""
    record = get_handle(request_id).record
    # Status first: a terminal status must never be paired with events missing the terminal one.
    status = record.status
    events = [event for event in record.events if event.sequence > after]
    return EventsResponse(request_id=request_id, status=status.value, events=events)


@app.get("/compilations/{request_id}/stream", summary="Stream compilation progress")
async def stream_events(request_id: str, after: int = -1) -> StreamingResponse:
    """
    Push progress events as server-sent ``compilation_update`` messages.

    The stream closes after the terminal event has been sent.
    """
    record = get_handle(request_id).record

    async def event_generator() -> AsyncIterator[str]:
        last_sequence = after
        while True:
            terminal = record.is_terminal
            for event in record.events:
                if event.sequence <= last_sequence:
                    continue
                last_sequence = event.sequence
                message = {"type": "compilation_update", "data": event.model_dump(mode="json")}
                yield f"data: {json.dumps(message)}\n\n"
            if terminal:
                return
            await asyncio.sleep(STREAM_POLL_INTERVAL)

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@app.delete(
    "/compilations/{request_id}",
    response_model=CancelResponse,
    summary="Cancel a compilation",
)
async def cancel_compilation(request_id: str) -> CancelResponse:
    """Cancel a queued or running compile."""
    cancelled = get_handle(request_id).cancel()
    return CancelResponse(request_id=request_id, cancelled=cancelled)


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the Agentify compiler API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg-import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    orchestrator = get_orchestrator()
    logger.info(
        "Starting Agentify API at %s:%d (reload=%s, output=%s, installs=%s)",
        host,
        port,
        reload,
        orchestrator.environment.output_root,
        orchestrator.environment.allow_tool_install,
    )

    colored_print(
        f"🔧 Agentify compiler API is running at http://localhost:{port}.",
        AnsiColors.GREEN,
    )
    colored_print(
        f"Visit http://localhost:{port}/docs for API documentation.",
        AnsiColors.BLUE,
    )
    try:
        uvicorn.run(
            "agentify.api.app:app",
            host=host,
            port=port,
            reload=reload,
            log_level=log_level,
        )
    finally:
        orchestrator.shutdown(wait=False)


# ---------------------------------------------------------------------------
# `python -m agentify.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
