"""
Compilation orchestrator.

Sequences normalization, toolchain inspection, rendering and building for one request, owns the
request's :class:`~agentify.core.record.CompilationRecord` and decides between a real build and
the degraded (mock) outcome.  Every failure ends in a terminal record; nothing raised by a stage
escapes :meth:`CompilationOrchestrator.compile`.
"""

import json
import logging
import shutil
import threading
import uuid
from concurrent.futures import (
    Future,
    ThreadPoolExecutor,
)
from pathlib import Path
from typing import (
    Any,
    Callable,
    List,
    Optional,
)

from agentify.compiler.build_invoker import BuildInvoker
from agentify.compiler.normalizer import normalize
from agentify.compiler.record_store import save_record
from agentify.compiler.renderer import (
    TemplateRenderer,
    build_manifest,
)
from agentify.compiler.toolchain import (
    NoopInstaller,
    PackageManagerInstaller,
    ToolchainInspector,
    ToolchainInstaller,
    missing_tools,
    required_tools,
)
from agentify.config import (
    ExecutionEnvironment,
    Settings,
)
from agentify.core.errors import (
    BuildError,
    InstallError,
    TemplateError,
    ToolchainError,
    ValidationError,
)
from agentify.core.record import (
    MOCK_MARKER,
    CompilationRecord,
    CompilationState,
    ProgressEvent,
)
from agentify.core.schema import AgentPluginDescriptor
from agentify.tools import ToolCatalog

logger = logging.getLogger(__name__)

ProgressHook = Callable[[ProgressEvent], None]


class CompileHandle:
    """A compile running on the orchestrator's worker pool."""

    def __init__(
        self,
        record: CompilationRecord,
        future: "Future[CompilationRecord]",
        cancel_event: threading.Event,
    ) -> None:
        self.record = record
        self._future = future
        self._cancel_event = cancel_event

    @property
    def request_id(self) -> str:
        return self.record.request_id

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> CompilationRecord:
        """Block until the compile is terminal and return its record."""
        return self._future.result(timeout=timeout)

    def cancel(self) -> bool:
        """
        Ask the compile to stop.  A running build process is terminated and the record ends in
        ``failed`` with reason ``cancelled``.  Returns False if the compile had already finished.
        """
        if self._future.done():
            return False
        self._cancel_event.set()
        return True


class CompilationOrchestrator:
    """Run compile requests through the compiler state machine."""

    def __init__(
        self,
        environment: ExecutionEnvironment,
        inspector: Optional[ToolchainInspector] = None,
        installer: Optional[ToolchainInstaller] = None,
        renderer: Optional[TemplateRenderer] = None,
        invoker: Optional[BuildInvoker] = None,
        catalog: Optional[ToolCatalog] = None,
        max_workers: int = 4,
        keep_workdirs: bool = False,
        archive: bool = True,
    ) -> None:
        self.environment = environment
        self.inspector = inspector or ToolchainInspector()
        self.installer = installer or NoopInstaller()
        self.renderer = renderer or TemplateRenderer()
        self.invoker = invoker or BuildInvoker()
        self._catalog = catalog
        self._max_workers = max_workers
        self._keep_workdirs = keep_workdirs
        self._archive = archive
        self._hooks: List[ProgressHook] = []
        self._executor: Optional[ThreadPoolExecutor] = None
        self._executor_lock = threading.Lock()

    @classmethod
    def from_settings(cls, config: Settings) -> "CompilationOrchestrator":
        """Wire the production collaborators from application settings."""
        environment = ExecutionEnvironment.from_settings(config)
        installer: ToolchainInstaller = (
            PackageManagerInstaller(timeout=config.INSTALL_TIMEOUT)
            if environment.allow_tool_install
            else NoopInstaller()
        )
        return cls(
            environment,
            inspector=ToolchainInspector(probe_timeout=config.TOOL_PROBE_TIMEOUT),
            installer=installer,
            renderer=TemplateRenderer(
                template_dir=Path(config.TEMPLATE_DIR) if config.TEMPLATE_DIR else None
            ),
            invoker=BuildInvoker(
                max_concurrent=config.MAX_CONCURRENT_BUILDS,
                timeout_floor=config.BUILD_TIMEOUT_FLOOR,
            ),
            max_workers=config.MAX_CONCURRENT_COMPILES,
            keep_workdirs=config.KEEP_WORKDIRS,
        )

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #
    def subscribe(self, hook: ProgressHook) -> None:
        """Register *hook* to receive a ProgressEvent after every state transition."""
        self._hooks.append(hook)

    @staticmethod
    def new_record(request_id: Optional[str] = None) -> CompilationRecord:
        return CompilationRecord(request_id or uuid.uuid4().hex[:12])

    def submit(self, raw_input: Any, request_id: Optional[str] = None) -> CompileHandle:
        """Queue a compile on the worker pool and return immediately."""
        record = self.new_record(request_id)
        cancel_event = threading.Event()
        future = self._pool().submit(self.compile, raw_input, record, cancel_event)
        return CompileHandle(record, future, cancel_event)

    def shutdown(self, wait: bool = True) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=wait)
                self._executor = None

    def compile(
        self,
        raw_input: Any,
        record: Optional[CompilationRecord] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> CompilationRecord:
        """
        Compile *raw_input* (a UI configuration or an already normalized descriptor).

        Returns the terminal record: ``succeeded`` with the artifact path, ``degraded`` with a
        placeholder artifact, or ``failed`` with a structured error and the partial log.
        """
        record = record or self.new_record()
        cancel_event = cancel_event or threading.Event()
        workdir: Optional[Path] = None
        try:
            self._check_cancelled(cancel_event)
            self._advance(record, CompilationState.NORMALIZING, "Normalizing agent configuration")
            try:
                descriptor = (
                    raw_input
                    if isinstance(raw_input, AgentPluginDescriptor)
                    else normalize(raw_input, catalog=self._catalog)
                )
            except ValidationError as exc:
                self._fail(record, exc, f"Validation failed: {exc}")
                return record
            record.descriptor = descriptor
            record.log(
                f"Agent {descriptor.agent_name} ({descriptor.agent_id}): "
                f"{len(descriptor.tools)} tools, {len(descriptor.resources)} resources"
            )

            self._advance(
                record,
                CompilationState.INSPECTING,
                f"Checking toolchain for {descriptor.build_target.value}",
            )
            missing = self._inspect(record, descriptor)
            if missing:
                self._advance(
                    record,
                    CompilationState.TOOLCHAIN_MISSING,
                    f"Missing toolchain components: {', '.join(missing)}",
                )
                missing = self._recover_toolchain(record, descriptor, missing)
                if missing:
                    self._degrade(
                        record,
                        descriptor,
                        ToolchainError(
                            f"Toolchain unavailable: {', '.join(missing)}", missing=missing
                        ),
                    )
                    return record
            self._advance(record, CompilationState.READY, "Toolchain ready")

            self._check_cancelled(cancel_event)
            workdir = self.environment.work_root / f"{descriptor.agent_id}-{record.request_id}"
            self._advance(record, CompilationState.RENDERING, "Rendering plugin source")
            tree = self.renderer.render(descriptor, workdir)
            record.log(f"Rendered {len(tree.files)} files into {workdir}")

            self._check_cancelled(cancel_event)
            extension = self.invoker.extension_for(descriptor.build_target)
            output_path = (
                self.environment.output_root
                / f"{descriptor.agent_id}-{record.request_id}{extension}"
            )
            self._advance(
                record, CompilationState.BUILDING, f"Building {descriptor.build_target.value}"
            )
            artifact = self.invoker.build(
                tree,
                descriptor.build_target,
                descriptor.isolation,
                output_path,
                record,
                cancel_event,
            )
            record.set_artifact(artifact)
            self._advance(record, CompilationState.SUCCEEDED, f"Compiled plugin to {artifact}")
        except (TemplateError, BuildError) as exc:
            self._fail(record, exc, f"{type(exc).__name__}: {exc}")
        except Exception as exc:  # pylint: disable=broad-except
            logger.exception("Unexpected error in compilation %s", record.request_id)
            self._fail(record, exc, f"Unexpected error: {exc}")
        finally:
            if workdir is not None and not self._keep_workdirs:
                shutil.rmtree(workdir, ignore_errors=True)
            self._archive_record(record)
        return record

    # ------------------------------------------------------------------ #
    # Stages
    # ------------------------------------------------------------------ #
    def _inspect(self, record: CompilationRecord, descriptor: AgentPluginDescriptor) -> List[str]:
        statuses = self.inspector.detect(required_tools(descriptor))
        for status in statuses:
            record.log(
                f"{status.name}: {status.version or 'available'}"
                if status.available
                else f"{status.name}: not found"
            )
        return missing_tools(statuses)

    def _recover_toolchain(
        self, record: CompilationRecord, descriptor: AgentPluginDescriptor, missing: List[str]
    ) -> List[str]:
        """Install *missing* tools once and re-detect.  Returns the tools still missing."""
        if not self.environment.allow_tool_install:
            record.log("Tool installation is disabled in this environment")
            return missing

        record.log(f"Attempting to install missing tools: {', '.join(missing)}")
        try:
            self.installer.install(missing)
        except InstallError as exc:
            record.log(f"Toolchain install failed: {exc}")
            return missing

        still_missing = self._inspect(record, descriptor)
        if still_missing:
            record.log(f"Still missing after install: {', '.join(still_missing)}")
        return still_missing

    def _degrade(
        self, record: CompilationRecord, descriptor: AgentPluginDescriptor, error: ToolchainError
    ) -> None:
        extension = self.invoker.extension_for(descriptor.build_target)
        placeholder = (
            self.environment.output_root
            / f"{descriptor.agent_id}-{record.request_id}-mock{extension}"
        )
        payload = {
            "mock": True,
            "reason": str(error),
            "manifest": build_manifest(descriptor),
        }
        try:
            placeholder.parent.mkdir(parents=True, exist_ok=True)
            placeholder.write_text(json.dumps(payload, indent=2, sort_keys=True), encoding="utf-8")
        except OSError as exc:
            self._fail(record, exc, f"Cannot write placeholder artifact: {exc}")
            return

        record.set_error(error)
        record.set_artifact(placeholder)
        record.log(
            f"{MOCK_MARKER} No real build occurred ({error}). "
            f"{placeholder} is a non-functional placeholder."
        )
        self._advance(
            record, CompilationState.DEGRADED, "Compilation degraded to a mock artifact"
        )

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    def _advance(self, record: CompilationRecord, state: CompilationState, message: str) -> None:
        event = record.transition(state, message)
        logger.info("[%s] %s: %s", record.request_id, state.value, message)
        for hook in list(self._hooks):
            try:
                hook(event)
            except Exception:  # pylint: disable=broad-except
                logger.exception("Error in progress hook %r", hook)

    def _fail(self, record: CompilationRecord, error: BaseException, message: str) -> None:
        if record.is_terminal:
            logger.error("[%s] error after terminal state: %s", record.request_id, error)
            return
        record.set_error(error)
        self._advance(record, CompilationState.FAILED, message)

    @staticmethod
    def _check_cancelled(cancel_event: threading.Event) -> None:
        if cancel_event.is_set():
            raise BuildError("Compilation cancelled", cancelled=True)

    def _archive_record(self, record: CompilationRecord) -> None:
        if not self._archive or not record.is_terminal:
            return
        try:
            save_record(record, self.environment.log_root)
        except OSError as exc:
            logger.warning("Could not archive compilation %s: %s", record.request_id, exc)

    def _pool(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers, thread_name_prefix="agentify-compile"
                )
            return self._executor
