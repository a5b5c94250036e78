"""
Build invoker: runs the external compiler against a rendered source tree.

Output is streamed line by line into the compilation record while the process runs.  Each build
holds one slot of a bounded semaphore, so simultaneous compiles cannot spawn an unbounded number
of compilers.
"""

import logging
import os
import shlex
import signal
import subprocess
import threading
import time
from collections import deque
from dataclasses import (
    dataclass,
    field,
)
from pathlib import Path
from typing import (
    IO,
    Deque,
    Dict,
    List,
    Mapping,
    Optional,
    Sequence,
)

from agentify.compiler.renderer import RenderedSourceTree
from agentify.core.errors import (
    BuildError,
    RecordClosedError,
)
from agentify.core.record import CompilationRecord
from agentify.core.schema import (
    BuildTarget,
    IsolationLimits,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildCommand:
    """One external command of a build.  ``{output}`` in *argv* is replaced by the artifact path."""

    argv: Sequence[str]
    env: Mapping[str, str] = field(default_factory=dict)
    extension: str = ""

    def resolve(self, output_path: Path) -> List[str]:
        return [part.format(output=str(output_path)) for part in self.argv]


DEFAULT_COMMANDS: Dict[BuildTarget, BuildCommand] = {
    BuildTarget.NATIVE_MODULE: BuildCommand(
        argv=("go", "build", "-buildmode=plugin", "-o", "{output}", "."),
        env={"CGO_ENABLED": "1"},
        extension=".so",
    ),
    BuildTarget.BYTECODE_MODULE: BuildCommand(
        argv=("go", "build", "-o", "{output}", "."),
        env={"GOOS": "wasip1", "GOARCH": "wasm", "CGO_ENABLED": "0"},
        extension=".wasm",
    ),
}

DEPENDENCY_COMMAND = BuildCommand(
    argv=("python3", "-m", "pip", "install", "--target", "vendor", "-r", "requirements.txt"),
)


class BuildInvoker:
    """Drive the compiler for a build target with a deadline, cancellation and bounded slots."""

    def __init__(
        self,
        commands: Optional[Mapping[BuildTarget, BuildCommand]] = None,
        dependency_command: Optional[BuildCommand] = DEPENDENCY_COMMAND,
        max_concurrent: int = 2,
        timeout_floor: float = 1.0,
        tail_lines: int = 20,
        grace_period: float = 1.0,
        poll_interval: float = 0.1,
    ) -> None:
        self._commands = dict(commands or DEFAULT_COMMANDS)
        self._dependency_command = dependency_command
        self._slots = threading.BoundedSemaphore(max_concurrent)
        self._timeout_floor = timeout_floor
        self._tail_lines = tail_lines
        self._grace_period = grace_period
        self._poll_interval = poll_interval

    def extension_for(self, target: BuildTarget) -> str:
        return self._commands[target].extension

    def timeout_for(self, isolation: IsolationLimits) -> float:
        """Wall-clock budget of a build: the declared limit, never below the floor."""
        return max(isolation.time_limit_s, self._timeout_floor)

    def build(
        self,
        tree: RenderedSourceTree,
        target: BuildTarget,
        isolation: IsolationLimits,
        output_path: Path,
        record: CompilationRecord,
        cancel_event: Optional[threading.Event] = None,
    ) -> Path:
        """
        Compile *tree* for *target* into *output_path*.

        All steps of the build share one deadline derived from *isolation*.

        Returns
        -------
        Path
            The resolved path of the produced module.

        Raises
        ------
        BuildError
            On non-zero exit, timeout, cancellation or a missing artifact.
        """
        if target not in self._commands:
            raise BuildError(f"No build command configured for target '{target.value}'")
        steps = []
        if tree.has_requirements and self._dependency_command is not None:
            steps.append(self._dependency_command)
        steps.append(self._commands[target])

        try:
            output_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise BuildError(f"Cannot create output directory {output_path.parent}: {exc}") from exc

        self._acquire_slot(record, cancel_event)
        try:
            timeout = self.timeout_for(isolation)
            deadline = time.monotonic() + timeout
            record.log(f"Building {target.value} (timeout {timeout:g}s)", source="build")
            for step in steps:
                self._run_step(
                    step, tree.root, output_path, deadline, timeout, record, cancel_event
                )
        finally:
            self._slots.release()

        if not output_path.exists():
            raise BuildError(
                f"Build finished but produced no artifact at {output_path}",
                exit_code=0,
                last_lines=record.tail(self._tail_lines),
            )
        logger.info("Built %s", output_path)
        return output_path.resolve()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #
    def _acquire_slot(
        self, record: CompilationRecord, cancel_event: Optional[threading.Event]
    ) -> None:
        if self._slots.acquire(blocking=False):
            return
        record.log("Waiting for a free build slot", source="build")
        while not self._slots.acquire(timeout=self._poll_interval):
            if cancel_event is not None and cancel_event.is_set():
                raise BuildError("Build cancelled while waiting for a slot", cancelled=True)

    def _run_step(
        self,
        step: BuildCommand,
        cwd: Path,
        output_path: Path,
        deadline: float,
        timeout: float,
        record: CompilationRecord,
        cancel_event: Optional[threading.Event],
    ) -> None:
        argv = step.resolve(output_path)
        record.log("$ " + " ".join(shlex.quote(arg) for arg in argv), source="build")
        try:
            process = subprocess.Popen(
                argv,
                cwd=str(cwd),
                env={**os.environ, **step.env},
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                encoding="utf-8",
                errors="replace",
                start_new_session=os.name == "posix",
            )
        except OSError as exc:
            raise BuildError(f"Could not start '{argv[0]}': {exc}") from exc

        tail: Deque[str] = deque(maxlen=self._tail_lines)
        reader = threading.Thread(
            target=self._pump,
            args=(process.stdout, record, tail),
            name=f"build-output-{process.pid}",
            daemon=True,
        )
        reader.start()

        outcome = "exited"
        try:
            outcome = self._wait(process, deadline, cancel_event)
        finally:
            if process.poll() is None:
                self._stop(process, force=outcome != "cancelled")
            reader.join(timeout=self._grace_period)

        if outcome == "timeout":
            raise BuildError(
                f"Build timed out after {timeout:g}s",
                timed_out=True,
                last_lines=list(tail),
            )
        if outcome == "cancelled":
            raise BuildError("Build cancelled", cancelled=True, last_lines=list(tail))
        if process.returncode != 0:
            raise BuildError(
                f"'{argv[0]}' exited with code {process.returncode}",
                exit_code=process.returncode,
                last_lines=list(tail),
            )

    def _wait(
        self,
        process: "subprocess.Popen[str]",
        deadline: float,
        cancel_event: Optional[threading.Event],
    ) -> str:
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return "timeout"
            if cancel_event is not None and cancel_event.is_set():
                return "cancelled"
            try:
                process.wait(timeout=min(self._poll_interval, remaining))
                return "exited"
            except subprocess.TimeoutExpired:
                continue

    def _stop(self, process: "subprocess.Popen[str]", force: bool) -> None:
        """Terminate the process group; kill it if it outlives the grace period."""
        if not force:
            self._signal(process, signal.SIGTERM)
            try:
                process.wait(timeout=self._grace_period)
                return
            except subprocess.TimeoutExpired:
                logger.warning("Build process %d ignored SIGTERM, killing it", process.pid)
        self._signal(process, getattr(signal, "SIGKILL", signal.SIGTERM))
        process.wait()

    @staticmethod
    def _signal(process: "subprocess.Popen[str]", sig: int) -> None:
        try:
            if os.name == "posix":
                # The compiler spawns children that hold the output pipe open.
                os.killpg(process.pid, sig)
            elif sig == signal.SIGTERM:
                process.terminate()
            else:
                process.kill()
        except ProcessLookupError:
            pass

    @staticmethod
    def _pump(stream: Optional[IO[str]], record: CompilationRecord, tail: Deque[str]) -> None:
        if stream is None:
            return
        with stream:
            for line in stream:
                line = line.rstrip("\n")
                tail.append(line)
                try:
                    record.log(line, source="build")
                except RecordClosedError:
                    return
