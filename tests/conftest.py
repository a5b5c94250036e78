"""
Shared fixtures for the compiler tests.

Nothing here needs Go on the host: builds run small Python scripts through ``sys.executable`` and
toolchain availability is faked.
"""

import sys
from pathlib import Path
from typing import (
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Set,
)

import pytest

from agentify.compiler.build_invoker import (
    BuildCommand,
    BuildInvoker,
)
from agentify.compiler.orchestrator import CompilationOrchestrator
from agentify.compiler.toolchain import (
    ToolchainInspector,
    ToolchainInstaller,
    ToolchainStatus,
)
from agentify.config import ExecutionEnvironment
from agentify.core.errors import InstallError
from agentify.core.schema import BuildTarget

WRITE_ARTIFACT = "import sys; print('compiling plugin'); open(sys.argv[1], 'w').write('module')"
FAIL_BUILD = "import sys; print('undefined: foo'); sys.exit(3)"
SLOW_BUILD = "import time; print('compiling', flush=True); time.sleep(30)"
NO_ARTIFACT = "print('nothing to do')"


def python_command(script: str, extension: str = ".so") -> BuildCommand:
    """Build command running *script* with the artifact path as its only argument."""
    return BuildCommand(argv=(sys.executable, "-c", script, "{output}"), extension=extension)


def fake_commands(script: str = WRITE_ARTIFACT) -> Dict[BuildTarget, BuildCommand]:
    return {
        BuildTarget.NATIVE_MODULE: python_command(script, ".so"),
        BuildTarget.BYTECODE_MODULE: python_command(script, ".wasm"),
    }


def fake_invoker(script: str = WRITE_ARTIFACT, **kwargs: Any) -> BuildInvoker:
    kwargs.setdefault("timeout_floor", 0)
    kwargs.setdefault("grace_period", 0.5)
    kwargs.setdefault("poll_interval", 0.05)
    return BuildInvoker(commands=fake_commands(script), dependency_command=None, **kwargs)


class FakeInspector(ToolchainInspector):
    """Reports the tools in *available* as present and counts probes."""

    def __init__(self, available: Iterable[str] = ("go", "gcc", "python3")) -> None:
        super().__init__()
        self.available: Set[str] = set(available)
        self.detect_calls = 0

    def detect(self, names: Optional[Iterable[str]] = None) -> List[ToolchainStatus]:
        self.detect_calls += 1
        return [
            ToolchainStatus(
                name=name,
                available=name in self.available,
                version="1.0" if name in self.available else None,
                path=f"/usr/bin/{name}" if name in self.available else None,
            )
            for name in (names if names is not None else self.known_tools)
        ]


class FakeInstaller(ToolchainInstaller):
    """Makes tools available on *inspector*, except those listed in *broken*."""

    def __init__(self, inspector: FakeInspector, broken: Iterable[str] = ()) -> None:
        self.inspector = inspector
        self.broken = set(broken)
        self.installed: List[str] = []

    def install_one(self, tool: str) -> None:
        if tool in self.broken:
            raise InstallError(f"no package for {tool}", [tool])
        self.installed.append(tool)
        self.inspector.available.add(tool)


@pytest.fixture
def environment(tmp_path: Path) -> ExecutionEnvironment:
    return ExecutionEnvironment(output_root=tmp_path / "output", allow_tool_install=True)


@pytest.fixture
def production_environment(tmp_path: Path) -> ExecutionEnvironment:
    return ExecutionEnvironment(output_root=tmp_path / "output", allow_tool_install=False)


@pytest.fixture
def orchestrator(environment: ExecutionEnvironment) -> Iterator[CompilationOrchestrator]:
    orch = CompilationOrchestrator(
        environment,
        inspector=FakeInspector(),
        invoker=fake_invoker(),
    )
    yield orch
    orch.shutdown()


@pytest.fixture
def ui_config() -> Dict[str, Any]:
    """A configuration as sent by the UI with only the chat feature enabled."""
    return {
        "name": "Starbucks Helper",
        "personality": "friendly",
        "instructions": "Help customers",
        "features": {"chat": True},
        "settings": {},
    }
