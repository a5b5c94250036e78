"""Tests for toolchain probing and installation."""

import sys
from typing import List

import pytest

from agentify.compiler.toolchain import (
    DEFAULT_REQUIREMENTS,
    ToolchainInspector,
    ToolchainInstaller,
    ToolRequirement,
    install_lock,
    missing_tools,
    required_tools,
)
from agentify.core.errors import InstallError
from agentify.core.schema import AgentPluginDescriptor

PYTHON = ToolRequirement(name="python", version_args=(sys.executable, "--version"))
MISSING = ToolRequirement(
    name="ghost", version_args=("agentify-no-such-compiler", "--version")
)


def _descriptor(**kwargs) -> AgentPluginDescriptor:
    return AgentPluginDescriptor(
        agent_id="a1", agent_name="urn:agent:agentify:a1", display_name="A1", **kwargs
    )


def test_detect_available_tool() -> None:
    inspector = ToolchainInspector({"python": PYTHON})

    (status,) = inspector.detect(["python"])

    assert status.available
    assert status.version and status.version[0].isdigit()


def test_detect_missing_tool() -> None:
    """A binary that is not on PATH is reported, not raised."""

    inspector = ToolchainInspector({"python": PYTHON, "ghost": MISSING})

    statuses = inspector.detect()

    assert [s.name for s in statuses] == ["python", "ghost"]
    assert missing_tools(statuses) == ["ghost"]
    assert statuses[1].version is None


def test_detect_unknown_tool() -> None:
    inspector = ToolchainInspector({"python": PYTHON})

    (status,) = inspector.detect(["fortran"])

    assert not status.available


def test_failing_probe_is_unavailable() -> None:
    broken = ToolRequirement(
        name="broken", version_args=(sys.executable, "-c", "raise SystemExit(1)")
    )

    (status,) = ToolchainInspector({"broken": broken}).detect()

    assert not status.available


def test_required_tools() -> None:
    assert required_tools(_descriptor()) == ["go", "gcc"]
    assert required_tools(_descriptor(build_target="bytecode-module")) == ["go"]
    assert required_tools(
        _descriptor(build_target="bytecode-module", dependencies=["requests"])
    ) == ["go", "python3"]


def test_package_names() -> None:
    go = DEFAULT_REQUIREMENTS["go"]

    assert go.package_for("apt-get") == "golang-go"
    assert go.package_for("brew") == "go"


class _RecordingInstaller(ToolchainInstaller):
    def __init__(self, broken: List[str]) -> None:
        self.broken = broken
        self.attempted: List[str] = []

    def install_one(self, tool: str) -> None:
        self.attempted.append(tool)
        if tool in self.broken:
            raise InstallError(f"cannot install {tool}", [tool])


def test_install_continues_after_failure() -> None:
    """One broken tool does not stop the others; the error names only the failures."""

    installer = _RecordingInstaller(broken=["gcc"])
    try:
        installer.install(["gcc", "go"])
    except InstallError as exc:
        assert exc.failed == ["gcc"]
    else:  # pragma: no cover
        raise AssertionError("InstallError was not raised")
    assert installer.attempted == ["gcc", "go"]


def test_install_success() -> None:
    installer = _RecordingInstaller(broken=[])

    installer.install(["go"])

    assert installer.attempted == ["go"]


def test_install_lock_is_per_tool() -> None:
    assert install_lock("go") is install_lock("go")
    assert install_lock("go") is not install_lock("gcc")


@pytest.mark.parametrize("name", sorted(DEFAULT_REQUIREMENTS))
def test_default_requirements_probe_version(name: str) -> None:
    requirement = DEFAULT_REQUIREMENTS[name]

    assert requirement.version_args[0] == name
