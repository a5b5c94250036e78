"""
Toolchain inspection and best-effort installation.

The inspector only reads host state and is safe to call from any thread.  Installers mutate the
host, so installs of the same tool are serialized through a process-wide lock per tool name.
"""

import logging
import re
import shutil
import subprocess
import threading
from abc import (
    ABC,
    abstractmethod,
)
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
    Sequence,
)

from pydantic import BaseModel

from agentify.core.errors import InstallError
from agentify.core.schema import (
    AgentPluginDescriptor,
    BuildTarget,
)

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"\d+(?:\.\d+)+")


class ToolchainStatus(BaseModel):
    """Availability of one external tool at the time of the probe."""

    name: str
    available: bool
    version: Optional[str] = None
    path: Optional[str] = None


@dataclass(frozen=True)
class ToolRequirement:
    """How to probe for a tool and which package provides it per package manager."""

    name: str
    version_args: Sequence[str]
    packages: Mapping[str, str] = field(default_factory=dict)

    def package_for(self, manager: str) -> str:
        return self.packages.get(manager, self.name)


DEFAULT_REQUIREMENTS: Dict[str, ToolRequirement] = {
    "go": ToolRequirement(
        name="go",
        version_args=("go", "version"),
        packages={"apt-get": "golang-go", "dnf": "golang", "yum": "golang", "apk": "go"},
    ),
    "gcc": ToolRequirement(name="gcc", version_args=("gcc", "--version")),
    "python3": ToolRequirement(
        name="python3",
        version_args=("python3", "--version"),
        packages={"brew": "python"},
    ),
}

TARGET_TOOLS: Dict[BuildTarget, List[str]] = {
    # Go plugins are built with cgo, which needs a C compiler.
    BuildTarget.NATIVE_MODULE: ["go", "gcc"],
    BuildTarget.BYTECODE_MODULE: ["go"],
}


def required_tools(descriptor: AgentPluginDescriptor) -> List[str]:
    """Tools needed to build *descriptor*: the target's compilers, plus Python for dependencies."""
    tools = list(TARGET_TOOLS[descriptor.build_target])
    if descriptor.dependencies:
        tools.append("python3")
    return tools


def missing_tools(statuses: Iterable[ToolchainStatus]) -> List[str]:
    return [status.name for status in statuses if not status.available]


class ToolchainInspector:
    """Probe the host for build tools by running their version query."""

    def __init__(
        self,
        requirements: Optional[Mapping[str, ToolRequirement]] = None,
        probe_timeout: float = 5.0,
    ) -> None:
        self._requirements = dict(requirements or DEFAULT_REQUIREMENTS)
        self._probe_timeout = probe_timeout

    @property
    def known_tools(self) -> List[str]:
        return list(self._requirements)

    def detect(self, names: Optional[Iterable[str]] = None) -> List[ToolchainStatus]:
        """
        Probe each tool in *names* (all known tools when omitted).

        Unknown names are reported as unavailable.  Results are never cached: the host may gain
        or lose tools between calls.
        """
        statuses = []
        for name in names if names is not None else self.known_tools:
            requirement = self._requirements.get(name)
            if requirement is None:
                logger.warning("No probe configured for tool '%s'", name)
                statuses.append(ToolchainStatus(name=name, available=False))
                continue
            statuses.append(self._probe(requirement))
        return statuses

    def _probe(self, requirement: ToolRequirement) -> ToolchainStatus:
        argv = list(requirement.version_args)
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=self._probe_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.debug("Probe for '%s' failed: %s", requirement.name, exc)
            return ToolchainStatus(name=requirement.name, available=False)

        if result.returncode != 0:
            logger.debug(
                "Probe for '%s' exited with %d: %s",
                requirement.name,
                result.returncode,
                result.stderr.strip(),
            )
            return ToolchainStatus(name=requirement.name, available=False)

        output = (result.stdout or result.stderr).strip()
        first_line = output.splitlines()[0] if output else ""
        match = _VERSION_PATTERN.search(first_line)
        return ToolchainStatus(
            name=requirement.name,
            available=True,
            version=match.group(0) if match else first_line or None,
            path=shutil.which(argv[0]),
        )


# ---------------------------------------------------------------------------
# Installers
# ---------------------------------------------------------------------------
_INSTALL_LOCKS: Dict[str, threading.Lock] = {}
_INSTALL_LOCKS_GUARD = threading.Lock()


def install_lock(tool: str) -> threading.Lock:
    """Process-wide lock serializing installs of *tool*."""
    with _INSTALL_LOCKS_GUARD:
        return _INSTALL_LOCKS.setdefault(tool, threading.Lock())


class ToolchainInstaller(ABC):
    """Capability that places missing tools on the host."""

    def install(self, missing: Iterable[str]) -> None:
        """
        Try to install every tool in *missing*.

        A failure for one tool does not stop the others.

        Raises
        ------
        InstallError
            Naming the tools that still failed.
        """
        failed = []
        for tool in missing:
            with install_lock(tool):
                try:
                    self.install_one(tool)
                except InstallError as exc:
                    logger.warning("Failed to install '%s': %s", tool, exc)
                    failed.append(tool)
        if failed:
            raise InstallError(f"Could not install: {', '.join(failed)}", failed)

    @abstractmethod
    def install_one(self, tool: str) -> None:
        """Install a single tool or raise :class:`InstallError`."""


class NoopInstaller(ToolchainInstaller):
    """Installer that changes nothing, for production hosts and tests."""

    def install_one(self, tool: str) -> None:
        logger.info("Skipping install of '%s' (no-op installer)", tool)


class PackageManagerInstaller(ToolchainInstaller):
    """Install tools with whichever system package manager is on ``PATH``."""

    MANAGERS: Dict[str, List[str]] = {
        "apt-get": ["apt-get", "install", "-y"],
        "dnf": ["dnf", "install", "-y"],
        "yum": ["yum", "install", "-y"],
        "apk": ["apk", "add", "--no-cache"],
        "brew": ["brew", "install"],
    }

    def __init__(
        self,
        requirements: Optional[Mapping[str, ToolRequirement]] = None,
        timeout: float = 600.0,
        manager: Optional[str] = None,
    ) -> None:
        self._requirements = dict(requirements or DEFAULT_REQUIREMENTS)
        self._timeout = timeout
        self._manager = manager

    def detect_manager(self) -> Optional[str]:
        if self._manager:
            return self._manager
        for manager in self.MANAGERS:
            if shutil.which(manager):
                return manager
        return None

    def install_one(self, tool: str) -> None:
        manager = self.detect_manager()
        if manager is None:
            raise InstallError("No supported package manager found", [tool])
        requirement = self._requirements.get(tool, ToolRequirement(tool, (tool, "--version")))
        cmd = self.MANAGERS[manager] + [requirement.package_for(manager)]

        logger.info("Installing '%s' with: %s", tool, " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                check=True,
                capture_output=True,
                text=True,
                timeout=self._timeout,
            )
        except subprocess.CalledProcessError as exc:
            raise InstallError(
                f"{manager} failed for '{tool}': {exc.stderr.strip()}", [tool]
            ) from exc
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise InstallError(f"{manager} could not run for '{tool}': {exc}", [tool]) from exc
        logger.debug("Installed '%s': %s", tool, result.stdout.strip())
