"""
Error taxonomy for the compiler core.

Every stage of a compile raises one of these.  The orchestrator turns them into a terminal
``CompilationRecord`` state, so none of them ever escapes to the process hosting the service.
"""

from typing import (
    Any,
    Dict,
    Iterable,
    List,
    Optional,
)


class CompilerError(RuntimeError):
    """Base class for all compiler errors."""

    kind = "compiler_error"

    def to_dict(self) -> Dict[str, Any]:
        """Structured form stored on the record and returned by the API."""
        return {"type": self.kind, "message": str(self)}


class ValidationError(CompilerError):
    """Raised when the input configuration is incomplete or violates a descriptor invariant."""

    kind = "validation_error"

    def __init__(self, message: str, problems: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.problems: List[str] = list(problems or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["problems"] = self.problems
        return data


class ToolchainError(CompilerError):
    """Raised when required build tools are missing."""

    kind = "toolchain_error"

    def __init__(self, message: str, missing: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.missing: List[str] = list(missing or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["missing"] = self.missing
        return data


class InstallError(CompilerError):
    """Raised by an installer when some tools could not be installed."""

    kind = "install_error"

    def __init__(self, message: str, failed: Optional[Iterable[str]] = None) -> None:
        super().__init__(message)
        self.failed: List[str] = list(failed or [])

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["failed"] = self.failed
        return data


class TemplateError(CompilerError):
    """Raised when the source tree cannot be generated."""

    kind = "template_error"


class BuildError(CompilerError):
    """Raised when the external compiler fails, times out or is cancelled."""

    kind = "build_error"

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        timed_out: bool = False,
        cancelled: bool = False,
        last_lines: Optional[Iterable[str]] = None,
    ) -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.timed_out = timed_out
        self.cancelled = cancelled
        self.last_lines: List[str] = list(last_lines or [])

    @property
    def reason(self) -> str:
        """Short classification: ``cancelled``, ``timeout`` or ``exit_code``."""
        if self.cancelled:
            return "cancelled"
        if self.timed_out:
            return "timeout"
        return "exit_code"

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "reason": self.reason,
                "exit_code": self.exit_code,
                "last_lines": self.last_lines,
            }
        )
        return data


class RecordClosedError(RuntimeError):
    """Raised when something tries to modify a terminal compilation record."""
