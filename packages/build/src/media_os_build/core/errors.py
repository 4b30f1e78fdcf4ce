from __future__ import annotations

import traceback
from dataclasses import asdict, dataclass
from enum import StrEnum
from typing import Any, ClassVar


class ErrorKind(StrEnum):
    INTERNAL = "internal-error"
    CONFIGURATION = "configuration-error"
    DEPENDENCY_UNMET = "dependency-unmet"
    TOOL_MISSING = "tool-missing"
    TOOL_FAILED = "tool-failed"
    TOOL_TIMEOUT = "tool-timeout"
    ARTIFACT_WRITE = "artifact-write-error"


EXIT_CODES: dict[ErrorKind, int] = {
    ErrorKind.INTERNAL: 1,
    ErrorKind.CONFIGURATION: 2,
    ErrorKind.DEPENDENCY_UNMET: 3,
    ErrorKind.TOOL_MISSING: 4,
    ErrorKind.TOOL_FAILED: 5,
    ErrorKind.TOOL_TIMEOUT: 6,
    ErrorKind.ARTIFACT_WRITE: 7,
}


def exit_code_for(kind: ErrorKind | str) -> int:
    return EXIT_CODES.get(ErrorKind(kind), 1)


class BuildError(RuntimeError):
    """Base error"""

    kind: ClassVar[ErrorKind] = ErrorKind.INTERNAL

    @property
    def diagnostic(self) -> str:
        return str(self)


class ConfigurationError(BuildError):
    """
    Malformed or cyclic stage graph, unknown target. Raised before any stage runs.
    """

    kind = ErrorKind.CONFIGURATION


class DependencyUnmet(BuildError):
    """A required predecessor artifact is absent when a stage starts"""

    kind = ErrorKind.DEPENDENCY_UNMET

    def __init__(self, message: str, *, artifact_id: str | None = None, location: str | None = None) -> None:
        super().__init__(message)
        self.artifact_id = artifact_id
        self.location = location

    @property
    def diagnostic(self) -> str:
        if self.artifact_id is None:
            return str(self)
        return f"missing artifact {self.artifact_id!r} at {self.location}"


class ToolError(BuildError):
    """Base for failures of an external tool"""

    def __init__(self, message: str, *, tool: str) -> None:
        super().__init__(message)
        self.tool = tool


class ToolMissing(ToolError):
    """The command could not be located or started"""

    kind = ErrorKind.TOOL_MISSING

    def __init__(self, *, tool: str, detail: str | None = None) -> None:
        msg = f"Tool not found: {tool}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg, tool=tool)

    @property
    def diagnostic(self) -> str:
        return f"tool {self.tool!r} is not installed or not on PATH"


class ToolFailed(ToolError):
    """The command started and exited nonzero"""

    kind = ErrorKind.TOOL_FAILED

    def __init__(self, *, tool: str, command: str, exit_code: int, stderr_tail: str) -> None:
        super().__init__(f"{command} exited with status {exit_code}", tool=tool)
        self.command = command
        self.exit_code = exit_code
        self.stderr_tail = stderr_tail

    @property
    def diagnostic(self) -> str:
        return self.stderr_tail or f"exit status {self.exit_code} (no stderr)"


class ToolTimeout(ToolError):
    """The command exceeded its time budget"""

    kind = ErrorKind.TOOL_TIMEOUT

    def __init__(self, *, tool: str, command: str, timeout_s: float, stderr_tail: str) -> None:
        super().__init__(f"{command} timed out after {timeout_s:g}s", tool=tool)
        self.command = command
        self.timeout_s = timeout_s
        self.stderr_tail = stderr_tail

    @property
    def diagnostic(self) -> str:
        tail = f"\n{self.stderr_tail}" if self.stderr_tail else ""
        return f"no exit after {self.timeout_s:g}s{tail}"


class ArtifactWriteError(BuildError):
    """An artifact could not be materialized (permissions, disk space, missing output)"""

    kind = ErrorKind.ARTIFACT_WRITE


@dataclass(frozen=True, slots=True)
class StageError:
    """
    A normalized error record for stage failures.
    """

    kind: str
    exc_type: str
    message: str
    diagnostic: str
    traceback: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def stage_error_from_exc(exc: BaseException) -> StageError:
    if isinstance(exc, BuildError):
        kind = exc.kind
        diagnostic = exc.diagnostic
    else:
        kind = ErrorKind.INTERNAL
        diagnostic = f"{type(exc).__name__}: {exc}"
    return StageError(
        kind=kind.value,
        exc_type=type(exc).__name__,
        message=str(exc),
        diagnostic=diagnostic,
        traceback="".join(traceback.format_exception(exc)),
    )
