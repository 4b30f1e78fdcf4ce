"""media_os_build.process.runner

Subprocess execution for every external tool the pipeline drives (cargo, the
container engine, strip, make, ...).

Rule
----
Only this module should touch ``subprocess``.
"""

from __future__ import annotations

import os
import shlex
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

import structlog

from media_os_build.core import (
    DependencyUnmet,
    ILogger,
    ToolFailed,
    ToolMissing,
    ToolTimeout,
    monotonic_ms,
)

DEFAULT_TAIL_LINES = 20


@dataclass(frozen=True, slots=True)
class CommandSpec:
    """
    One external-process invocation: argv, working directory, extra environment
    and an optional time budget.
    """

    argv: tuple[str, ...]
    cwd: Optional[Path] = None
    env: Mapping[str, str] = field(default_factory=dict)
    timeout_s: Optional[float] = None

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSpec.argv must not be empty")

    @property
    def tool(self) -> str:
        return self.argv[0]

    @property
    def display(self) -> str:
        return shlex.join(self.argv)


@dataclass(frozen=True, slots=True)
class ProcessOutcome:
    argv: tuple[str, ...]
    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def stderr_tail(self, lines: int = DEFAULT_TAIL_LINES) -> str:
        return tail_lines(self.stderr, lines)


def tail_lines(text: str | bytes | None, lines: int = DEFAULT_TAIL_LINES) -> str:
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return "\n".join(text.rstrip().splitlines()[-lines:])


class ProcessRunner:
    """
    Runs one command synchronously and classifies the outcome.

    - ToolMissing: the executable could not be located or started
    - ToolFailed: started and exited nonzero (only with check=True)
    - ToolTimeout: exceeded `CommandSpec.timeout_s`
    """

    def __init__(
        self,
        *,
        logger: ILogger | None = None,
        tail: int = DEFAULT_TAIL_LINES,
    ) -> None:
        self.log: ILogger = logger or structlog.get_logger(__name__)
        self.tail = tail

    def which(self, tool: str) -> str | None:
        return shutil.which(tool)

    def run(self, cmd: CommandSpec, *, check: bool = True) -> ProcessOutcome:
        if cmd.cwd is not None and not Path(cmd.cwd).is_dir():
            raise DependencyUnmet(
                f"Working directory for {cmd.tool} does not exist: {cmd.cwd}",
                artifact_id=None,
                location=str(cmd.cwd),
            )

        env = os.environ.copy()
        env.update(cmd.env)

        self.log.debug("process.start", command=cmd.display, cwd=str(cmd.cwd or "."))
        t0 = monotonic_ms()
        try:
            proc = subprocess.run(
                list(cmd.argv),
                cwd=(str(cmd.cwd) if cmd.cwd is not None else None),
                env=env,
                capture_output=True,
                text=True,
                errors="replace",
                timeout=cmd.timeout_s,
            )
        except FileNotFoundError as e:
            raise ToolMissing(tool=cmd.tool) from e
        except PermissionError as e:
            raise ToolMissing(tool=cmd.tool, detail="not executable") from e
        except subprocess.TimeoutExpired as e:
            self.log.warning(
                "process.timeout", command=cmd.display, timeout_s=cmd.timeout_s
            )
            raise ToolTimeout(
                tool=cmd.tool,
                command=cmd.display,
                timeout_s=float(cmd.timeout_s or 0),
                stderr_tail=tail_lines(e.stderr, self.tail),
            ) from e

        outcome = ProcessOutcome(
            argv=cmd.argv,
            exit_code=int(proc.returncode),
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
            duration_ms=monotonic_ms() - t0,
        )
        self.log.debug(
            "process.finish",
            command=cmd.display,
            exit_code=outcome.exit_code,
            duration_ms=outcome.duration_ms,
        )

        if check and not outcome.ok:
            raise ToolFailed(
                tool=cmd.tool,
                command=cmd.display,
                exit_code=outcome.exit_code,
                stderr_tail=outcome.stderr_tail(self.tail),
            )
        return outcome
