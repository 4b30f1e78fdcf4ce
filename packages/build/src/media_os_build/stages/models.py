from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Union

from media_os_build.process import CommandSpec

from .overlay import OverlaySpec


@dataclass(frozen=True, slots=True)
class CommandAction:
    """Run commands in order; the first failure aborts the stage."""

    commands: tuple[CommandSpec, ...]


@dataclass(frozen=True, slots=True)
class ContainerExtractAction:
    """
    Copy one file out of a built image:
    create a throwaway container, `cp` from it, always remove it, then strip.
    """

    engine: str
    image: str
    container_path: str
    dest: Path
    strip: bool = True
    timeout_s: Optional[float] = None


@dataclass(frozen=True, slots=True)
class CopyBinaryAction:
    """Local (no container) extract path: copy the host build into dist and strip it."""

    source: Path
    dest: Path
    strip: bool = True
    timeout_s: Optional[float] = None


@dataclass(frozen=True, slots=True)
class ComposeOverlayAction:
    spec: OverlaySpec
    overlay_root: Path


@dataclass(frozen=True, slots=True)
class ReportProbe:
    """
    One analysis command run against the binary. When `fallback` is set, a
    nonzero exit is reported as that text instead of failing the stage.
    """

    title: str
    argv: tuple[str, ...]
    fallback: Optional[str] = None
    head: Optional[int] = None


@dataclass(frozen=True, slots=True)
class ReportAction:
    title: str
    binary: Path
    dest: Path
    probes: tuple[ReportProbe, ...] = ()
    include_size: bool = False
    timeout_s: Optional[float] = None


@dataclass(frozen=True, slots=True)
class PurgeAction:
    """
    Remove build directories, age generated trees that are shared with
    other content, then run best-effort cleanup commands (failures and
    missing tools are logged, not raised).
    """

    remove: tuple[Path, ...]
    age: tuple[Path, ...] = ()
    commands: tuple[CommandSpec, ...] = ()


Action = Union[
    CommandAction,
    ContainerExtractAction,
    CopyBinaryAction,
    ComposeOverlayAction,
    ReportAction,
    PurgeAction,
]


def action_tools(action: Action) -> tuple[str, ...]:
    """External executables an action may invoke, in first-use order."""
    tools: list[str] = []
    if isinstance(action, CommandAction):
        tools.extend(c.tool for c in action.commands)
    elif isinstance(action, ContainerExtractAction):
        tools.append(action.engine)
        if action.strip:
            tools.append("strip")
    elif isinstance(action, CopyBinaryAction):
        if action.strip:
            tools.append("strip")
    elif isinstance(action, ReportAction):
        tools.extend(p.argv[0] for p in action.probes)
    elif isinstance(action, PurgeAction):
        tools.extend(c.tool for c in action.commands)
    return tuple(dict.fromkeys(tools))


@dataclass(frozen=True, slots=True)
class Stage:
    """
    A named unit of work.

    `depends_on` covers ordering that is not expressed through artifacts;
    producers of `inputs` are dependencies implicitly.
    """

    name: str
    action: Action
    inputs: tuple[str, ...] = ()
    outputs: tuple[str, ...] = ()
    depends_on: tuple[str, ...] = field(default_factory=tuple)
    description: str = ""

    # Skip when outputs exist even though no inputs are declared.
    cache_only: bool = False
    # Exempt from staleness checks; runs every time it is planned.
    always_run: bool = False
    # Never overlaps another in-flight stage.
    exclusive: bool = False

    @property
    def tools(self) -> tuple[str, ...]:
        return action_tools(self.action)
