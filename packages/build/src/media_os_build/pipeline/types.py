from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass(frozen=True, slots=True)
class ArtifactRef:
    """
    A reference to a file written by a stage.
    """

    path: str
    bytes: int
    sha256: str
    content_type: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RunRequest:
    """
    One invocation: the requested targets and how to expand them.

    Overrides are applied to Settings before the request is built; they are
    echoed here for the run report only.
    """

    targets: tuple[str, ...]
    with_dependencies: bool = True
    dry_run: bool = False
    overrides: dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.targets:
            raise ValueError("RunRequest needs at least one target")
