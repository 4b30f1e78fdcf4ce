from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Optional

from pydantic import StringConstraints, TypeAdapter

IdPattern = r"^[a-z0-9][a-z0-9\-]*[a-z0-9]$"

ArtifactId = Annotated[
    str,
    StringConstraints(min_length=2, max_length=80, pattern=IdPattern),
]

_ID_ADAPTER: TypeAdapter[str] = TypeAdapter(ArtifactId)


def validate_id(value: str) -> str:
    """Validate an artifact or stage identifier (lowercase, dash-separated)."""
    return _ID_ADAPTER.validate_python(value)


class ArtifactKind(StrEnum):
    FILE = "file"
    DIRECTORY_TREE = "directory-tree"
    CONTAINER_IMAGE = "container-image"
    OPAQUE_EXTERNAL = "opaque-external"

    @property
    def timestamped(self) -> bool:
        """Whether freshness is compared by modification time (else presence only)."""
        return self in (ArtifactKind.FILE, ArtifactKind.DIRECTORY_TREE)


@dataclass(frozen=True, slots=True)
class Artifact:
    """
    A named, addressable build output (or source input nobody produces).

    `location` is a filesystem path for file, directory-tree and
    opaque-external kinds, and an image reference for container-image.
    """

    id: str
    location: str
    kind: ArtifactKind
    description: str = ""
    required: bool = True


@dataclass(frozen=True, slots=True)
class Fingerprint:
    """Staleness signal: presence plus newest modification time (timestamped kinds)."""

    present: bool
    mtime_ns: Optional[int] = None

    @classmethod
    def absent(cls) -> "Fingerprint":
        return cls(present=False)

    def newer_than(self, other: "Fingerprint") -> bool:
        if not (self.present and other.present):
            return False
        if self.mtime_ns is None or other.mtime_ns is None:
            return False
        return self.mtime_ns > other.mtime_ns

    def to_dict(self) -> dict[str, object]:
        return {"present": self.present, "mtime_ns": self.mtime_ns}
