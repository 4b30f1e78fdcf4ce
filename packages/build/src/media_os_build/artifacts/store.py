from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Callable, Iterable, Mapping

import structlog

from media_os_build.core import ArtifactWriteError, ILogger, ToolMissing
from media_os_build.process import CommandSpec, ProcessRunner

from .models import Artifact, ArtifactKind, Fingerprint

ImageProbe = Callable[[str], bool]


class ContainerImageProbe:
    """Presence check for container images via `<engine> image inspect`."""

    def __init__(self, runner: ProcessRunner, *, engine: str = "docker") -> None:
        self.runner = runner
        self.engine = engine

    def __call__(self, image: str) -> bool:
        try:
            out = self.runner.run(
                CommandSpec(argv=(self.engine, "image", "inspect", image)),
                check=False,
            )
        except ToolMissing:
            return False
        return out.ok


def _tree_mtime_ns(root: Path) -> int:
    newest = root.lstat().st_mtime_ns
    for dirpath, dirnames, filenames in os.walk(root):
        base = Path(dirpath)
        for name in (*dirnames, *filenames):
            newest = max(newest, (base / name).lstat().st_mtime_ns)
    return newest


class ArtifactStore:
    """
    Tracks artifacts and decides staleness from on-disk state.

    Fingerprints live alongside the artifacts (mtime / presence), so they
    survive between invocations. The store also remembers what
    `record_produced` saw during this process; after a purge, outputs stay
    stale until their producer records them again.
    """

    def __init__(
        self,
        artifacts: Iterable[Artifact],
        *,
        image_probe: ImageProbe | None = None,
        logger: ILogger | None = None,
    ) -> None:
        self._artifacts: dict[str, Artifact] = {}
        for a in artifacts:
            if a.id in self._artifacts:
                raise ValueError(f"Duplicate artifact id: {a.id}")
            self._artifacts[a.id] = a
        self._probe = image_probe or (lambda _image: False)
        self._recorded: dict[str, Fingerprint] = {}
        self._invalidated: set[str] = set()
        self._lock = threading.Lock()
        self.log: ILogger = logger or structlog.get_logger(__name__)

    def __contains__(self, artifact_id: object) -> bool:
        return artifact_id in self._artifacts

    def get(self, artifact_id: str) -> Artifact:
        try:
            return self._artifacts[artifact_id]
        except KeyError:
            raise KeyError(f"Unknown artifact id: {artifact_id!r}") from None

    @property
    def artifacts(self) -> Mapping[str, Artifact]:
        return dict(self._artifacts)

    def fingerprint(self, artifact: Artifact) -> Fingerprint:
        if artifact.kind is ArtifactKind.CONTAINER_IMAGE:
            return Fingerprint(present=bool(self._probe(artifact.location)))

        p = Path(artifact.location)
        if artifact.kind is ArtifactKind.OPAQUE_EXTERNAL:
            return Fingerprint(present=p.exists())

        if artifact.kind is ArtifactKind.FILE:
            if not p.is_file():
                return Fingerprint.absent()
            return Fingerprint(present=True, mtime_ns=p.stat().st_mtime_ns)

        if not p.is_dir():
            return Fingerprint.absent()
        return Fingerprint(present=True, mtime_ns=_tree_mtime_ns(p))

    def exists(self, artifact: Artifact) -> bool:
        return self.fingerprint(artifact).present

    def staleness(
        self,
        artifact: Artifact,
        inputs: Iterable[Artifact],
        *,
        cache_only: bool = False,
    ) -> str | None:
        """
        Return why `artifact` must be rebuilt, or None when it is fresh.
        """
        out_fp = self.fingerprint(artifact)
        if not out_fp.present:
            return f"{artifact.id} missing"

        with self._lock:
            invalidated = artifact.id in self._invalidated
        if invalidated:
            return f"{artifact.id} invalidated by purge"

        if not artifact.kind.timestamped:
            return None

        inputs = list(inputs)
        if not inputs:
            return None if cache_only else f"{artifact.id} has no declared inputs"

        for inp in inputs:
            if self.fingerprint(inp).newer_than(out_fp):
                return f"{inp.id} newer than {artifact.id}"
        return None

    def is_stale(
        self,
        artifact: Artifact,
        inputs: Iterable[Artifact],
        *,
        cache_only: bool = False,
    ) -> bool:
        return self.staleness(artifact, inputs, cache_only=cache_only) is not None

    def record_produced(self, artifact: Artifact) -> Fingerprint:
        """
        Refresh the fingerprint of an output after its stage succeeded.

        Timestamped outputs are stamped with the current time so they compare
        newer than the inputs they were built from, even when the producing
        tool left an up-to-date file untouched.
        """
        if not self.exists(artifact):
            raise ArtifactWriteError(
                f"Stage finished but {artifact.kind.value} {artifact.id!r} "
                f"was not produced at {artifact.location}"
            )

        if artifact.kind.timestamped:
            try:
                os.utime(artifact.location, None)
            except OSError as e:
                raise ArtifactWriteError(
                    f"Could not stamp {artifact.id!r} at {artifact.location}: {e}"
                ) from e

        fp = self.fingerprint(artifact)
        with self._lock:
            self._recorded[artifact.id] = fp
            self._invalidated.discard(artifact.id)
        self.log.debug("artifact.recorded", artifact=artifact.id, **fp.to_dict())
        return fp

    def recorded(self, artifact_id: str) -> Fingerprint | None:
        with self._lock:
            return self._recorded.get(artifact_id)

    def invalidate_all(self) -> None:
        """Forget recorded fingerprints; every output counts as stale until recorded again."""
        with self._lock:
            dropped = sorted(self._recorded)
            self._recorded.clear()
            self._invalidated = set(self._artifacts)
        self.log.info("Fingerprints invalidated", dropped=dropped)

    def snapshot(self) -> dict[str, Fingerprint]:
        return {aid: self.fingerprint(a) for aid, a in self._artifacts.items()}
