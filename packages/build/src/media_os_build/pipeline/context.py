from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from media_os_build.artifacts import ArtifactStore
from media_os_build.core import BuildLayout, ILogger, Settings, sha256_file
from media_os_build.process import ProcessRunner

from .events import EventType
from .types import ArtifactRef


@dataclass(slots=True)
class RunContext:
    """
    Context shared across stages for a single pipeline run.
    """

    run_id: str
    settings: Settings
    layout: BuildLayout
    store: ArtifactStore
    runner: ProcessRunner
    logger: ILogger

    # optional free-form metadata
    meta: dict[str, Any] = field(default_factory=dict)

    def stage_logger(self, stage: str) -> ILogger:
        return self.logger.bind(stage=stage)

    def emit(self, event: EventType | str, **kw: object) -> None:
        # Keep event chatter at debug level to leave console logs readable.
        event_value = event.value if isinstance(event, EventType) else str(event)
        self.logger.debug(event_value, event_type=event_value, **kw)

    def record_artifact(
        self,
        *,
        stage: str,
        path: Path,
        content_type: str | None = None,
        rel_to: Path | None = None,
    ) -> ArtifactRef:
        p = Path(path)
        digest = sha256_file(p)
        rel = str(p if rel_to is None else p.relative_to(rel_to))
        art = ArtifactRef(
            path=rel, bytes=digest.bytes, sha256=digest.sha256, content_type=content_type
        )
        self.emit(
            EventType.ARTIFACT_WRITTEN,
            stage=stage,
            path=art.path,
            bytes=art.bytes,
            sha256=art.sha256,
            content_type=art.content_type,
        )
        return art
