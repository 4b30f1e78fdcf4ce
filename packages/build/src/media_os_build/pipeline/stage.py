from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any, Optional, Sequence

from media_os_build.artifacts import Artifact
from media_os_build.core import (
    StageError,
    format_duration_ms,
    monotonic_ms,
    stage_error_from_exc,
    utc_now_iso,
)
from media_os_build.stages.actions import execute_action
from media_os_build.stages.models import Stage

from .context import RunContext
from .events import EventType
from .types import ArtifactRef


class StageStatus(StrEnum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"
    FAILED = "failed"
    NOT_ATTEMPTED = "not-attempted"


@dataclass(slots=True)
class StageResult:
    stage: str
    status: StageStatus
    reason: str = ""
    started_at_utc: Optional[str] = None
    finished_at_utc: Optional[str] = None
    duration_ms: int = 0

    artifacts: list[ArtifactRef] = field(default_factory=list)
    error: Optional[StageError] = None

    @property
    def ran(self) -> bool:
        return self.status is StageStatus.SUCCEEDED

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["status"] = self.status.value
        return d


def skipped(stage: str, reason: str) -> StageResult:
    now = utc_now_iso()
    return StageResult(
        stage=stage,
        status=StageStatus.SKIPPED,
        reason=reason,
        started_at_utc=now,
        finished_at_utc=now,
    )


def not_attempted(stage: str, reason: str) -> StageResult:
    return StageResult(stage=stage, status=StageStatus.NOT_ATTEMPTED, reason=reason)


def failed(
    stage: str,
    exc: BaseException,
    *,
    started_at_utc: str | None = None,
    duration_ms: int = 0,
    artifacts: list[ArtifactRef] | None = None,
    err: StageError | None = None,
) -> StageResult:
    if err is None:
        err = stage_error_from_exc(exc)
    return StageResult(
        stage=stage,
        status=StageStatus.FAILED,
        reason=err.kind,
        started_at_utc=started_at_utc or utc_now_iso(),
        finished_at_utc=utc_now_iso(),
        duration_ms=duration_ms,
        artifacts=list(artifacts or []),
        error=err,
    )


def run_stage(
    *,
    ctx: RunContext,
    stage: Stage,
    outputs: Sequence[Artifact],
    reason: str,
    index: int | None = None,
    total: int | None = None,
) -> StageResult:
    """
    Execute a stage's action, then record its outputs.

    Outputs are recorded only after the action returned without error; a
    failure leaves every previous fingerprint untouched.
    """
    stage_id = stage.name
    log = ctx.stage_logger(stage_id)

    t0 = monotonic_ms()
    started_at = utc_now_iso()
    position = f"{index}/{total}" if index is not None and total is not None else None

    ctx.emit(EventType.STAGE_START, stage=stage_id, reason=reason)
    log.info("Stage starting", position=position, reason=reason)

    artifacts: list[ArtifactRef] = []
    try:
        artifacts.extend(execute_action(stage, ctx))
        for art in outputs:
            ctx.store.record_produced(art)

    except Exception as e:
        duration = monotonic_ms() - t0
        err = stage_error_from_exc(e)
        res = failed(
            stage_id,
            e,
            started_at_utc=started_at,
            duration_ms=duration,
            artifacts=artifacts,
            err=err,
        )

        ctx.emit(
            EventType.STAGE_FAILED,
            stage=stage_id,
            duration_ms=duration,
            kind=err.kind,
            exc_type=err.exc_type,
            message=err.message,
        )
        log.error(
            "Stage failed",
            status="failed",
            position=position,
            duration=format_duration_ms(duration),
            kind=err.kind,
            error=err.message,
        )
        if err.kind == "internal-error":
            log.exception("Stage exception")
        return res

    duration = monotonic_ms() - t0
    ctx.emit(EventType.STAGE_SUCCESS, stage=stage_id, duration_ms=duration)
    log_fields: dict[str, object] = {
        "status": "succeeded",
        "position": position,
        "duration_ms": duration,
        "duration": format_duration_ms(duration),
        "outputs": [a.id for a in outputs],
    }
    if artifacts:
        log_fields["artifacts"] = len(artifacts)
    log.info("Stage succeeded", **log_fields)

    return StageResult(
        stage=stage_id,
        status=StageStatus.SUCCEEDED,
        reason=reason,
        started_at_utc=started_at,
        finished_at_utc=utc_now_iso(),
        duration_ms=duration,
        artifacts=artifacts,
    )
