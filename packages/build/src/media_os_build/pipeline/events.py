from __future__ import annotations

from enum import StrEnum


class EventType(StrEnum):
    RUN_START = "run.start"
    RUN_PLAN = "run.plan"
    RUN_FINISH = "run.finish"

    STAGE_START = "stage.start"
    STAGE_SKIP = "stage.skip"
    STAGE_SUCCESS = "stage.success"
    STAGE_FAILED = "stage.failed"
    STAGE_DISCARDED = "stage.discarded"
    STAGE_NOT_ATTEMPTED = "stage.not_attempted"

    ARTIFACT_WRITTEN = "artifact.written"
