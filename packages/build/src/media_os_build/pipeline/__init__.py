from .context import RunContext
from .report import RunReport, build_run_report
from .runner import PipelineRunner
from .scheduler import PlannedStage, Scheduler
from .stage import StageResult, StageStatus
from .types import ArtifactRef, RunRequest

__all__ = [
    "RunContext",
    "RunReport",
    "build_run_report",
    "PipelineRunner",
    "PlannedStage",
    "Scheduler",
    "StageResult",
    "StageStatus",
    "ArtifactRef",
    "RunRequest",
]
