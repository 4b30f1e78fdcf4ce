from __future__ import annotations

from typing import Any

from media_os_build.artifacts import ArtifactStore, ContainerImageProbe
from media_os_build.core import (
    BuildLayout,
    ILogger,
    RunProvenance,
    Settings,
    configure_logging,
    format_duration_ms,
    get_logger,
    monotonic_ms,
    new_run_id,
    utc_now_iso,
)
from media_os_build.process import ProcessRunner
from media_os_build.stages.registry import StageRegistry, build_registry

from .context import RunContext
from .events import EventType
from .report import RunReport, build_run_report
from .scheduler import PlannedStage, Scheduler
from .types import RunRequest


def default_logger() -> ILogger:
    """
    Provide a structlog BoundLogger that satisfies ILogger.
    """
    configure_logging()
    return get_logger("pipeline")


class PipelineRunner:
    """
    Resolves a RunRequest against the stage registry and executes it.

    Registry validation happens here, so a malformed stage table raises
    ConfigurationError before any request is accepted.
    """

    def __init__(
        self,
        *,
        settings: Settings,
        registry: StageRegistry | None = None,
        runner: ProcessRunner | None = None,
        store: ArtifactStore | None = None,
        logger: ILogger | None = None,
    ) -> None:
        self.settings = settings
        self.logger: ILogger = logger or default_logger()
        self.layout = BuildLayout.from_settings(settings)
        self.registry = registry or build_registry(settings)
        self.runner = runner or ProcessRunner(logger=self.logger)
        self.store = store or ArtifactStore(
            self.registry.artifacts,
            image_probe=ContainerImageProbe(self.runner, engine=settings.container_engine),
            logger=self.logger,
        )
        self.scheduler = Scheduler(
            self.registry, self.store, jobs=settings.jobs, logger=self.logger
        )

    def preview(self, request: RunRequest) -> list[PlannedStage]:
        plan = self.scheduler.plan(
            request.targets, with_dependencies=request.with_dependencies
        )
        return self.scheduler.preview(plan)

    def run(
        self,
        request: RunRequest,
        *,
        run_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> RunReport:
        rid = run_id or new_run_id()
        started_at = utc_now_iso()
        meta = {
            **(meta or {}),
            "overrides": dict(request.overrides),
            "provenance": RunProvenance(run_id=rid, started_at_utc=started_at).to_dict(),
        }

        # Raises ConfigurationError for unknown targets before anything runs.
        plan = self.scheduler.plan(
            request.targets, with_dependencies=request.with_dependencies
        )

        ctx = RunContext(
            run_id=rid,
            settings=self.settings,
            layout=self.layout,
            store=self.store,
            runner=self.runner,
            logger=self.logger,
            meta=meta,
        )

        t0 = monotonic_ms()

        self.logger.info(
            "Pipeline starting",
            run_id=rid,
            targets=list(request.targets),
            stages=[s.name for s in plan],
            with_dependencies=request.with_dependencies,
            jobs=self.scheduler.jobs,
            project_root=str(self.layout.root),
        )
        ctx.emit(EventType.RUN_START, run_id=rid, targets=list(request.targets))
        ctx.emit(EventType.RUN_PLAN, stages=[s.name for s in plan])

        results = self.scheduler.execute(plan, ctx)

        duration = monotonic_ms() - t0
        report = build_run_report(
            run_id=rid,
            targets=list(request.targets),
            started_at_utc=started_at,
            finished_at_utc=utc_now_iso(),
            duration_ms=duration,
            stage_results=results,
            meta=meta,
        )

        ctx.emit(
            EventType.RUN_FINISH,
            run_id=rid,
            status=report.status,
            duration_ms=duration,
        )
        self.logger.info(
            "Run Complete",
            duration_ms=duration,
            duration=format_duration_ms(duration),
            status=report.status,
            exit_code=report.exit_code,
            **report.counts(),
        )
        return report
