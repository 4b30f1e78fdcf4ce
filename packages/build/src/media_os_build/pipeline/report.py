from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from media_os_build.core import atomic_write_json, exit_code_for

from .stage import StageResult, StageStatus


@dataclass(slots=True)
class RunReport:
    run_id: str
    targets: list[str]
    started_at_utc: str
    finished_at_utc: str
    status: str  # "success" | "failed"
    duration_ms: int

    stages: list[StageResult] = field(default_factory=list)
    meta: dict[str, Any] = field(default_factory=dict)

    @property
    def first_failure(self) -> Optional[StageResult]:
        for s in self.stages:
            if s.status is StageStatus.FAILED:
                return s
        return None

    @property
    def exit_code(self) -> int:
        failure = self.first_failure
        if failure is None:
            return 0
        kind = failure.error.kind if failure.error is not None else "internal-error"
        return exit_code_for(kind)

    def counts(self) -> dict[str, int]:
        out = {s.value: 0 for s in StageStatus}
        for r in self.stages:
            out[r.status.value] += 1
        return out

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "targets": list(self.targets),
            "started_at_utc": self.started_at_utc,
            "finished_at_utc": self.finished_at_utc,
            "status": self.status,
            "exit_code": self.exit_code,
            "duration_ms": self.duration_ms,
            "counts": self.counts(),
            "stages": [s.to_dict() for s in self.stages],
            "meta": dict(self.meta),
        }

    def write_json(self, path: Path) -> None:
        atomic_write_json(Path(path), self.to_dict())


def build_run_report(
    *,
    run_id: str,
    targets: list[str],
    started_at_utc: str,
    finished_at_utc: str,
    duration_ms: int,
    stage_results: list[StageResult],
    meta: dict[str, Any] | None = None,
) -> RunReport:
    status = (
        "success"
        if all(s.status in (StageStatus.SUCCEEDED, StageStatus.SKIPPED) for s in stage_results)
        else "failed"
    )
    return RunReport(
        run_id=run_id,
        targets=targets,
        started_at_utc=started_at_utc,
        finished_at_utc=finished_at_utc,
        status=status,
        duration_ms=duration_ms,
        stages=stage_results,
        meta=meta or {},
    )
