"""media_os_build.pipeline.scheduler

Expands requested targets into an ordered stage list and executes it.

- order: topological, ties broken by (first requesting target, declaration order)
- per stage: required inputs present -> staleness decision -> action -> record
- fail-fast: after the first failure nothing new is dispatched; stages still in
  flight finish but their results are discarded from the report
"""

from __future__ import annotations

import contextvars
import heapq
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Iterable, Sequence

import structlog

from media_os_build.artifacts import ArtifactStore
from media_os_build.core import ConfigurationError, DependencyUnmet, ILogger
from media_os_build.stages.models import Stage
from media_os_build.stages.registry import StageRegistry

from .context import RunContext
from .events import EventType
from .stage import StageResult, StageStatus, failed, not_attempted, run_stage, skipped


@dataclass(frozen=True, slots=True)
class PlannedStage:
    """Dry-run view of one stage: what would happen and why."""

    stage: str
    action: str  # "run" | "skip" | "blocked"
    reason: str


class Scheduler:
    def __init__(
        self,
        registry: StageRegistry,
        store: ArtifactStore,
        *,
        jobs: int = 1,
        logger: ILogger | None = None,
    ) -> None:
        if jobs < 1:
            raise ConfigurationError(f"jobs must be >= 1, got {jobs}")
        self.registry = registry
        self.store = store
        self.jobs = jobs
        self.log: ILogger = logger or structlog.get_logger(__name__)

    # Planning

    def closure(self, targets: Iterable[str], *, with_dependencies: bool = True) -> set[str]:
        names = [self.registry.get(t).name for t in targets]
        if not with_dependencies:
            return set(names)

        seen: set[str] = set()
        stack = list(names)
        while stack:
            name = stack.pop()
            if name in seen:
                continue
            seen.add(name)
            stack.extend(self.registry.predecessors(name))
        return seen

    def plan(self, targets: Sequence[str], *, with_dependencies: bool = True) -> list[Stage]:
        """
        Minimal ordered stage list for `targets`. Deterministic: among ready
        stages the one needed by the earliest requested target goes first,
        then declaration order.
        """
        if not targets:
            raise ConfigurationError("No target requested")

        goal_rank: dict[str, int] = {}
        for rank, target in enumerate(targets):
            for name in self.closure([target], with_dependencies=with_dependencies):
                goal_rank.setdefault(name, rank)

        selected = set(goal_rank)
        preds = {
            n: [p for p in self.registry.predecessors(n) if p in selected] for n in selected
        }
        indegree = {n: len(ps) for n, ps in preds.items()}
        dependents: dict[str, list[str]] = {n: [] for n in selected}
        for n, ps in preds.items():
            for p in ps:
                dependents[p].append(n)

        def key(n: str) -> tuple[int, int, str]:
            return (goal_rank[n], self.registry.declaration_index(n), n)

        ready = [key(n) for n in selected if indegree[n] == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            _, _, n = heapq.heappop(ready)
            order.append(n)
            for d in dependents[n]:
                indegree[d] -= 1
                if indegree[d] == 0:
                    heapq.heappush(ready, key(d))

        if len(order) != len(selected):
            # The registry rejects cycles at load; this guards hand-built registries.
            raise ConfigurationError(f"Cannot order stages: {sorted(selected - set(order))}")

        return [self.registry.get(n) for n in order]

    # Decisions

    def check_inputs(self, stage: Stage) -> None:
        for aid in stage.inputs:
            art = self.registry.artifact(aid)
            if art.required and not self.store.exists(art):
                producer = self.registry.producer_of(aid)
                hint = f" (produced by {producer})" if producer else ""
                raise DependencyUnmet(
                    f"Stage {stage.name!r} needs {aid!r}{hint} but it is absent at {art.location}",
                    artifact_id=aid,
                    location=art.location,
                )

    def decide(self, stage: Stage, *, upstream_ran: Sequence[str] = ()) -> tuple[bool, str]:
        """
        Return (must_run, reason).

        A stage runs when it is always_run, when an upstream stage executed in
        this run, or when any of its outputs is stale.
        """
        if stage.always_run:
            return True, "always runs"
        if upstream_ran:
            return True, f"upstream rebuilt: {', '.join(upstream_ran)}"

        inputs = [self.registry.artifact(a) for a in stage.inputs]
        for aid in stage.outputs:
            why = self.store.staleness(
                self.registry.artifact(aid), inputs, cache_only=stage.cache_only
            )
            if why is not None:
                return True, why
        return False, "outputs up to date"

    def preview(self, plan: Sequence[Stage]) -> list[PlannedStage]:
        """Dry run: assume every stage that would run succeeds. Nothing executes."""
        will_run: set[str] = set()
        blocked: set[str] = set()
        out: list[PlannedStage] = []
        planned = {s.name for s in plan}

        for st in plan:
            preds = [p for p in self.registry.predecessors(st.name) if p in planned]
            if any(p in blocked for p in preds):
                blocked.add(st.name)
                out.append(PlannedStage(st.name, "blocked", "upstream blocked"))
                continue

            missing = [
                aid
                for aid in st.inputs
                if self.registry.artifact(aid).required
                and self.registry.producer_of(aid) not in will_run
                and not self.store.exists(self.registry.artifact(aid))
            ]
            if missing:
                blocked.add(st.name)
                out.append(PlannedStage(st.name, "blocked", f"missing: {', '.join(missing)}"))
                continue

            must_run, reason = self.decide(st, upstream_ran=[p for p in preds if p in will_run])
            if must_run:
                will_run.add(st.name)
            out.append(PlannedStage(st.name, "run" if must_run else "skip", reason))
        return out

    # Execution

    def _run_one(
        self,
        ctx: RunContext,
        stage: Stage,
        *,
        upstream_ran: list[str],
        index: int,
        total: int,
    ) -> StageResult:
        log = ctx.stage_logger(stage.name)
        try:
            self.check_inputs(stage)
            must_run, reason = self.decide(stage, upstream_ran=upstream_ran)
        except Exception as e:
            res = failed(stage.name, e)
            ctx.emit(EventType.STAGE_FAILED, stage=stage.name, kind=res.reason)
            log.error("Stage cannot start", kind=res.reason, error=str(e))
            return res

        if not must_run:
            ctx.emit(EventType.STAGE_SKIP, stage=stage.name, reason=reason)
            log.info("Stage skipped", position=f"{index}/{total}", reason=reason)
            return skipped(stage.name, reason)

        outputs = [self.registry.artifact(a) for a in stage.outputs]
        return run_stage(
            ctx=ctx, stage=stage, outputs=outputs, reason=reason, index=index, total=total
        )

    def execute(self, plan: Sequence[Stage], ctx: RunContext) -> list[StageResult]:
        """
        Run `plan` in order with at most `jobs` stages in flight.

        A stage is dispatched once every in-plan predecessor has finished;
        exclusive stages never overlap with anything.
        """
        planned = {s.name for s in plan}
        total = len(plan)
        results: dict[str, StageResult] = {}
        failure: StageResult | None = None

        def ready(st: Stage) -> bool:
            return all(
                p in results for p in self.registry.predecessors(st.name) if p in planned
            )

        with ThreadPoolExecutor(max_workers=self.jobs, thread_name_prefix="stage") as pool:
            in_flight: dict[Future[StageResult], Stage] = {}
            idx = 0

            while True:
                while failure is None and idx < total and len(in_flight) < self.jobs:
                    st = plan[idx]
                    if not ready(st):
                        break
                    if in_flight and (st.exclusive or any(s.exclusive for s in in_flight.values())):
                        break

                    upstream_ran = [
                        p
                        for p in self.registry.predecessors(st.name)
                        if p in planned and results[p].ran
                    ]
                    run_ctx = contextvars.copy_context()
                    fut = pool.submit(
                        run_ctx.run,
                        self._run_one,
                        ctx,
                        st,
                        upstream_ran=upstream_ran,
                        index=idx + 1,
                        total=total,
                    )
                    in_flight[fut] = st
                    idx += 1

                if not in_flight:
                    break

                done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
                for fut in sorted(done, key=lambda f: plan.index(in_flight[f])):
                    st = in_flight.pop(fut)
                    res = fut.result()
                    if failure is not None:
                        ctx.emit(EventType.STAGE_DISCARDED, stage=st.name, status=res.status.value)
                        self.log.warning(
                            "Discarding result of stage finished after failure",
                            stage=st.name,
                            status=res.status.value,
                            failed_stage=failure.stage,
                        )
                        res = not_attempted(
                            st.name, f"discarded after {failure.stage} failed"
                        )
                    elif res.status is StageStatus.FAILED:
                        failure = res
                        self.log.error("Stopping on first failure", stage=st.name)
                    results[st.name] = res

        ordered: list[StageResult] = []
        for st in plan:
            res = results.get(st.name)
            if res is None:
                why = f"{failure.stage} failed" if failure is not None else "not reached"
                ctx.emit(EventType.STAGE_NOT_ATTEMPTED, stage=st.name, reason=why)
                res = not_attempted(st.name, why)
            ordered.append(res)
        return ordered
