# scheduler.py
from __future__ import annotations

import uuid
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Dict, List, Mapping, Optional

from .dag import build_dag, dependents, topo_levels
from .executor import CancelToken
from .model import Pipeline, RunResult, Stage, StageResult, StageStatus
from .stage import StageRunner
from .ui.console import get_console
from . import settings


class Scheduler:
    """
    Dispatches stages onto a bounded thread pool as soon as everything they
    need has succeeded.

    - the graph is validated (unknown needs, cycles) before anything runs
    - a failed stage skips every stage that transitively needs it
    - independent branches keep going unless stop_on_failure is set
    - RunResult is only written from this (the scheduling) thread
    """

    def __init__(
        self,
        runner: StageRunner,
        *,
        max_workers: Optional[int] = None,
        cancel: Optional[CancelToken] = None,
        stop_on_failure: bool = False,
    ):
        self.runner = runner
        self.max_workers = max_workers or settings.default_workers()
        self.cancel = cancel or runner.executor.cancel
        self.stop_on_failure = stop_on_failure

    def run(self, pipeline: Pipeline, *, run_id: Optional[str] = None) -> RunResult:
        console = get_console()

        adj, indeg = build_dag(pipeline.stages)
        topo_levels(adj, indeg)  # raises CyclicDependency before any stage starts

        by_name: Dict[str, Stage] = {s.name: s for s in pipeline.stages}
        # keep declaration order among ready stages
        order = {s.name: i for i, s in enumerate(pipeline.stages)}
        indeg = dict(indeg)
        ready: List[str] = sorted((n for n, d in indeg.items() if d == 0), key=order.get)

        result = RunResult(run_id=run_id or uuid.uuid4().hex[:12], pipeline=pipeline.name)
        in_flight: Dict[Future, str] = {}
        failed = False

        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="relayci-stage") as pool:
            while ready or in_flight:
                # schedule ready stages up to the worker limit
                while (
                    ready
                    and len(in_flight) < self.max_workers
                    and not self.cancel.cancelled
                    and not (self.stop_on_failure and failed)
                ):
                    name = ready.pop(0)
                    console.print_stage_start(name)
                    fut = pool.submit(self._run_stage, by_name[name], pipeline.env)
                    in_flight[fut] = name

                if not in_flight:
                    break

                # wait for one completion, then loop to schedule newly-ready stages
                fut = next(as_completed(list(in_flight.keys())))
                name = in_flight.pop(fut)
                stage_result = fut.result()
                result.record(stage_result)
                console.print_stage_done(stage_result)

                if stage_result.status is StageStatus.SUCCESS:
                    for nxt in sorted(adj[name], key=order.get):
                        indeg[nxt] -= 1
                        if indeg[nxt] == 0:
                            ready.append(nxt)
                    continue

                if stage_result.status is StageStatus.FAILED:
                    failed = True
                why = "run cancelled" if self.cancel.cancelled else f"dependency '{name}' did not succeed"
                for dep in sorted(dependents(adj, name), key=order.get):
                    if dep not in result.stages:
                        skipped = StageResult(name=dep, status=StageStatus.SKIPPED, error=why)
                        result.record(skipped)
                        console.print_stage_skipped(dep, skipped.error)

        if self.cancel.cancelled:
            result.cancelled = True
        reason = "run cancelled" if self.cancel.cancelled else "run stopped after a failure"
        for stage in pipeline.stages:
            if stage.name not in result.stages:
                result.record(StageResult(name=stage.name, status=StageStatus.SKIPPED, error=reason))
                console.print_stage_skipped(stage.name, reason)

        return result

    def _run_stage(self, stage: Stage, pipeline_env: Mapping[str, str]) -> StageResult:
        try:
            return self.runner.run(stage, pipeline_env)
        except Exception as e:
            # anything that escaped the stage runner still fails just this stage
            return StageResult(
                name=stage.name,
                status=StageStatus.FAILED,
                error=self.runner.executor.secrets.mask(f"{type(e).__name__}: {e}"),
            )
