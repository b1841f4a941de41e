# executor.py
from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional, Tuple

from .errors import BuildFlowError, JobExecutionError, PipelineStateError
from .history import BuildHistory
from .model import ArtifactReference, Job, JobStatus, Pipeline, Promotion, RunContext, RunResult
from .promotion import PromotionGate, PromotionOutcome
from .registry import JobRegistry
from .runner import JobFunction
from .ui.console import get_console


class PipelineState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


_TRANSITIONS = {
    PipelineState.PENDING: {PipelineState.RUNNING},
    PipelineState.RUNNING: {PipelineState.SUCCEEDED, PipelineState.FAILED},
    PipelineState.SUCCEEDED: set(),
    PipelineState.FAILED: set(),
}


@dataclass
class PipelineRun:
    """Everything observable about one execution of a pipeline."""
    pipeline: str
    state: PipelineState = PipelineState.PENDING
    results: Dict[str, RunResult] = field(default_factory=dict)
    errors: Dict[str, JobExecutionError] = field(default_factory=dict)
    failed_stages: List[str] = field(default_factory=list)
    trace: List[Tuple[str, str]] = field(default_factory=list)  # ("start"|"finish", job)
    promotion: Optional[PromotionOutcome] = None
    cancelled: bool = False

    def transition(self, new: PipelineState) -> None:
        if new not in _TRANSITIONS[self.state]:
            raise PipelineStateError(f"Pipeline '{self.pipeline}': cannot go from {self.state.value} to {new.value}")
        self.state = new

    @property
    def succeeded(self) -> bool:
        return self.state is PipelineState.SUCCEEDED

    @property
    def artifacts(self) -> List[ArtifactReference]:
        out: List[ArtifactReference] = []
        for result in self.results.values():
            if result.ok:
                out.extend(result.artifacts)
        return out

    def started(self) -> List[str]:
        return [name for event, name in self.trace if event == "start"]

    def finished(self) -> List[str]:
        return [name for event, name in self.trace if event == "finish"]


class PipelineExecutor:
    """
    Runs a Pipeline stage by stage.

    - single-job stage: run it, stop the pipeline if it fails
    - parallel stage: start every job, wait for all of them, then stop the
      pipeline if any failed
    - promotion: only after every stage succeeded; its outcome never changes
      the run's state
    """

    def __init__(
        self,
        registry: JobRegistry,
        run_fn: JobFunction,
        *,
        history: BuildHistory | None = None,
        gate: PromotionGate | None = None,
        max_workers: int | None = None,
    ):
        self.registry = registry
        self.run_fn = run_fn
        self.history = history or BuildHistory()
        self.gate = gate
        self.max_workers = max_workers

        self._lock = threading.Lock()
        self._cancel = threading.Event()
        self._active: Dict[str, RunContext] = {}

    # ----------------------------------------------------------------------
    # Cancellation
    # ----------------------------------------------------------------------

    def cancel(self) -> None:
        """Abort the current run: signal every in-flight job, start nothing new."""
        self._cancel.set()
        with self._lock:
            for ctx in self._active.values():
                ctx.cancel_event.set()

    # ----------------------------------------------------------------------
    # Job level
    # ----------------------------------------------------------------------

    def _invoke(self, job: Job, ctx: RunContext) -> RunResult:
        try:
            return self.run_fn(job, ctx)
        except Exception as e:
            return RunResult(
                job=job.name,
                build_number=ctx.build_number,
                status=JobStatus.FAILURE,
                reason=f"{type(e).__name__}: {e}",
                started_at=datetime.now(timezone.utc),
            )

    def _forced_failure(self, job: Job, ctx: RunContext, reason: str) -> RunResult:
        return RunResult(
            job=job.name,
            build_number=ctx.build_number,
            status=JobStatus.FAILURE,
            reason=reason,
            started_at=datetime.now(timezone.utc),
        )

    def _finish(self, run: PipelineRun, job: Job, result: RunResult) -> None:
        console = get_console()
        with self._lock:
            self._active.pop(job.name, None)
            run.results[job.name] = result
            run.trace.append(("finish", job.name))
            if not result.ok:
                run.errors[job.name] = JobExecutionError(
                    job=job.name,
                    build_number=result.build_number,
                    reason=result.reason or "failed",
                    exit_code=result.exit_code,
                )
        self.history.record(result, job.retention)
        if result.ok:
            console.print_success(f"{job.name} #{result.build_number}")
        else:
            console.print_failure(job.name, result.reason or "failed", exit_code=result.exit_code)

    def _run_group(
        self,
        pool: ThreadPoolExecutor,
        run: PipelineRun,
        names: Tuple[str, ...],
        params: Optional[Dict[str, str]] = None,
    ) -> List[str]:
        """Start `names` together and wait for all of them. Returns the failed ones."""
        console = get_console()
        launched: Dict[Future, Tuple[Job, RunContext]] = {}

        for name in names:
            job = self.registry.lookup(name)
            ctx = RunContext(
                build_number=self.history.next_build_number(name),
                params=dict(params or {}),
                deadline=time.monotonic() + job.timeout if job.timeout else None,
            )
            with self._lock:
                if self._cancel.is_set():
                    ctx.cancel_event.set()
                self._active[name] = ctx
                run.trace.append(("start", name))
            console.print_job_start(name, ctx.build_number)
            launched[pool.submit(self._invoke, job, ctx)] = (job, ctx)

        pending = set(launched)
        while pending:
            deadlines = [launched[f][1].deadline for f in pending if launched[f][1].deadline is not None]
            timeout = max(0.0, min(deadlines) - time.monotonic()) if deadlines else None
            done, pending = wait(pending, timeout=timeout, return_when=FIRST_COMPLETED)

            for fut in done:
                job, _ctx = launched[fut]
                self._finish(run, job, fut.result())

            now = time.monotonic()
            for fut in list(pending):
                job, ctx = launched[fut]
                if ctx.deadline is not None and now >= ctx.deadline:
                    # the job function sees the cancel signal; its late result is dropped
                    ctx.cancel_event.set()
                    pending.discard(fut)
                    self._finish(run, job, self._forced_failure(job, ctx, "timeout"))

        return [name for name in names if not run.results[name].ok]

    # ----------------------------------------------------------------------
    # Pipeline level
    # ----------------------------------------------------------------------

    def _workers_for(self, pipeline: Pipeline) -> int:
        widest = max([len(s.jobs) for s in pipeline.stages] + [1])
        return max(self.max_workers or 0, widest)

    def execute(self, pipeline: Pipeline) -> PipelineRun:
        console = get_console()
        self.registry.freeze()
        self._cancel.clear()

        run = PipelineRun(pipeline=pipeline.name)
        run.transition(PipelineState.RUNNING)
        console.print_run_started(pipeline.name, len(pipeline.stages), len(pipeline.job_names()))

        pool = ThreadPoolExecutor(max_workers=self._workers_for(pipeline), thread_name_prefix="buildflow")
        try:
            for idx, stage in enumerate(pipeline.stages):
                if self._cancel.is_set():
                    # name the first stage that never started
                    run.cancelled = True
                    run.failed_stages = [stage.label]
                    break

                console.print_stage(idx + 1, stage.label)
                failed = self._run_group(pool, run, stage.jobs)
                if failed:
                    run.cancelled = self._cancel.is_set()
                    run.failed_stages = failed
                    break

            if not run.failed_stages and self._cancel.is_set() and pipeline.promotion is not None:
                run.cancelled = True
                run.failed_stages = [pipeline.promotion.label]

            if run.failed_stages:
                run.transition(PipelineState.FAILED)
            else:
                run.transition(PipelineState.SUCCEEDED)
                if pipeline.promotion is not None:
                    run.promotion = self._promote(pool, run, pipeline.promotion, len(pipeline.stages) + 1)
        finally:
            pool.shutdown(wait=False, cancel_futures=True)

        console.print_results(run)
        return run

    def _promote(
        self, pool: ThreadPoolExecutor, run: PipelineRun, promotion: Promotion, index: int
    ) -> PromotionOutcome:
        source = run.results[promotion.source]
        repository = promotion.repository or (self.gate.default_repository if self.gate else "")
        outcome = PromotionOutcome(promotion.source, source.build_number, repository)

        if promotion.job is not None:
            get_console().print_stage(index, promotion.label)
            params = {"BUILD_JOB_NAME": promotion.source, "BUILD_JOB_NUMBER": str(source.build_number)}
            if self._run_group(pool, run, (promotion.job,), params):
                outcome.error = run.errors[promotion.job]
                return outcome

        if self.gate is None:
            return outcome

        try:
            return self.gate.promote(
                promotion.source,
                source.build_number,
                repository=promotion.repository,
                pattern=promotion.pattern,
            )
        except BuildFlowError as e:
            outcome.error = e
            return outcome
