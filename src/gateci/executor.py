# executor.py
from __future__ import annotations

import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path
from typing import Callable, Dict, List, Optional

from ._log import get_logger
from .errors import CIError, InfrastructureError, StepFailure, StepTimeout
from .model import JobRecord, JobState, Run, Step, StepResult, StepStatus
from .provision import Deadline, ExecutionContext, Provisioner
from .toolchain import CommandTimeout

logger = get_logger("executor")

Listener = Callable[[JobRecord], None]


class Executor:
    """
    Runs every job of a Run on a thread pool, honoring `needs`.

    Scheduling (all on the calling thread):
      - jobs with no needs start Ready
      - a job becomes Ready once every dependency Succeeded
      - a Failed or Skipped dependency skips all pending dependents, transitively
      - running jobs are never cancelled; the loop ends when nothing is
        Ready or in flight

    Workers only touch their own JobRecord and report back through their
    Future. `listener` is called (serialized) on every state change.
    """

    def __init__(
        self,
        provisioner: Optional[Provisioner] = None,
        *,
        workspace: str | Path = ".",
        max_workers: Optional[int] = None,
        default_timeout: Optional[float] = None,
        listener: Optional[Listener] = None,
    ):
        self.provisioner = provisioner or Provisioner()
        self.workspace = Path(workspace)
        self.max_workers = max_workers
        self.default_timeout = default_timeout
        self.listener = listener
        self._notify_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def execute(self, run: Run, workspace: str | Path | None = None) -> Run:
        if run.finished:
            raise RuntimeError(f"Run {run.run_id} already has a verdict")
        if any(rec.state is not JobState.PENDING for rec in run.records.values()):
            raise RuntimeError(f"Run {run.run_id} was already executed")

        workspace_p = Path(workspace) if workspace is not None else self.workspace
        graph = run.graph
        records = run.records
        waiting_on: Dict[str, set] = {job.name: set(job.needs) for job in graph}

        ready: List[str] = []
        for name in graph.order:
            if not waiting_on[name]:
                self._transition(records[name], JobState.READY)
                ready.append(name)

        # no artificial cap: one worker per job unless told otherwise
        workers = self.max_workers or max(1, len(graph))
        in_flight: Dict[Future, str] = {}

        logger.debug("run %s: %d jobs, %d workers", run.run_id, len(graph), workers)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="gateci-job") as pool:
            while ready or in_flight:
                # schedule all currently ready
                while ready:
                    name = ready.pop(0)
                    try:
                        fut = pool.submit(self._run_job, records[name], workspace_p)
                    except RuntimeError as e:
                        self._fail(records[name], InfrastructureError(name, f"could not schedule worker: {e}"))
                        self._settle(run, name, waiting_on, ready)
                        continue
                    in_flight[fut] = name

                if not in_flight:
                    break

                # wait for any completion, then loop to schedule newly-ready jobs
                done, _ = wait(list(in_flight), return_when=FIRST_COMPLETED)
                for fut in done:
                    name = in_flight.pop(fut)
                    exc = fut.exception()
                    if exc is not None:
                        self._fail(records[name], InfrastructureError(name, f"worker crashed: {exc!r}"))
                    self._settle(run, name, waiting_on, ready)

        for rec in records.values():
            if not rec.state.terminal:
                # unreachable for a validated graph
                self._skip(rec, "never became eligible")

        return run

    def abort(self, run: Run, message: str) -> Run:
        """Fail every job of a run that could not start at all (e.g. checkout failed)."""
        for rec in run.records.values():
            if not rec.state.terminal:
                self._fail(rec, InfrastructureError(rec.name, message))
        return run

    def _settle(self, run: Run, name: str, waiting_on: Dict[str, set], ready: List[str]) -> None:
        """React to `name` reaching a terminal state."""
        rec = run.records[name]
        if rec.state is JobState.SUCCEEDED:
            for child in run.graph.dependents(name):
                waiting_on[child].discard(name)
                child_rec = run.records[child]
                if not waiting_on[child] and child_rec.state is JobState.PENDING:
                    self._transition(child_rec, JobState.READY)
                    ready.append(child)
            return

        # Failed or Skipped: cascade skip to everything downstream that hasn't started
        stack = [name]
        while stack:
            parent = stack.pop()
            parent_state = run.records[parent].state.value
            for child in run.graph.dependents(parent):
                child_rec = run.records[child]
                if child_rec.state is JobState.PENDING:
                    self._skip(child_rec, f"dependency '{parent}' {parent_state}")
                    stack.append(child)

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _run_job(self, rec: JobRecord, workspace: Path) -> JobRecord:
        job = rec.job
        rec.started_at = time.time()
        rec.steps = [StepResult(name=s.name, status=StepStatus.NOT_ATTEMPTED) for s in job.steps]
        self._transition(rec, JobState.RUNNING)

        deadline = Deadline(job.timeout if job.timeout is not None else self.default_timeout)
        try:
            with self.provisioner.provision(job, workspace, deadline) as ctx:
                for idx, step in enumerate(job.steps):
                    self._run_step(ctx, rec, idx, step, deadline)
        except CIError as e:
            self._fail(rec, e)
        except Exception as e:
            logger.exception("[%s] unexpected error", job.name)
            self._fail(rec, InfrastructureError(job.name, f"{type(e).__name__}: {e}"))
        else:
            rec.finished_at = time.time()
            self._transition(rec, JobState.SUCCEEDED)
        return rec

    def _run_step(self, ctx: ExecutionContext, rec: JobRecord, idx: int, step: Step, deadline: Deadline) -> None:
        job_name = rec.job.name
        result = rec.steps[idx]
        if deadline.expired:
            raise StepTimeout(job_name, step.name, deadline.seconds or 0.0)

        logger.debug("[%s] step %d/%d: %s", job_name, idx + 1, len(rec.steps), step.name)
        t0 = time.monotonic()
        try:
            outcome = ctx.run_step(step, timeout=deadline.remaining())
        except CommandTimeout as e:
            result.status = StepStatus.FAILED
            result.output = e.output
            result.duration = time.monotonic() - t0
            raise StepTimeout(job_name, step.name, deadline.seconds or e.timeout, e.output) from e
        except FileNotFoundError as e:
            result.status = StepStatus.FAILED
            result.exit_code = 127
            result.output = str(e)
            result.duration = time.monotonic() - t0
            raise StepFailure(job_name, step.name, step.run, 127, str(e)) from e

        result.duration = time.monotonic() - t0
        result.exit_code = outcome.exit_code
        result.output = outcome.output
        if not outcome.ok:
            result.status = StepStatus.FAILED
            raise StepFailure(job_name, step.name, step.run, outcome.exit_code, outcome.output)
        result.status = StepStatus.SUCCEEDED

    # ------------------------------------------------------------------
    # State changes
    # ------------------------------------------------------------------

    def _fail(self, rec: JobRecord, err: CIError) -> None:
        output = getattr(err, "output", "") or ""
        rec.error_kind = err.kind
        rec.failed_step = err.step
        rec.diagnostic = f"{err}\n{output}".rstrip() if output else str(err)
        if rec.finished_at is None:
            rec.finished_at = time.time()
        self._transition(rec, JobState.FAILED)

    def _skip(self, rec: JobRecord, reason: str) -> None:
        rec.error_kind = "skipped"
        rec.diagnostic = reason
        self._transition(rec, JobState.SKIPPED)

    def _transition(self, rec: JobRecord, state: JobState) -> None:
        rec.state = state
        logger.debug("[%s] -> %s", rec.name, state.value)
        if self.listener is not None:
            with self._notify_lock:
                self.listener(rec)
