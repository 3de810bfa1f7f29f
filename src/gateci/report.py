# report.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import List, Optional

from .model import JobState, Run, StepStatus, Verdict


@dataclass(frozen=True)
class StepReport:
    name: str
    status: str
    exit_code: Optional[int]
    duration: float


@dataclass(frozen=True)
class JobReport:
    name: str
    state: str
    environment: str
    error_kind: Optional[str] = None
    failed_step: Optional[str] = None
    diagnostic: Optional[str] = None
    duration: Optional[float] = None
    steps: List[StepReport] = field(default_factory=list)


@dataclass(frozen=True)
class RunReport:
    run_id: str
    change_ref: Optional[str]
    verdict: Optional[str]
    jobs: List[JobReport]
    failing: bool = False

    @property
    def passed(self) -> bool:
        return self.verdict == Verdict.PASS.value

    def job(self, name: str) -> JobReport:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)

    def to_dict(self) -> dict:
        return asdict(self)


def aggregate(run: Run) -> Verdict:
    """
    Reduce a run to its gate verdict and record it on the run.

    Pass iff every job Succeeded. Calling this before every job is
    terminal is a bug in the caller.
    """
    if run.verdict is not None:
        return run.verdict

    pending = sorted(name for name, rec in run.records.items() if not rec.state.terminal)
    if pending:
        raise RuntimeError(f"Run {run.run_id} still has non-terminal jobs: {pending}")

    ok = all(rec.state is JobState.SUCCEEDED for rec in run.records.values())
    verdict = Verdict.PASS if ok else Verdict.FAIL
    run.record_verdict(verdict)
    return verdict


def build_report(run: Run) -> RunReport:
    """Per-job outcome report, in graph order. Works mid-run too (verdict None)."""
    jobs: List[JobReport] = []
    for name in run.graph.order:
        rec = run.records[name]
        failed = rec.state in (JobState.FAILED, JobState.SKIPPED)
        jobs.append(JobReport(
            name=name,
            state=rec.state.value,
            environment=rec.job.environment.describe(),
            error_kind=rec.error_kind,
            failed_step=rec.failed_step if rec.state is JobState.FAILED else None,
            diagnostic=rec.diagnostic if failed else None,
            duration=rec.duration,
            steps=[
                StepReport(name=s.name, status=s.status.value, exit_code=s.exit_code, duration=s.duration)
                for s in rec.steps
            ] or [
                StepReport(name=s.name, status=StepStatus.NOT_ATTEMPTED.value, exit_code=None, duration=0.0)
                for s in rec.job.steps
            ],
        ))

    return RunReport(
        run_id=run.run_id,
        change_ref=run.change_ref,
        verdict=run.verdict.value if run.verdict is not None else None,
        jobs=jobs,
        failing=run.failing,
    )
