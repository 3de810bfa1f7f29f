# model.py
from __future__ import annotations

import enum
import hashlib
import json
import time
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple, Union


# ---------------------------------------------------------------------
# Environments (closed set: bare host or a named container image)
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Host:
    """Run directly on the machine executing gateci."""
    kind = "host"

    def describe(self) -> str:
        return "host"


@dataclass(frozen=True)
class Container:
    """Run inside an isolated container started from `image`."""
    image: str
    kind = "container"

    def describe(self) -> str:
        return f"container:{self.image}"


Environment = Union[Host, Container]

HOST = Host()


# ---------------------------------------------------------------------
# Job descriptors
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class Setup:
    """A pre-step run by the provisioner before any job step."""
    name: str
    run: Optional[str] = None   # None -> nothing to execute (e.g. checkout)


@dataclass(frozen=True)
class Step:
    """A single command (step) inside a CI job."""
    name: str
    run: str
    cwd: str | None = None
    env: Tuple[Tuple[str, str], ...] = ()


@dataclass(frozen=True)
class Job:
    """
    A CI job: environment + setup + ordered steps + dependencies.

    `needs` names jobs that must succeed before this one becomes eligible.
    """
    name: str
    steps: Tuple[Step, ...]
    needs: Tuple[str, ...] = ()
    environment: Environment = HOST
    setup: Tuple[Setup, ...] = ()
    env: Tuple[Tuple[str, str], ...] = ()
    timeout: Optional[float] = None
    display_name: Optional[str] = None

    @property
    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)

    @property
    def title(self) -> str:
        return self.display_name or self.name

    def to_dict(self) -> dict:
        out: dict = {
            "name": self.name,
            "environment": self.environment.describe(),
            "needs": list(self.needs),
            "setup": [{"name": s.name, "run": s.run} for s in self.setup],
            "steps": [
                {"name": s.name, "run": s.run, "cwd": s.cwd, "env": dict(s.env)}
                for s in self.steps
            ],
            "env": dict(self.env),
            "timeout": self.timeout,
        }
        if self.display_name:
            out["display_name"] = self.display_name
        return out


class Graph:
    """
    Immutable, validated job graph. Build it with `gateci.loader.load_graph`
    or `gateci.dag.build_graph`; never construct directly from unchecked jobs.
    """

    def __init__(self, jobs: Mapping[str, Job], dependents: Mapping[str, Tuple[str, ...]], order: Tuple[str, ...]):
        self._jobs = MappingProxyType(dict(jobs))
        self._dependents = MappingProxyType(dict(dependents))
        self._order = tuple(order)

    @property
    def jobs(self) -> Mapping[str, Job]:
        return self._jobs

    @property
    def order(self) -> Tuple[str, ...]:
        """A deterministic topological order of job names."""
        return self._order

    def dependents(self, name: str) -> Tuple[str, ...]:
        return self._dependents.get(name, ())

    def __getitem__(self, name: str) -> Job:
        return self._jobs[name]

    def __contains__(self, name: object) -> bool:
        return name in self._jobs

    def __iter__(self):
        return (self._jobs[n] for n in self._order)

    def __len__(self) -> int:
        return len(self._jobs)

    def to_dict(self) -> dict:
        return {"jobs": [self._jobs[n].to_dict() for n in self._order]}

    def fingerprint(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------
# Run-time state
# ---------------------------------------------------------------------

class JobState(str, enum.Enum):
    PENDING = "pending"
    READY = "ready"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (JobState.SUCCEEDED, JobState.FAILED, JobState.SKIPPED)


class StepStatus(str, enum.Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    NOT_ATTEMPTED = "not_attempted"


class Verdict(str, enum.Enum):
    PASS = "pass"
    FAIL = "fail"


@dataclass
class StepResult:
    name: str
    status: StepStatus
    exit_code: Optional[int] = None
    output: str = ""
    duration: float = 0.0


@dataclass
class JobRecord:
    """Mutable per-run state of one job. Owned by exactly one Run."""
    job: Job
    state: JobState = JobState.PENDING
    steps: List[StepResult] = field(default_factory=list)
    error_kind: Optional[str] = None     # config | provision | step | timeout | infrastructure | skipped
    failed_step: Optional[str] = None
    diagnostic: str = ""
    started_at: Optional[float] = None
    finished_at: Optional[float] = None

    @property
    def name(self) -> str:
        return self.job.name

    @property
    def duration(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return self.finished_at - self.started_at


class Run:
    """
    One execution of a graph. Starts with every job Pending; becomes
    immutable once its verdict is recorded.
    """

    def __init__(self, run_id: str, graph: Graph, change_ref: Optional[str] = None):
        self.run_id = run_id
        self.graph = graph
        self.change_ref = change_ref
        self.created_at = time.time()
        self.records: Dict[str, JobRecord] = {job.name: JobRecord(job=job) for job in graph}
        self._verdict: Optional[Verdict] = None

    @property
    def verdict(self) -> Optional[Verdict]:
        return self._verdict

    @property
    def finished(self) -> bool:
        return self._verdict is not None

    @property
    def failing(self) -> bool:
        """True as soon as any job has Failed, before the verdict is in."""
        return any(rec.state is JobState.FAILED for rec in self.records.values())

    def record_verdict(self, verdict: Verdict) -> None:
        if self._verdict is not None:
            raise RuntimeError(f"Run {self.run_id} already has verdict {self._verdict.value}")
        self._verdict = verdict

    def states(self) -> Dict[str, JobState]:
        return {name: rec.state for name, rec in self.records.items()}
