"""Shared test fixtures and helpers."""

from __future__ import annotations

import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

import pytest

from gateci.dag import build_graph
from gateci.dsl import job, sh
from gateci.executor import Executor
from gateci.model import Graph, JobRecord, Run
from gateci.provision import Provisioner
from gateci.toolchain import CommandResult

Outcome = Union[int, tuple, BaseException, Callable[[str], CommandResult]]

FAKE_CONTAINER_ID = "c0ffee123456"


class FakeToolchain:
    """
    Stand-in CommandRunner.

    `results` maps a command (or a substring of the joined argv) to:
      - an exit code
      - (exit_code, output)
      - an exception instance to raise
      - a callable(cmd) -> CommandResult
    Anything unmatched succeeds. `docker run -d` returns FAKE_CONTAINER_ID.
    """

    def __init__(self, results: Optional[Dict[str, Outcome]] = None, delays: Optional[Dict[str, float]] = None):
        self.results = results or {}
        self.delays = delays or {}
        self.calls: List[str] = []
        self.timeouts: List[Optional[float]] = []
        self.envs: List[Optional[dict]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _lookup(self, table: dict, key: str):
        if key in table:
            return table[key]
        for pattern, value in table.items():
            if pattern in key:
                return value
        return None

    def __call__(self, cmd, *, cwd=None, env=None, timeout=None) -> CommandResult:
        key = cmd if isinstance(cmd, str) else " ".join(cmd)
        with self._lock:
            self.calls.append(key)
            self.timeouts.append(timeout)
            self.envs.append(env)
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            delay = self._lookup(self.delays, key)
            if delay:
                time.sleep(delay)

            outcome = self._lookup(self.results, key)
            if outcome is None:
                if not isinstance(cmd, str) and len(cmd) > 1 and cmd[1] == "run":
                    return CommandResult(0, FAKE_CONTAINER_ID + "\n")
                return CommandResult(0, f"ok: {key}")
            if isinstance(outcome, BaseException):
                raise outcome
            if callable(outcome):
                return outcome(key)
            if isinstance(outcome, tuple):
                return CommandResult(*outcome)
            return CommandResult(outcome, f"exit {outcome}: {key}")
        finally:
            with self._lock:
                self.active -= 1

    def ran(self, fragment: str) -> bool:
        return any(fragment in c for c in self.calls)


class Recorder:
    """Executor listener that keeps the (job, state) sequence."""

    def __init__(self):
        self.events: List[tuple] = []
        self._lock = threading.Lock()

    def __call__(self, rec: JobRecord) -> None:
        with self._lock:
            self.events.append((rec.name, rec.state.value))

    def states_of(self, name: str) -> List[str]:
        return [s for n, s in self.events if n == name]

    def index(self, name: str, state: str) -> int:
        return self.events.index((name, state))


def make_graph(*specs) -> Graph:
    """make_graph(("fmt", []), ("lint", ["fmt"])) -> graph whose step command is `run-<name>`."""
    return build_graph([job(name, sh(f"{name} step", f"run-{name}"), needs=list(needs)) for name, needs in specs])


def run_graph(graph: Graph, tools: FakeToolchain, workspace: Path, **kwargs) -> tuple:
    recorder = Recorder()
    executor = Executor(Provisioner(runner=tools), workspace=workspace, listener=recorder, **kwargs)
    run = executor.execute(Run("test-run", graph))
    return run, recorder


@pytest.fixture
def tools() -> FakeToolchain:
    return FakeToolchain()


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    return tmp_path


@pytest.fixture
def pipeline_graph() -> Graph:
    """fmt -> {lint, testA, testB}; docs independent."""
    return make_graph(
        ("fmt", []),
        ("lint", ["fmt"]),
        ("testA", ["fmt"]),
        ("testB", ["fmt"]),
        ("docs", []),
    )
