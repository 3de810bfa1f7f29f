# trigger.py
from __future__ import annotations

import hashlib
import threading
import uuid
from collections import OrderedDict
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional

from ._log import get_logger
from .executor import Executor
from .loader import Source, load_graph
from .model import Graph, Run
from .report import RunReport, aggregate, build_report

logger = get_logger("trigger")

# change_ref -> checked-out workspace. Source control itself lives outside gateci.
Checkout = Callable[[str], Path]


def cache_key(graph: Graph, change_ref: str) -> str:
    return hashlib.sha256(f"{graph.fingerprint()}:{change_ref}".encode("utf-8")).hexdigest()


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@dataclass(frozen=True)
class Triggered:
    run_id: str
    cached: bool


class TriggerService:
    """
    Turns "a change was proposed" into exactly one Run.

    Runs execute in the background; the same (graph, change_ref) pair maps
    to the same run, so re-triggering returns the existing run (and its
    verdict once recorded) instead of executing again.

    At most `max_runs` runs are kept; past that the oldest finished runs are
    dropped along with their cache entries. Runs still in flight are never
    dropped, so the cap can be exceeded while they finish.
    """

    def __init__(
        self,
        source: Source,
        *,
        executor: Optional[Executor] = None,
        checkout: Optional[Checkout] = None,
        max_concurrent_runs: Optional[int] = None,
        max_runs: Optional[int] = 100,
    ):
        self._graph = load_graph(source)
        self._executor = executor or Executor()
        self._checkout = checkout
        self._lock = threading.Lock()
        self._max_runs = max_runs
        self._runs: OrderedDict[str, Run] = OrderedDict()
        self._futures: Dict[str, Future] = {}
        self._by_key: Dict[str, str] = {}
        self._pool = ThreadPoolExecutor(max_workers=max_concurrent_runs, thread_name_prefix="gateci-run")

    # ---- graph ----

    @property
    def graph(self) -> Graph:
        return self._graph

    def reload_graph(self, source: Source) -> Graph:
        """Swap in a new graph. Later triggers key off its fingerprint."""
        graph = load_graph(source)
        with self._lock:
            self._graph = graph
        logger.info("graph reloaded (%d jobs, %s)", len(graph), graph.fingerprint()[:12])
        return graph

    # ---- triggering ----

    def on_change_proposed(self, change_ref: str) -> str:
        return self.trigger(change_ref).run_id

    def trigger(self, change_ref: str) -> Triggered:
        with self._lock:
            graph = self._graph
            key = cache_key(graph, change_ref)
            existing = self._by_key.get(key)
            if existing is not None and not self._crashed(existing):
                logger.debug("change %s already has run %s", change_ref, existing)
                return Triggered(run_id=existing, cached=True)

            run = Run(run_id=new_run_id(), graph=graph, change_ref=change_ref)
            self._runs[run.run_id] = run
            self._by_key[key] = run.run_id
            self._futures[run.run_id] = self._pool.submit(self._execute, run)
            self._evict_locked()

        logger.info("change %s -> run %s", change_ref, run.run_id)
        return Triggered(run_id=run.run_id, cached=False)

    def _evict_locked(self) -> None:
        if self._max_runs is None:
            return
        excess = len(self._runs) - self._max_runs
        if excess <= 0:
            return
        done = [rid for rid in self._runs if self._futures[rid].done()][:excess]
        for rid in done:
            del self._runs[rid]
            del self._futures[rid]
        gone = set(done)
        for key in [k for k, rid in self._by_key.items() if rid in gone]:
            del self._by_key[key]
        if done:
            logger.debug("dropped %d finished run(s): %s", len(done), ", ".join(done))

    def _crashed(self, run_id: str) -> bool:
        fut = self._futures[run_id]
        return fut.done() and fut.exception() is not None

    def _execute(self, run: Run) -> Run:
        workspace = None
        if self._checkout is not None:
            try:
                workspace = self._checkout(run.change_ref)
            except Exception as e:
                logger.error("checkout of %s failed: %s", run.change_ref, e)
                self._executor.abort(run, f"checkout of {run.change_ref} failed: {e}")
                aggregate(run)
                return run

        self._executor.execute(run, workspace=workspace)
        aggregate(run)
        return run

    # ---- results ----

    def get_run(self, run_id: str) -> Run:
        with self._lock:
            return self._runs[run_id]

    def report(self, run_id: str) -> RunReport:
        return build_report(self.get_run(run_id))

    def wait(self, run_id: str, timeout: Optional[float] = None) -> RunReport:
        """Block until the run has a verdict; re-raises if the run itself crashed."""
        with self._lock:
            fut = self._futures[run_id]
        fut.result(timeout=timeout)
        return self.report(run_id)

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)

    def __enter__(self) -> TriggerService:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()
