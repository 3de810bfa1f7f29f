# dag.py
from __future__ import annotations

from collections import deque
from typing import Dict, Iterable, List, Optional, Set, Tuple

from .errors import ConfigError
from .model import Graph, Job


def build_dag(jobs: List[Job]) -> Tuple[Dict[str, Set[str]], Dict[str, int]]:
    """
    Build adjacency (dep -> dependents) and in-degree maps from Job objects.

    Requires:
      - job.name: str (unique)
      - job.needs: names of jobs that must succeed BEFORE this job
    """
    names = [j.name for j in jobs]
    if len(set(names)) != len(names):
        dupes = sorted({n for n in names if names.count(n) > 1})
        raise ConfigError(f"Duplicate job names found: {dupes}")

    name_set = set(names)
    adj: Dict[str, Set[str]] = {n: set() for n in name_set}
    indeg: Dict[str, int] = {n: 0 for n in name_set}

    for job in jobs:
        for dep in job.needs:
            if dep not in name_set:
                raise ConfigError(
                    f"Job '{job.name}' needs missing job '{dep}'. "
                    f"Known jobs: {sorted(name_set)}",
                    job=job.name,
                    missing=dep,
                )
            # Edge dep -> job.name (dep must succeed before job)
            if job.name not in adj[dep]:
                adj[dep].add(job.name)
                indeg[job.name] += 1

    return adj, indeg


def find_cycle(adj: Dict[str, Set[str]]) -> Optional[List[str]]:
    """
    Return one cycle as a closed path ([a, b, a]) or None.
    Iterative DFS so deep graphs don't hit the recursion limit.
    """
    WHITE, GREY, BLACK = 0, 1, 2
    color = {n: WHITE for n in adj}

    for root in sorted(adj):
        if color[root] != WHITE:
            continue
        path: List[str] = [root]
        stack = [iter(sorted(adj[root]))]
        color[root] = GREY

        while stack:
            nxt = next(stack[-1], None)
            if nxt is None:
                color[path.pop()] = BLACK
                stack.pop()
                continue
            if color[nxt] == GREY:
                return path[path.index(nxt):] + [nxt]
            if color[nxt] == WHITE:
                color[nxt] = GREY
                path.append(nxt)
                stack.append(iter(sorted(adj[nxt])))

    return None


def topo_levels(adj: Dict[str, Set[str]], indeg: Dict[str, int]) -> List[List[str]]:
    """
    Convert DAG into topological "levels" (stages).
    Each stage can run in parallel.
    """
    indeg = dict(indeg)  # copy (we mutate it)
    q = deque(sorted([n for n, d in indeg.items() if d == 0]))

    levels: List[List[str]] = []
    processed = 0

    while q:
        level_size = len(q)
        level: List[str] = []

        for _ in range(level_size):
            node = q.popleft()
            level.append(node)
            processed += 1

            for child in sorted(adj.get(node, set())):
                indeg[child] -= 1
                if indeg[child] == 0:
                    q.append(child)

        levels.append(level)

    if processed != len(indeg):
        cycle = find_cycle(adj) or sorted(n for n, d in indeg.items() if d > 0)
        raise ConfigError(f"Job graph has a cycle: {' -> '.join(cycle)}", cycle=cycle)

    return levels


def build_graph(jobs: Iterable[Job]) -> Graph:
    """Validate jobs and freeze them into a Graph."""
    jobs = list(jobs)
    for job in jobs:
        if not job.steps:
            raise ConfigError(f"Job '{job.name}' must have at least one step", job=job.name)

    adj, indeg = build_dag(jobs)
    levels = topo_levels(adj, indeg)
    order = tuple(name for level in levels for name in level)

    return Graph(
        jobs={j.name: j for j in jobs},
        dependents={n: tuple(sorted(children)) for n, children in adj.items()},
        order=order,
    )


def graph_levels(graph: Graph) -> List[List[str]]:
    """Stages of a validated graph, for plan output."""
    adj = {n: set(graph.dependents(n)) for n in graph.jobs}
    indeg = {n: len(set(graph[n].needs)) for n in graph.jobs}
    return topo_levels(adj, indeg)
