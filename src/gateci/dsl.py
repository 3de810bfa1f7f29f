# src/gateci/dsl.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from .model import HOST, Container, Environment, Job, Setup, Step


# ---------------------------------------------------------------------
# Step / setup helpers
# ---------------------------------------------------------------------

def sh(name: str, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None) -> Step:
    """Create a shell step."""
    return Step(name=name, run=cmd, cwd=cwd, env=_pairs(env))


def setup(name: str, cmd: str | None = None) -> Setup:
    """Create a provisioning pre-step (tool install, toolchain update)."""
    return Setup(name=name, run=cmd)


def container(image: str) -> Container:
    return Container(image=image)


def _pairs(env: Optional[Dict[str, Any]]) -> tuple:
    # force values to str for stable hashing + env compatibility
    return tuple(sorted((k, str(v)) for k, v in (env or {}).items()))


# ---------------------------------------------------------------------
# Functional Job helper
# ---------------------------------------------------------------------

def job(
    name: str,
    *steps: Step,  # allow: job("x", sh(...), sh(...))
    steps_list: Optional[List[Step]] = None,  # allow: job("x", steps_list=[...])
    needs: Optional[List[str]] = None,
    image: Optional[str] = None,
    environment: Optional[Environment] = None,
    setup: Optional[List[Setup]] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
    cwd: str | None = None,  # default cwd applied to steps missing cwd
    display_name: Optional[str] = None,
) -> Job:
    steps_final: List[Step] = []
    if steps_list:
        steps_final.extend(list(steps_list))
    steps_final.extend(list(steps))

    if not steps_final:
        raise ValueError(f"job({name!r}) must have at least one step")
    if image is not None and environment is not None:
        raise ValueError(f"job({name!r}): pass either image= or environment=, not both")

    if cwd is not None:
        steps_final = [s if s.cwd is not None else replace(s, cwd=cwd) for s in steps_final]

    if environment is None:
        environment = Container(image) if image else HOST

    return Job(
        name=name,
        steps=tuple(steps_final),
        needs=tuple(needs or ()),
        environment=environment,
        setup=tuple(setup or ()),
        env=_pairs(env),
        timeout=timeout,
        display_name=display_name,
    )


# ---------------------------------------------------------------------
# Builder API
# ---------------------------------------------------------------------

class JobBuilder:
    def __init__(self, name: str):
        self.name = name
        self._needs: list[str] = []
        self._steps: list[Step] = []
        self._setup: list[Setup] = []
        self._env: dict[str, str] = {}
        self._environment: Environment = HOST
        self._timeout: Optional[float] = None

    def depends_on(self, *job_names: str):
        self._needs.extend(job_names)
        return self

    def in_container(self, image: str):
        self._environment = Container(image)
        return self

    def define_setup(self, name: str, run: str | None = None):
        self._setup.append(Setup(name=name, run=run))
        return self

    def define_step(self, name: str, run: str, cwd: str | None = None):
        self._steps.append(Step(name=name, run=run, cwd=cwd))
        return self

    def with_env(self, **env):
        self._env.update({k: str(v) for k, v in env.items()})
        return self

    def with_timeout(self, seconds: float):
        self._timeout = seconds
        return self

    def build(self) -> Job:
        if not self._steps:
            raise ValueError(f"Job '{self.name}' has no steps")

        return Job(
            name=self.name,
            steps=tuple(self._steps),
            needs=tuple(self._needs),
            environment=self._environment,
            setup=tuple(self._setup),
            env=_pairs(self._env),
            timeout=self._timeout,
        )


def build(name: str) -> JobBuilder:
    """Convenience: build('test').define_step(...).build()"""
    return JobBuilder(name)


# ---------------------------------------------------------------------
# Matrix
# ---------------------------------------------------------------------

class Matrix:
    """
    Minimal matrix expander.

    Example:
        matrix("features", ["default", "all"]).jobs(
            lambda v: job(f"test-{v}", sh(...), needs=["fmt"])
        )
    """
    def __init__(self, key: str, values: Iterable[Any]):
        self.key = key
        self.values = list(values)

    def jobs(self, builder: Callable[[Any], Job]) -> List[Job]:
        return [builder(v) for v in self.values]


def matrix(key: str, values: Iterable[Any]) -> Matrix:
    return Matrix(key, values)


# ---------------------------------------------------------------------
# Workflow helper (single-file story)
# ---------------------------------------------------------------------

def wf(*jobs: Job | List[Job]) -> List[Job]:
    """
    Workflow definition helper. Matrix expansions may be passed inline:

        from gateci import wf, job, sh, matrix

        def workflow():
            return wf(
                job("fmt", sh("Check", "cargo fmt --check")),
                matrix("f", ["a", "b"]).jobs(lambda f: job(f"test-{f}", ...)),
            )
    """
    out: List[Job] = []
    for item in jobs:
        if isinstance(item, list):
            out.extend(item)
        else:
            out.append(item)
    return out


workflow = wf  # alias (avoid naming your function workflow if you use it)
