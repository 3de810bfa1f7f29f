# provision.py
from __future__ import annotations

import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional

from ._log import get_logger
from .errors import ConfigError, ProvisionError, StepTimeout
from .model import Container, Job, Setup, Step
from .toolchain import CommandResult, CommandRunner, CommandTimeout, run_command, tool_hint

logger = get_logger("provision")

CONTAINER_WORKDIR = "/workspace"


# ---------------------------------------------------------------------
# `uses:` actions -> setup commands
# ---------------------------------------------------------------------

def _checkout(_with: Mapping[str, Any]) -> Optional[str]:
    # the workspace handed to the executor is already checked out
    return None


def _setup_protoc(_with: Mapping[str, Any]) -> Optional[str]:
    return (
        "command -v protoc >/dev/null 2>&1 || "
        "(apt-get update -qq && apt-get install -y -qq protobuf-compiler)"
    )


def _rust_toolchain(with_: Mapping[str, Any]) -> Optional[str]:
    toolchain = str(with_.get("toolchain", "stable"))
    return f"rustup toolchain install {toolchain} --profile minimal"


def _setup_python(with_: Mapping[str, Any]) -> Optional[str]:
    version = with_.get("python-version")
    return f"python{version} --version" if version else "python3 --version"


ACTIONS: Dict[str, Callable[[Mapping[str, Any]], Optional[str]]] = {
    "actions/checkout": _checkout,
    "arduino/setup-protoc": _setup_protoc,
    "actions-rs/toolchain": _rust_toolchain,
    "dtolnay/rust-toolchain": _rust_toolchain,
    "actions/setup-python": _setup_python,
}


def resolve_action(job: str, uses: str, with_: Mapping[str, Any], name: Optional[str] = None) -> Setup:
    """Translate a `uses: owner/action@ref` entry into a provisioning Setup."""
    action = uses.split("@", 1)[0].strip()
    factory = ACTIONS.get(action)
    if factory is None:
        raise ConfigError(
            f"Job '{job}' uses unknown action '{uses}'. Known actions: {sorted(ACTIONS)}",
            job=job,
        )
    return Setup(name=name or uses, run=factory(with_))


# ---------------------------------------------------------------------
# Deadlines
# ---------------------------------------------------------------------

class Deadline:
    """Wall-clock budget for one job. `None` seconds means unbounded."""

    def __init__(self, seconds: Optional[float]):
        self.seconds = seconds
        self._expires = None if seconds is None else time.monotonic() + seconds

    def remaining(self) -> Optional[float]:
        if self._expires is None:
            return None
        return max(0.0, self._expires - time.monotonic())

    @property
    def expired(self) -> bool:
        left = self.remaining()
        return left is not None and left <= 0


# ---------------------------------------------------------------------
# Execution contexts
# ---------------------------------------------------------------------

class ExecutionContext(ABC):
    """Where a job's commands run. Exclusive to one job; released once."""

    def __init__(self, job: Job, workspace: Path, runner: CommandRunner):
        self.job = job
        self.workspace = workspace
        self.runner = runner
        self.released = False

    @abstractmethod
    def run(self, cmd: str, *, cwd: str | None = None, env: Optional[Dict[str, str]] = None,
            timeout: Optional[float] = None) -> CommandResult:
        ...

    def run_step(self, step: Step, timeout: Optional[float] = None) -> CommandResult:
        return self.run(step.run, cwd=step.cwd, env=dict(step.env), timeout=timeout)

    def release(self) -> None:
        self.released = True

    def _env(self, extra: Optional[Dict[str, str]]) -> Dict[str, str]:
        env = self.job.env_dict
        env.update(extra or {})
        return env


class HostContext(ExecutionContext):
    def run(self, cmd, *, cwd=None, env=None, timeout=None):
        workdir = (self.workspace / (cwd or ".")).resolve()
        if not workdir.exists():
            raise FileNotFoundError(f"[{self.job.name}] cwd not found: {workdir}")
        return self.runner(cmd, cwd=workdir, env=self._env(env), timeout=timeout)


class ContainerContext(ExecutionContext):
    def __init__(self, job: Job, workspace: Path, runner: CommandRunner, engine: str, container_id: str):
        super().__init__(job, workspace, runner)
        self.engine = engine
        self.container_id = container_id

    def run(self, cmd, *, cwd=None, env=None, timeout=None):
        workdir = f"{CONTAINER_WORKDIR}/{cwd}".replace("//", "/") if cwd else CONTAINER_WORKDIR
        argv = [self.engine, "exec", "-w", workdir]
        for key, value in self._env(env).items():
            argv.extend(["-e", f"{key}={value}"])
        argv.extend([self.container_id, "sh", "-c", cmd])
        return self.runner(argv, timeout=timeout)

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        try:
            result = self.runner([self.engine, "rm", "-f", self.container_id])
        except Exception as e:
            logger.warning("[%s] could not remove container %s: %s", self.job.name, self.container_id, e)
            return
        if not result.ok:
            logger.warning("[%s] could not remove container %s: %s", self.job.name, self.container_id, result.output)
        else:
            logger.debug("[%s] removed container %s", self.job.name, self.container_id)


# ---------------------------------------------------------------------
# Provisioner
# ---------------------------------------------------------------------

class Provisioner:
    """
    Materializes a job's execution context.

    Host jobs run in the workspace with the job env layered on os.environ.
    Container jobs get a private container (workspace mounted at /workspace)
    that is removed when the `provision` block exits, on every path.
    """

    def __init__(self, runner: CommandRunner = run_command, engine: str = "docker"):
        self.runner = runner
        self.engine = engine

    @contextmanager
    def provision(self, job: Job, workspace: str | Path, deadline: Optional[Deadline] = None) -> Iterator[ExecutionContext]:
        deadline = deadline or Deadline(None)
        ctx = self._acquire(job, Path(workspace).resolve())
        try:
            self._run_setup(ctx, deadline)
            yield ctx
        finally:
            ctx.release()

    # ---- acquisition ----

    def _acquire(self, job: Job, workspace: Path) -> ExecutionContext:
        if not workspace.is_dir():
            raise ProvisionError(job.name, f"workspace not found: {workspace}")
        if isinstance(job.environment, Container):
            return self._start_container(job, workspace, job.environment.image)
        return HostContext(job, workspace, self.runner)

    def _engine(self, job: Job, args: List[str]) -> CommandResult:
        try:
            return self.runner([self.engine, *args])
        except FileNotFoundError:
            raise ProvisionError(
                job.name,
                f"{self.engine} is not available",
                hint=tool_hint(self.engine),
            ) from None

    def _start_container(self, job: Job, workspace: Path, image: str) -> ContainerContext:
        version = self._engine(job, ["--version"])
        if not version.ok:
            raise ProvisionError(job.name, f"{self.engine} is not available",
                                 output=version.output, hint=tool_hint(self.engine))

        if not self._engine(job, ["image", "inspect", image]).ok:
            pulled = self._engine(job, ["pull", image])
            if not pulled.ok:
                raise ProvisionError(job.name, f"image unavailable: {image}", output=pulled.output, image=image)

        started = self._engine(job, [
            "run", "-d", "--rm",
            "-v", f"{workspace}:{CONTAINER_WORKDIR}",
            "-w", CONTAINER_WORKDIR,
            image, "sleep", "infinity",
        ])
        container_id = started.output.strip().splitlines()[-1] if started.output.strip() else ""
        if not started.ok or not container_id:
            raise ProvisionError(job.name, f"could not start container from {image}", output=started.output, image=image)

        logger.debug("[%s] started container %s (%s)", job.name, container_id, image)
        return ContainerContext(job, workspace, self.runner, self.engine, container_id)

    # ---- pre-steps ----

    def _run_setup(self, ctx: ExecutionContext, deadline: Deadline) -> None:
        for setup in ctx.job.setup:
            if setup.run is None:
                logger.debug("[%s] setup '%s': nothing to run", ctx.job.name, setup.name)
                continue
            try:
                result = ctx.run(setup.run, timeout=deadline.remaining())
            except CommandTimeout as e:
                raise StepTimeout(ctx.job.name, setup.name, deadline.seconds or e.timeout, e.output) from e
            if not result.ok:
                raise ProvisionError(
                    ctx.job.name,
                    f"setup '{setup.name}' failed (exit={result.exit_code}): {setup.run}",
                    step=setup.name,
                    output=result.output,
                )
