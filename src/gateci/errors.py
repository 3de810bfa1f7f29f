# errors.py
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(eq=False)
class CIError(Exception):
    """
    Structured CI error with enough context for:
      - clean CLI output
      - the per-job report
      - debugging without full tracebacks
    """
    kind: str
    job: str
    step: str | None
    message: str
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.job:
            lines.append(f"job={self.job}")
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


class ConfigError(CIError):
    """Malformed or cyclic graph. Raised before any job runs."""

    def __init__(self, message: str, *, job: str = "", **details):
        super().__init__(kind="config", job=job, step=None, message=message, details=details)


class ProvisionError(CIError):
    """The execution context for a job could not be set up."""

    def __init__(self, job: str, message: str, *, step: str | None = None, output: str = "", **details):
        super().__init__(kind="provision", job=job, step=step, message=message, details=details)
        self.output = output


class StepFailure(CIError):
    """A toolchain command returned non-success."""

    def __init__(self, job: str, step: str, cmd: str, exit_code: int, output: str = ""):
        super().__init__(
            kind="step",
            job=job,
            step=step,
            message=f"step '{step}' failed (exit={exit_code}): {cmd}",
            details={"exit_code": exit_code},
        )
        self.cmd = cmd
        self.exit_code = exit_code
        self.output = output


class StepTimeout(CIError):
    def __init__(self, job: str, step: str | None, timeout: float, output: str = ""):
        super().__init__(
            kind="timeout",
            job=job,
            step=step,
            message=f"job deadline of {timeout:g}s exceeded",
            details={"timeout": timeout},
        )
        self.timeout = timeout
        self.output = output


class InfrastructureError(CIError):
    """The runner itself failed (worker could not be scheduled, internal bug)."""

    def __init__(self, job: str, message: str, **details):
        super().__init__(kind="infrastructure", job=job, step=None, message=message, details=details)
