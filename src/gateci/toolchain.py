# toolchain.py
# The only place gateci talks to external tools. Everything else (provisioner,
# executor) goes through a CommandRunner so tests can swap in a fake.

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Protocol, Sequence, Union

from ._log import get_logger

logger = get_logger("toolchain")

# keep the tail of long tool output; the head is rarely the interesting part
OUTPUT_LIMIT = 4000

TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
    "podman": "Install Podman or set GATECI_CONTAINER_ENGINE=docker.",
    "cargo": "Install a Rust toolchain (https://rustup.rs) or fix PATH.",
    "rustup": "Install rustup (https://rustup.rs) or fix PATH.",
    "protoc": "Install the protobuf compiler (e.g., apt-get install protobuf-compiler).",
    "python3": "Install Python 3 or fix PATH (python3).",
}

Command = Union[str, Sequence[str]]


@dataclass(frozen=True)
class CommandResult:
    exit_code: int
    output: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandTimeout(Exception):
    def __init__(self, cmd: Command, timeout: float, output: str = ""):
        super().__init__(f"command timed out after {timeout:g}s: {cmd}")
        self.cmd = cmd
        self.timeout = timeout
        self.output = output


class CommandRunner(Protocol):
    def __call__(
        self,
        cmd: Command,
        *,
        cwd: Optional[Path] = None,
        env: Optional[Dict[str, str]] = None,
        timeout: Optional[float] = None,
    ) -> CommandResult:
        ...


def _tail(text: str | bytes | None) -> str:
    """Last OUTPUT_LIMIT characters; undecodable bytes become U+FFFD."""
    if text is None:
        return ""
    if isinstance(text, bytes):
        text = text.decode("utf-8", errors="replace")
    return text[-OUTPUT_LIMIT:]


def _combine(stdout: str, stderr: str) -> str:
    if stdout and stderr:
        return f"{stdout.rstrip()}\n{stderr}"
    return stdout or stderr


def run_command(
    cmd: Command,
    *,
    cwd: Optional[Path] = None,
    env: Optional[Dict[str, str]] = None,
    timeout: Optional[float] = None,
) -> CommandResult:
    """
    Run one external command synchronously.

    A string runs through the shell (step commands are shell snippets);
    a list runs as argv (docker invocations). `env` is layered on top of
    os.environ. Raises CommandTimeout when `timeout` elapses and
    FileNotFoundError when an argv executable is missing.
    """
    full_env = os.environ.copy()
    full_env.update(env or {})

    shell = isinstance(cmd, str)
    logger.debug("exec %s (cwd=%s, timeout=%s)", cmd, cwd, timeout)
    try:
        proc = subprocess.run(
            cmd if shell else list(cmd),
            shell=shell,
            cwd=str(cwd) if cwd is not None else None,
            env=full_env,
            capture_output=True,   # raw bytes; decoded leniently in _tail
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise CommandTimeout(cmd, timeout or 0.0, _combine(_tail(e.stdout), _tail(e.stderr))) from e

    return CommandResult(
        exit_code=proc.returncode,
        output=_combine(_tail(proc.stdout), _tail(proc.stderr)),
    )


def tool_hint(tool: str) -> str:
    return TOOL_HINTS.get(tool, f"Install {tool} or fix PATH.")
