"""Console output formatting utilities for gateci."""

from __future__ import annotations

import sys
from typing import List, Optional

from ..model import JobRecord, JobState
from ..report import RunReport


class Console:
    """Centralized console output formatting."""

    def __init__(self, debug: bool = False):
        """
        Initialize console formatter.

        Args:
            debug: If True, show detailed output including stack traces
        """
        self.debug = debug

    def print_header(self, title: str) -> None:
        """Print a section header."""
        print(f"\n{title}")
        print("-" * len(title))

    def print_run_started(
        self,
        workspace: str,
        workflow: str,
        job_count: int,
        change_ref: Optional[str] = None,
    ) -> None:
        """Print run start information."""
        print("\nRUN STARTED")
        print(f"Workspace: {workspace}")
        print(f"Workflow: {workflow}")
        if change_ref:
            print(f"Change: {change_ref}")
        print(f"Jobs: {job_count}")
        print()

    def print_plan(self, levels: List[List[str]]) -> None:
        """Print the parallel stages of a graph."""
        for idx, level in enumerate(levels, start=1):
            print(f"=== Stage {idx}: {', '.join(level)} ===")

    def job_event(self, rec: JobRecord) -> None:
        """Executor listener: one line per interesting state change."""
        state = rec.state
        if state is JobState.RUNNING:
            print(f"JOB STARTED: {rec.name} ({rec.job.environment.describe()})")
        elif state is JobState.SUCCEEDED:
            print(f"✓ {rec.name}")
        elif state is JobState.FAILED:
            self.print_failure(rec.name, rec.diagnostic, step=rec.failed_step)
        elif state is JobState.SKIPPED:
            print(f"⏭ {rec.name} (skipped: {rec.diagnostic})")
        elif self.debug:
            print(f"[DEBUG] {rec.name} -> {state.value}", file=sys.stderr)

    def print_failure(self, name: str, reason: str, step: Optional[str] = None) -> None:
        """
        Print job failure message.

        Args:
            name: Job name
            reason: Failure diagnostic (may include tool output)
            step: Label of the failing step, if any
        """
        print(f"✗ JOB FAILED: {name}")
        if step:
            print(f"Step: {step}")
        if self.debug:
            print(f"Error details: {reason}")
        else:
            # Show first line of error for non-debug mode
            error_line = reason.split("\n")[0] if reason else "Unknown error"
            print(f"Error: {error_line}")

    def print_results(self, report: RunReport) -> None:
        """Print final results summary."""
        print("\n" + "=" * 40)
        print("RESULTS")
        print("=" * 40)
        for job in report.jobs:
            line = f"  {job.name}: {job.state.upper()}"
            if job.failed_step:
                line += f" (step: {job.failed_step})"
            print(line)
        verdict = (report.verdict or "unknown").upper()
        print(f"\nVERDICT: {verdict}")

    def print_error(
        self,
        title: str,
        message: str,
        details: Optional[list[str]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Print structured error message.

        Args:
            title: Error title
            message: Main error message
            details: Optional list of detail lines
            suggestion: Optional suggestion for user
        """
        print(f"\nERROR: {title}", file=sys.stderr)
        print(f"{message}", file=sys.stderr)
        if details:
            for detail in details:
                print(f"  {detail}", file=sys.stderr)
        if suggestion:
            print(f"\n{suggestion}", file=sys.stderr)

    def print_exception(self, exc: Exception) -> None:
        """Print exception, with full traceback only in debug mode."""
        if self.debug:
            import traceback
            traceback.print_exception(type(exc), exc, exc.__traceback__)
        else:
            print(f"Error: {exc}", file=sys.stderr)

    def print_info(self, message: str) -> None:
        """Print informational message."""
        print(message)

    def print_debug(self, message: str) -> None:
        """Print debug message (only if debug mode enabled)."""
        if self.debug:
            print(f"[DEBUG] {message}", file=sys.stderr)


# Global console instance (will be initialized by CLI)
_console: Optional[Console] = None


def get_console() -> Console:
    """Get the global console instance."""
    global _console
    if _console is None:
        _console = Console()
    return _console


def set_console(console: Console) -> None:
    """Set the global console instance."""
    global _console
    _console = console
