# cli.py
from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from . import settings
from ._log import setup_logging
from .dag import graph_levels
from .errors import ConfigError
from .executor import Executor
from .loader import load_graph
from .provision import Provisioner
from .trigger import TriggerService
from .ui.console import Console, get_console, set_console

DEFAULT_WORKFLOWS = (
    ".github/workflows/build.yml",
    ".github/workflows/build.yaml",
    "gateci_workflow.py",
)


def find_workflow_files() -> list[Path]:
    """Workflow files in the current directory, in preference order."""
    found = [Path(p) for p in DEFAULT_WORKFLOWS if Path(p).exists()]
    for path in sorted(Path(".").glob("*_workflow.py")):
        if path not in found:
            found.append(path)
    return found


def discover_workflow(workflow_arg: str | None) -> Path:
    """
    Discover workflow file from argument, GATECI_WORKFLOW, or defaults.

    Raises:
        SystemExit: If the workflow cannot be found or several candidates exist
    """
    console = get_console()

    if workflow_arg:
        workflow_path = Path(workflow_arg)
        if not workflow_path.exists():
            console.print_error(
                "Workflow file not found",
                f"Could not find workflow file: {workflow_arg}",
                suggestion="Specify a different path:\n  gateci run --workflow .github/workflows/build.yml",
            )
            sys.exit(1)
        return workflow_path

    if Path(settings.WORKFLOW_PATH).exists():
        return Path(settings.WORKFLOW_PATH)

    workflow_files = find_workflow_files()

    if len(workflow_files) == 0:
        console.print_error(
            "No workflow file found",
            "Could not find any workflow files.",
            details=["Looked for:", *(f"  {p}" for p in DEFAULT_WORKFLOWS), "  *_workflow.py"],
            suggestion="Specify a workflow explicitly:\n  gateci run --workflow my_workflow.yml",
        )
        sys.exit(1)

    if len(workflow_files) > 1:
        file_list = "\n".join(f"  {f}" for f in workflow_files)
        console.print_error(
            "Multiple workflow files found",
            "Found multiple workflow files. Please specify which one to use:",
            details=[file_list],
            suggestion="Specify a workflow explicitly:\n  gateci run --workflow .github/workflows/build.yml",
        )
        sys.exit(1)

    return workflow_files[0]


def _config_error(e: ConfigError, workflow_path: Path) -> None:
    get_console().print_error(
        "Invalid workflow",
        f"Could not load {workflow_path}",
        details=[e.message],
    )
    sys.exit(1)


@click.group()
@click.option(
    "--debug",
    is_flag=True,
    default=False,
    help="Enable debug mode (show stack traces and detailed output)",
)
@click.pass_context
def cli(ctx, debug):
    """gateci: dependency-aware build verification gate."""
    console = Console(debug=debug)
    set_console(console)
    setup_logging(verbose=debug)
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
@click.option("--workspace", default=settings.WORKSPACE, show_default=True, help="Checked-out source tree")
@click.option("--change", "change_ref", default="local", show_default=True, help="Change reference for this run")
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Cap on parallel jobs (default: one per job)")
@click.option("--timeout", default=settings.JOB_TIMEOUT, type=float, help="Per-job deadline in seconds")
@click.option("--engine", default=settings.CONTAINER_ENGINE, show_default=True, help="Container engine binary")
@click.option("--json", "as_json", is_flag=True, default=False, help="Print the verdict report as JSON")
@click.pass_context
def run(ctx, workflow, workspace, change_ref, workers, timeout, engine, as_json):
    """Run a workflow and print the gate verdict."""
    console = get_console()
    workflow_path = discover_workflow(workflow)

    try:
        graph = load_graph(workflow_path)
    except ConfigError as e:
        _config_error(e, workflow_path)

    executor = Executor(
        Provisioner(engine=engine),
        workspace=workspace,
        max_workers=workers,
        default_timeout=timeout,
        listener=None if as_json else console.job_event,
    )

    try:
        if not as_json:
            console.print_run_started(
                workspace=str(Path(workspace).resolve()),
                workflow=workflow_path.name,
                job_count=len(graph),
                change_ref=change_ref,
            )
        with TriggerService(graph, executor=executor) as service:
            run_id = service.on_change_proposed(change_ref)
            report = service.wait(run_id)
    except KeyboardInterrupt:
        console.print_info("\nInterrupted by user")
        sys.exit(130)
    except Exception as e:
        console.print_exception(e)
        sys.exit(1)

    if as_json:
        click.echo(json.dumps(report.to_dict(), indent=2))
    else:
        console.print_results(report)

    if not report.passed:
        sys.exit(1)


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
def validate(workflow):
    """Check a workflow for dangling needs and cycles, then print its stages."""
    console = get_console()
    workflow_path = discover_workflow(workflow)
    try:
        graph = load_graph(workflow_path)
    except ConfigError as e:
        _config_error(e, workflow_path)

    console.print_info(f"{workflow_path}: {len(graph)} job(s), fingerprint {graph.fingerprint()[:12]}")
    console.print_plan(graph_levels(graph))


@cli.command()
@click.option("--workflow", default=None, help="Workflow file (.yml/.yaml/.py)")
@click.option("--workspace", default=settings.WORKSPACE, show_default=True, help="Checked-out source tree")
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", default=8000, type=int, show_default=True)
@click.option("--workers", default=settings.MAX_WORKERS, type=int, help="Cap on parallel jobs per run")
@click.option("--timeout", default=settings.JOB_TIMEOUT, type=float, help="Per-job deadline in seconds")
@click.option("--max-runs", default=settings.MAX_RUNS, type=int, show_default=True, help="Finished runs kept in memory")
@click.option("--engine", default=settings.CONTAINER_ENGINE, show_default=True, help="Container engine binary")
def serve(workflow, workspace, host, port, workers, timeout, engine, max_runs):
    """Serve the HTTP trigger endpoint for a review system."""
    import uvicorn

    from .server import create_app

    workflow_path = discover_workflow(workflow)
    try:
        graph = load_graph(workflow_path)
    except ConfigError as e:
        _config_error(e, workflow_path)

    executor = Executor(
        Provisioner(engine=engine),
        workspace=workspace,
        max_workers=workers,
        default_timeout=timeout,
    )
    service = TriggerService(graph, executor=executor, max_runs=max_runs)
    get_console().print_info(f"Serving {workflow_path} ({len(graph)} jobs) on http://{host}:{port}")
    uvicorn.run(create_app(service), host=host, port=port, log_level="info")


if __name__ == "__main__":
    cli()
