# loader.py
from __future__ import annotations

import runpy
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from ._log import get_logger
from .dag import build_graph
from .errors import ConfigError
from .model import HOST, Container, Environment, Graph, Job, Setup, Step
from .provision import resolve_action

logger = get_logger("loader")

WORKFLOW_SUFFIXES = (".yml", ".yaml", ".py")

Source = Union[Graph, str, Path, Mapping[str, Any], Iterable[Job]]


def load_graph(source: Source) -> Graph:
    """
    Load and validate a job graph.

    Accepts:
      - a path to a YAML workflow (.yml / .yaml) or a Python workflow (.py)
      - YAML text
      - an already-parsed workflow mapping ({"jobs": {...}})
      - an iterable of Job objects
      - a Graph (returned as-is)

    Raises ConfigError on any malformed, dangling or cyclic definition.
    """
    if isinstance(source, Graph):
        return source
    if isinstance(source, Path):
        return _load_file(source)
    if isinstance(source, str):
        if "\n" not in source and source.strip().endswith(WORKFLOW_SUFFIXES):
            return _load_file(Path(source))
        return graph_from_document(_parse_yaml(source, origin="<string>"))
    if isinstance(source, Mapping):
        return graph_from_document(source)

    jobs = list(source)
    if not all(isinstance(j, Job) for j in jobs):
        raise ConfigError("Job list must contain only Job objects")
    return build_graph(jobs)


# ----------------------------------------------------------------------
# Files
# ----------------------------------------------------------------------

def _load_file(path: Path) -> Graph:
    wf_path = path.expanduser().resolve()
    if not wf_path.exists():
        raise ConfigError(f"Workflow file not found: {wf_path}")
    if wf_path.suffix not in WORKFLOW_SUFFIXES:
        raise ConfigError(f"Workflow must be a .yml, .yaml or .py file, got: {wf_path.name}")

    logger.debug("loading workflow %s", wf_path)
    if wf_path.suffix == ".py":
        return build_graph(load_workflow(wf_path))

    try:
        raw = wf_path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read {wf_path}: {e}") from e
    return graph_from_document(_parse_yaml(raw, origin=str(wf_path)))


def _parse_yaml(raw: str, *, origin: str) -> Mapping[str, Any]:
    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {origin}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {origin}, got {type(data).__name__}")
    return data


def load_workflow(path: str | Path) -> List[Job]:
    """
    Load jobs from a Python workflow module.

    The file must define either:
      - workflow() -> List[Job]
      - JOBS = [Job, ...]
    """
    wf_path = Path(path).expanduser().resolve()
    module_name = f"gateci_workflow_{wf_path.stem}"
    try:
        globals_dict = runpy.run_path(str(wf_path), run_name=module_name)
    except Exception as e:
        raise ConfigError(f"Workflow module {wf_path.name} failed to import: {e}") from e

    jobs = None
    if "workflow" in globals_dict and callable(globals_dict["workflow"]):
        try:
            jobs = globals_dict["workflow"]()
        except TypeError as e:
            if "positional argument" in str(e):
                raise ConfigError(
                    "Your workflow() is being called with arguments (name collision with the helper). "
                    "Use the 'wf' helper instead: `from gateci import wf, job, sh` then "
                    "`def workflow(): return wf(job(...), job(...))`"
                ) from e
            raise ConfigError(f"workflow() in {wf_path.name} failed: {e}") from e
        except ValueError as e:
            raise ConfigError(f"workflow() in {wf_path.name} failed: {e}") from e
    elif "JOBS" in globals_dict:
        jobs = globals_dict["JOBS"]

    if not isinstance(jobs, list) or not all(isinstance(j, Job) for j in jobs):
        raise ConfigError(
            "Workflow must return/define a List[Job]. "
            "Define workflow() -> List[Job] or JOBS = [Job, ...]."
        )

    return jobs


# ----------------------------------------------------------------------
# Workflow documents
# ----------------------------------------------------------------------

def graph_from_document(doc: Mapping[str, Any]) -> Graph:
    """
    Build a Graph from a GitHub-Actions-like mapping:

        jobs:
          <id>:
            name: optional display name
            runs-on: ignored (host)
            container: <image> | {image: <image>}
            needs: <id> | [<id>, ...]
            env: {KEY: value}
            timeout-minutes: number
            steps:
              - uses: owner/action@ref     -> provisioning setup
                with: {...}
              - name: label
                run: command               -> job step
    """
    jobs_doc = doc.get("jobs")
    if not isinstance(jobs_doc, Mapping) or not jobs_doc:
        raise ConfigError("Workflow must define a non-empty 'jobs' mapping")

    jobs = [_parse_job(str(job_id), spec) for job_id, spec in jobs_doc.items()]
    return build_graph(jobs)


def _parse_job(job_id: str, spec: Any) -> Job:
    if not isinstance(spec, Mapping):
        raise ConfigError(f"Job '{job_id}' must be a mapping", job=job_id)

    steps_doc = spec.get("steps")
    if not isinstance(steps_doc, list) or not steps_doc:
        raise ConfigError(f"Job '{job_id}' must define a non-empty 'steps' list", job=job_id)

    setup: List[Setup] = [_parse_setup(job_id, s) for s in spec.get("setup") or []]
    steps: List[Step] = []
    for idx, raw in enumerate(steps_doc, start=1):
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Job '{job_id}' step #{idx} must be a mapping", job=job_id)
        if "uses" in raw:
            setup.append(resolve_action(job_id, str(raw["uses"]), raw.get("with") or {}, raw.get("name")))
        elif "run" in raw:
            steps.append(_parse_step(job_id, idx, raw))
        else:
            raise ConfigError(f"Job '{job_id}' step #{idx} needs either 'run' or 'uses'", job=job_id)

    if not steps:
        raise ConfigError(f"Job '{job_id}' has no 'run' steps", job=job_id)

    return Job(
        name=job_id,
        steps=tuple(steps),
        needs=_parse_needs(job_id, spec.get("needs")),
        environment=_parse_environment(job_id, spec.get("container")),
        setup=tuple(setup),
        env=_parse_env(job_id, spec.get("env")),
        timeout=_parse_timeout(job_id, spec.get("timeout-minutes")),
        display_name=spec.get("name"),
    )


def _parse_step(job_id: str, idx: int, raw: Mapping[str, Any]) -> Step:
    run = raw["run"]
    if not isinstance(run, str) or not run.strip():
        raise ConfigError(f"Job '{job_id}' step #{idx}: 'run' must be a non-empty string", job=job_id)
    return Step(
        name=str(raw.get("name") or run.strip().splitlines()[0]),
        run=run,
        cwd=raw.get("working-directory"),
        env=_parse_env(job_id, raw.get("env")),
    )


def _parse_setup(job_id: str, raw: Any) -> Setup:
    if not isinstance(raw, Mapping) or "name" not in raw:
        raise ConfigError(f"Job '{job_id}': setup entries need a 'name'", job=job_id)
    return Setup(name=str(raw["name"]), run=raw.get("run"))


def _parse_needs(job_id: str, raw: Any) -> Tuple[str, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return (raw,)
    if isinstance(raw, list) and all(isinstance(n, str) for n in raw):
        # de-dupe, keep declared order
        return tuple(dict.fromkeys(raw))
    raise ConfigError(f"Job '{job_id}': 'needs' must be a job id or a list of job ids", job=job_id)


def _parse_environment(job_id: str, raw: Any) -> Environment:
    if raw is None:
        return HOST
    image: Optional[Any] = raw.get("image") if isinstance(raw, Mapping) else raw
    if not isinstance(image, str) or not image.strip():
        raise ConfigError(f"Job '{job_id}': 'container' must name an image", job=job_id)
    return Container(image=image.strip())


def _parse_env(job_id: str, raw: Any) -> Tuple[Tuple[str, str], ...]:
    if raw is None:
        return ()
    if not isinstance(raw, Mapping):
        raise ConfigError(f"Job '{job_id}': 'env' must be a mapping", job=job_id)
    env: Dict[str, str] = {str(k): str(v) for k, v in raw.items()}
    return tuple(sorted(env.items()))


def _parse_timeout(job_id: str, raw: Any) -> Optional[float]:
    if raw is None:
        return None
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw <= 0:
        raise ConfigError(f"Job '{job_id}': 'timeout-minutes' must be a positive number", job=job_id)
    return float(raw) * 60.0
