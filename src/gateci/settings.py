# settings.py
from __future__ import annotations

import os
from typing import Optional


def _int_or_none(raw: Optional[str]) -> Optional[int]:
    return int(raw) if raw else None


def _float_or_none(raw: Optional[str]) -> Optional[float]:
    return float(raw) if raw else None


WORKFLOW_PATH = os.environ.get("GATECI_WORKFLOW", ".github/workflows/build.yml")
WORKSPACE = os.environ.get("GATECI_WORKSPACE", ".")
MAX_WORKERS = _int_or_none(os.environ.get("GATECI_MAX_WORKERS"))
JOB_TIMEOUT = _float_or_none(os.environ.get("GATECI_JOB_TIMEOUT"))
CONTAINER_ENGINE = os.environ.get("GATECI_CONTAINER_ENGINE", "docker")
MAX_RUNS = int(os.environ.get("GATECI_MAX_RUNS", "100"))
