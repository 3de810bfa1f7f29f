"""Tests for the gateci command line."""

import json

import pytest
from click.testing import CliRunner

from gateci.cli import cli

GREEN = """
jobs:
  fmt:
    steps:
      - uses: actions/checkout@v2
      - name: format
        run: echo formatted
  lint:
    needs: fmt
    steps:
      - name: lint
        run: echo linted
  docs:
    steps:
      - name: docs
        run: echo docs
"""

RED = """
jobs:
  fmt:
    steps:
      - name: format
        run: echo "bad formatting" >&2; exit 1
  lint:
    needs: fmt
    steps:
      - name: lint
        run: echo linted
  docs:
    steps:
      - name: docs
        run: echo docs
"""


@pytest.fixture
def write_workflow(tmp_path):
    def _write(text, name="build.yml"):
        path = tmp_path / name
        path.write_text(text)
        return path
    return _write


def test_validate_prints_stages(write_workflow):
    path = write_workflow(GREEN)
    result = CliRunner().invoke(cli, ["validate", "--workflow", str(path)])
    assert result.exit_code == 0, result.output
    assert "3 job(s)" in result.output
    assert "Stage 1: docs, fmt" in result.output
    assert "Stage 2: lint" in result.output


def test_validate_rejects_cycle(write_workflow):
    path = write_workflow("jobs:\n  a: {needs: b, steps: [{run: x}]}\n  b: {needs: a, steps: [{run: y}]}\n")
    result = CliRunner().invoke(cli, ["validate", "--workflow", str(path)])
    assert result.exit_code == 1
    assert "cycle" in result.output


def test_run_green(write_workflow, tmp_path):
    path = write_workflow(GREEN)
    result = CliRunner().invoke(cli, ["run", "--workflow", str(path), "--workspace", str(tmp_path)])
    assert result.exit_code == 0, result.output
    assert "VERDICT: PASS" in result.output
    assert "lint: SUCCEEDED" in result.output


def test_run_red_exits_nonzero(write_workflow, tmp_path):
    path = write_workflow(RED)
    result = CliRunner().invoke(cli, ["run", "--workflow", str(path), "--workspace", str(tmp_path)])
    assert result.exit_code == 1
    assert "fmt: FAILED (step: format)" in result.output
    assert "lint: SKIPPED" in result.output
    assert "docs: SUCCEEDED" in result.output
    assert "VERDICT: FAIL" in result.output


def test_run_json(write_workflow, tmp_path):
    path = write_workflow(RED)
    result = CliRunner().invoke(
        cli, ["run", "--workflow", str(path), "--workspace", str(tmp_path), "--change", "pr-7", "--json"]
    )
    assert result.exit_code == 1
    payload = json.loads(result.output)
    assert payload["change_ref"] == "pr-7"
    assert payload["verdict"] == "fail"
    jobs = {j["name"]: j for j in payload["jobs"]}
    assert "bad formatting" in jobs["fmt"]["diagnostic"]
    assert jobs["lint"]["state"] == "skipped"


def test_missing_workflow(tmp_path):
    result = CliRunner().invoke(cli, ["run", "--workflow", str(tmp_path / "nope.yml")])
    assert result.exit_code == 1
    assert "Workflow file not found" in result.output
