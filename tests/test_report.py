"""Tests for verdict aggregation and the per-job report."""

import pytest
from conftest import FakeToolchain, make_graph, run_graph

from gateci.dag import build_graph
from gateci.dsl import job, sh
from gateci.model import Run, Verdict
from gateci.report import aggregate, build_report


def test_pass_when_everything_succeeds(pipeline_graph, workspace):
    run, _ = run_graph(pipeline_graph, FakeToolchain(), workspace)
    assert aggregate(run) is Verdict.PASS
    assert build_report(run).passed


def test_failed_job_fails_the_gate(pipeline_graph, workspace):
    run, _ = run_graph(pipeline_graph, FakeToolchain({"run-testA": (1, "1 test failed")}), workspace)
    assert aggregate(run) is Verdict.FAIL

    report = build_report(run)
    assert report.verdict == "fail"
    assert [j.name for j in report.jobs] == list(pipeline_graph.order)
    test_a = report.job("testA")
    assert test_a.state == "failed"
    assert test_a.failed_step == "testA step"
    assert "1 test failed" in test_a.diagnostic
    assert report.job("lint").diagnostic is None


def test_skipped_jobs_are_reported_not_omitted(pipeline_graph, workspace):
    run, _ = run_graph(pipeline_graph, FakeToolchain({"run-fmt": 1}), workspace)
    aggregate(run)
    report = build_report(run)

    assert {j.name for j in report.jobs} == set(pipeline_graph.jobs)
    lint = report.job("lint")
    assert lint.state == "skipped"
    assert lint.error_kind == "skipped"
    assert lint.failed_step is None
    assert [s.status for s in lint.steps] == ["not_attempted"]


def test_not_attempted_steps_in_report(workspace):
    graph = build_graph([job("j", sh("S1", "one"), sh("S2", "two"), sh("S3", "three"))])
    run, _ = run_graph(graph, FakeToolchain({"two": 1}), workspace)
    aggregate(run)
    steps = build_report(run).job("j").steps
    assert [(s.name, s.status) for s in steps] == [
        ("S1", "succeeded"), ("S2", "failed"), ("S3", "not_attempted"),
    ]


def test_verdict_is_recorded_once(workspace):
    run, _ = run_graph(make_graph(("a", [])), FakeToolchain(), workspace)
    assert aggregate(run) is Verdict.PASS
    assert aggregate(run) is Verdict.PASS
    with pytest.raises(RuntimeError, match="already has verdict"):
        run.record_verdict(Verdict.FAIL)


def test_aggregate_requires_terminal_jobs():
    run = Run("r", make_graph(("a", [])))
    with pytest.raises(RuntimeError, match="non-terminal"):
        aggregate(run)
    assert build_report(run).verdict is None


def test_report_is_json_ready(pipeline_graph, workspace):
    import json

    run, _ = run_graph(pipeline_graph, FakeToolchain(), workspace)
    aggregate(run)
    payload = json.loads(json.dumps(build_report(run).to_dict()))
    assert payload["verdict"] == "pass"
    assert payload["run_id"] == "test-run"
    assert payload["jobs"][0]["steps"][0]["status"] == "succeeded"


def test_report_marks_failing_run(pipeline_graph, workspace):
    run, _ = run_graph(pipeline_graph, FakeToolchain({"run-docs": 1}), workspace)
    assert build_report(run).failing
    assert build_report(run).verdict is None

    green, _ = run_graph(pipeline_graph, FakeToolchain(), workspace)
    assert not build_report(green).failing
