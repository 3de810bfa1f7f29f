"""Tests for the HTTP trigger endpoints."""

import threading
import time

import pytest
from conftest import FakeToolchain, make_graph
from fastapi.testclient import TestClient

from gateci.executor import Executor
from gateci.provision import Provisioner
from gateci.server import create_app
from gateci.toolchain import CommandResult
from gateci.trigger import TriggerService


@pytest.fixture
def service(pipeline_graph, workspace):
    executor = Executor(Provisioner(runner=FakeToolchain({"run-testA": (1, "boom")})), workspace=workspace)
    svc = TriggerService(pipeline_graph, executor=executor)
    yield svc
    svc.shutdown()


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


def test_propose_change_and_read_verdict(client, service):
    resp = client.post("/changes", json={"change_ref": "pr-42"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["cached"] is False

    service.wait(body["run_id"], timeout=10)

    run = client.get(f"/runs/{body['run_id']}").json()
    assert run["status"] == "finished"
    assert run["verdict"] == "fail"
    jobs = {j["name"]: j for j in run["jobs"]}
    assert jobs["testA"]["state"] == "failed"
    assert jobs["testA"]["failed_step"] == "testA step"
    assert "boom" in jobs["testA"]["diagnostic"]
    assert jobs["docs"]["state"] == "succeeded"

    verdict = client.get(f"/runs/{body['run_id']}/verdict").json()
    assert verdict == {"run_id": body["run_id"], "verdict": "fail"}


def test_repeat_change_is_cached(client, service):
    first = client.post("/changes", json={"change_ref": "pr-1"}).json()
    service.wait(first["run_id"], timeout=10)
    second = client.post("/changes", json={"change_ref": "pr-1"}).json()
    assert second == {"run_id": first["run_id"], "cached": True}


def test_unknown_run_is_404(client):
    assert client.get("/runs/missing").status_code == 404
    assert client.get("/runs/missing/verdict").status_code == 404


def test_empty_change_ref_rejected(client):
    assert client.post("/changes", json={"change_ref": ""}).status_code == 422


def test_verdict_conflict_while_running(workspace):
    gate = threading.Event()

    def blocked(cmd):
        gate.wait(5)
        return CommandResult(0, cmd)

    executor = Executor(Provisioner(runner=FakeToolchain({"run-a": blocked})), workspace=workspace)
    with TriggerService(make_graph(("a", [])), executor=executor) as svc:
        client = TestClient(create_app(svc))
        run_id = client.post("/changes", json={"change_ref": "pr-1"}).json()["run_id"]

        assert client.get(f"/runs/{run_id}/verdict").status_code == 409
        assert client.get(f"/runs/{run_id}").json()["status"] == "running"

        gate.set()
        svc.wait(run_id, timeout=10)
        assert client.get(f"/runs/{run_id}/verdict").json()["verdict"] == "pass"


def test_failing_is_visible_before_verdict(workspace):
    gate = threading.Event()

    def blocked(cmd):
        gate.wait(5)
        return CommandResult(0, cmd)

    tools = FakeToolchain({"run-fast": 1, "run-slow": blocked})
    executor = Executor(Provisioner(runner=tools), workspace=workspace)
    with TriggerService(make_graph(("fast", []), ("slow", [])), executor=executor) as svc:
        client = TestClient(create_app(svc))
        run_id = client.post("/changes", json={"change_ref": "pr-7"}).json()["run_id"]

        body = {}
        for _ in range(250):
            body = client.get(f"/runs/{run_id}").json()
            if body["failing"]:
                break
            time.sleep(0.02)

        assert body["failing"] is True
        assert body["status"] == "running"
        assert body["verdict"] is None

        gate.set()
        svc.wait(run_id, timeout=10)
        assert client.get(f"/runs/{run_id}/verdict").json()["verdict"] == "fail"


def test_graph_endpoint(client, pipeline_graph):
    body = client.get("/graph").json()
    assert body["fingerprint"] == pipeline_graph.fingerprint()
    assert body["stages"] == [["docs", "fmt"], ["lint", "testA", "testB"]]
    assert {j["name"] for j in body["jobs"]} == set(pipeline_graph.jobs)
