"""Tests for graph construction and validation."""

import pytest

from gateci.dag import build_dag, build_graph, find_cycle, graph_levels, topo_levels
from gateci.dsl import job, sh
from gateci.errors import ConfigError


def _job(name, needs=()):
    return job(name, sh("s", f"run-{name}"), needs=list(needs))


class TestBuildDag:
    def test_edges_point_from_dependency_to_dependent(self):
        adj, indeg = build_dag([_job("a"), _job("b", ["a"]), _job("c", ["a", "b"])])
        assert adj == {"a": {"b", "c"}, "b": {"c"}, "c": set()}
        assert indeg == {"a": 0, "b": 1, "c": 2}

    def test_missing_dependency(self):
        with pytest.raises(ConfigError) as exc:
            build_dag([_job("a"), _job("b", ["nope"])])
        assert exc.value.job == "b"
        assert "nope" in exc.value.message

    def test_duplicate_names(self):
        with pytest.raises(ConfigError, match="Duplicate job names"):
            build_dag([_job("a"), _job("a")])


class TestCycles:
    def test_cycle_is_named(self):
        with pytest.raises(ConfigError) as exc:
            build_graph([_job("a", ["c"]), _job("b", ["a"]), _job("c", ["b"]), _job("d")])
        assert exc.value.kind == "config"
        assert "a -> b -> c -> a" in exc.value.message
        assert exc.value.details["cycle"] == ["a", "b", "c", "a"]

    def test_self_dependency(self):
        with pytest.raises(ConfigError, match="x -> x"):
            build_graph([_job("x", ["x"])])

    def test_find_cycle_none_for_dag(self):
        assert find_cycle({"a": {"b"}, "b": set()}) is None


class TestLevels:
    def test_independent_jobs_share_a_stage(self):
        adj, indeg = build_dag([_job("fmt"), _job("docs"), _job("lint", ["fmt"]), _job("test", ["fmt"])])
        assert topo_levels(adj, indeg) == [["docs", "fmt"], ["lint", "test"]]

    def test_graph_order_is_topological(self):
        graph = build_graph([_job("c", ["b"]), _job("b", ["a"]), _job("a")])
        assert graph.order == ("a", "b", "c")
        assert graph_levels(graph) == [["a"], ["b"], ["c"]]
        assert graph.dependents("a") == ("b",)
        assert graph.dependents("c") == ()


class TestGraph:
    def test_job_without_steps_rejected(self):
        from gateci.model import Job

        with pytest.raises(ConfigError, match="at least one step"):
            build_graph([Job(name="empty", steps=())])

    def test_fingerprint_stable_and_content_sensitive(self):
        g1 = build_graph([_job("a"), _job("b", ["a"])])
        g2 = build_graph([_job("b", ["a"]), _job("a")])
        g3 = build_graph([_job("a"), _job("b")])
        assert g1.fingerprint() == g2.fingerprint()
        assert g1.fingerprint() != g3.fingerprint()

    def test_graph_is_read_only(self):
        graph = build_graph([_job("a")])
        with pytest.raises(TypeError):
            graph.jobs["b"] = _job("b")
