"""
Unit tests for SubjectGraph ordering, cycle detection and the order cache.
"""
import random

import pytest

from learnpath.errors import GraphInconsistency
from learnpath.graph import CycleDetected, Ordered, SubjectGraph, SubjectOrderCache
from learnpath.models import SubjectNode


def node(subject_id, *prereqs, position=0):
    return SubjectNode(id=subject_id, title=subject_id, prerequisite_ids=tuple(prereqs), position=position)


def assert_respects_prerequisites(subjects, sequence):
    index = {sid: i for i, sid in enumerate(sequence)}
    for s in subjects:
        for prereq in s.prerequisite_ids:
            if prereq in index:
                assert index[prereq] < index[s.id], f"{prereq} must precede {s.id}"


class TestTopologicalOrder:
    def test_linear_chain(self):
        subjects = [node("A"), node("B", "A"), node("C", "B")]
        result = SubjectGraph(subjects).topological_order()
        assert result == Ordered(sequence=("A", "B", "C"))

    def test_chain_given_out_of_order(self):
        subjects = [node("C", "B", position=2), node("A", position=0), node("B", "A", position=1)]
        result = SubjectGraph(subjects).topological_order()
        assert result.sequence == ("A", "B", "C")

    def test_ties_broken_by_creation_order(self):
        subjects = [node("X", position=0), node("Y", position=1), node("Z", position=2)]
        assert SubjectGraph(subjects).topological_order().sequence == ("X", "Y", "Z")

    def test_ties_fall_back_to_arrival_order(self):
        subjects = [node("B"), node("A")]
        assert SubjectGraph(subjects).topological_order().sequence == ("B", "A")

    def test_tie_break_applies_to_newly_released_subjects(self):
        # D and E both unlock when A is done; D was created first
        subjects = [
            node("A", position=0),
            node("E", "A", position=4),
            node("B", position=1),
            node("D", "A", position=3),
        ]
        assert SubjectGraph(subjects).topological_order().sequence == ("A", "B", "D", "E")

    def test_diamond(self):
        subjects = [
            node("A", position=0),
            node("B", "A", position=1),
            node("C", "A", position=2),
            node("D", "B", "C", position=3),
        ]
        assert SubjectGraph(subjects).topological_order().sequence == ("A", "B", "C", "D")

    def test_empty_graph(self):
        assert SubjectGraph([]).topological_order() == Ordered(sequence=())

    def test_random_dags_respect_prerequisites(self):
        rng = random.Random(7)
        for _ in range(50):
            n = rng.randint(1, 12)
            subjects = []
            for i in range(n):
                prereqs = [f"s{j}" for j in range(i) if rng.random() < 0.3]
                subjects.append(node(f"s{i}", *prereqs, position=i))
            rng.shuffle(subjects)
            graph = SubjectGraph(subjects)
            result = graph.topological_order()
            assert isinstance(result, Ordered)
            assert sorted(result.sequence) == sorted(s.id for s in subjects)
            assert_respects_prerequisites(subjects, result.sequence)
            assert graph.has_cycle() is False

    def test_order_is_deterministic(self):
        subjects = [node("A"), node("B", "A"), node("C"), node("D", "C", "A")]
        first = SubjectGraph(subjects).topological_order()
        second = SubjectGraph(subjects).topological_order()
        assert first == second


class TestCycles:
    def test_two_cycle_reported(self):
        subjects = [node("A", "B"), node("B", "A"), node("C")]
        result = SubjectGraph(subjects).topological_order()
        assert isinstance(result, CycleDetected)
        assert {"A", "B"} <= result.unprocessed
        assert result.partial == ("C",)

    def test_self_loop(self):
        graph = SubjectGraph([node("A", "A")])
        assert isinstance(graph.topological_order(), CycleDetected)
        assert graph.find_cycle() == ["A"]

    def test_downstream_of_cycle_is_unprocessed(self):
        subjects = [node("A", "B"), node("B", "A"), node("C", "A")]
        result = SubjectGraph(subjects).topological_order()
        assert result.unprocessed == frozenset({"A", "B", "C"})

    def test_cycle_members_excludes_downstream(self):
        subjects = [node("A", "B"), node("B", "A"), node("C", "A")]
        assert SubjectGraph(subjects).cycle_members() == {"A", "B"}

    def test_find_cycle_returns_path(self):
        subjects = [node("A", "C"), node("B", "A"), node("C", "B")]
        cycle = SubjectGraph(subjects).find_cycle()
        assert sorted(cycle) == ["A", "B", "C"]

    def test_dfs_and_kahn_agree(self):
        rng = random.Random(11)
        for _ in range(100):
            n = rng.randint(1, 8)
            ids = [f"s{i}" for i in range(n)]
            subjects = [
                node(sid, *[p for p in ids if rng.random() < 0.2], position=i)
                for i, sid in enumerate(ids)
            ]
            graph = SubjectGraph(subjects)
            kahn_cycle = isinstance(graph.topological_order(), CycleDetected)
            assert graph.has_cycle() == kahn_cycle

    def test_every_cycle_has_a_member_reported(self):
        subjects = [
            node("A", "B"), node("B", "A"),
            node("C", "D"), node("D", "E"), node("E", "C"),
            node("F"),
        ]
        unprocessed = SubjectGraph(subjects).topological_order().unprocessed
        assert unprocessed & {"A", "B"}
        assert unprocessed & {"C", "D", "E"}
        assert "F" not in unprocessed

    def test_deep_chain_does_not_recurse(self):
        subjects = [node("s0")] + [node(f"s{i}", f"s{i - 1}", position=i) for i in range(1, 5000)]
        graph = SubjectGraph(subjects)
        assert graph.has_cycle() is False
        assert graph.topological_order().sequence[-1] == "s4999"


class TestGraphQueries:
    def test_dangling_prerequisite_dropped_and_reported(self):
        graph = SubjectGraph([node("A"), node("B", "A", "ghost")])
        assert graph.prerequisites_of("B") == ["A"]
        assert [(d.subject_id, d.missing_id) for d in graph.dangling_references] == [("B", "ghost")]
        assert graph.topological_order().sequence == ("A", "B")

    def test_dependents_and_prerequisites(self):
        graph = SubjectGraph([node("A"), node("B", "A"), node("C", "A")])
        assert graph.dependents_of("A") == ["B", "C"]
        assert graph.prerequisites_of("C") == ["A"]
        assert "A" in graph
        assert len(graph) == 3

    def test_duplicate_prerequisite_counted_once(self):
        graph = SubjectGraph([node("A"), node("B", "A", "A")])
        assert graph.topological_order().sequence == ("A", "B")

    def test_validate_passes_on_clean_dag(self):
        SubjectGraph([node("A"), node("B", "A")]).validate()

    def test_validate_raises_on_cycle(self):
        with pytest.raises(GraphInconsistency) as exc_info:
            SubjectGraph([node("A", "B"), node("B", "A")]).validate()
        assert sorted(exc_info.value.details["cycle"]) == ["A", "B"]

    def test_validate_raises_on_dangling(self):
        with pytest.raises(GraphInconsistency) as exc_info:
            SubjectGraph([node("A", "missing")]).validate()
        assert exc_info.value.details["dangling"] == [("A", "missing")]


class TestSubjectOrderCache:
    def test_caches_per_version(self):
        cache = SubjectOrderCache(ttl_seconds=60)
        first = cache.get_or_compute("v1", [node("A"), node("B", "A")])
        # Same version returns the cached result even for different input
        second = cache.get_or_compute("v1", [node("Z")])
        assert first is second
        assert cache.get_or_compute("v2", [node("Z")]).sequence == ("Z",)

    def test_entries_expire(self):
        now = [0.0]
        cache = SubjectOrderCache(ttl_seconds=10, timer=lambda: now[0])
        cache.get_or_compute("v1", [node("A")])
        assert cache.get("v1") is not None
        now[0] = 11.0
        assert cache.get("v1") is None

    def test_invalidate_clears(self):
        cache = SubjectOrderCache(ttl_seconds=60)
        cache.get_or_compute("v1", [node("A")])
        cache.invalidate()
        assert len(cache) == 0

    def test_caches_cycle_results(self):
        cache = SubjectOrderCache(ttl_seconds=60)
        result = cache.get_or_compute("v1", [node("A", "B"), node("B", "A")])
        assert isinstance(result, CycleDetected)
        assert cache.get("v1") == result
