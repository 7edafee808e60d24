"""
Subject dependency graph.

Builds the prerequisite graph from subject records and orders it:
- Kahn's algorithm for the topological order (ties broken by creation order)
- Independent DFS cycle check used to short-circuit to the fallback path
- Dangling prerequisite ids are dropped from the graph and reported

A cycle is a content-authoring error, not a crash: ordering returns
CycleDetected instead of raising.
"""
from __future__ import annotations

import heapq
from dataclasses import dataclass
from typing import Iterator, Sequence, Union

from loguru import logger

from learnpath.errors import GraphInconsistency
from learnpath.models import SubjectNode


@dataclass(frozen=True)
class Ordered:
    """Every subject, each after all of its prerequisites."""
    sequence: tuple[str, ...]


@dataclass(frozen=True)
class CycleDetected:
    """
    No valid ordering exists.

    Attributes:
        unprocessed: Subjects Kahn's algorithm could not place (every cycle
            member plus anything downstream of a cycle)
        partial: The prefix that could be ordered before the sort stalled
    """
    unprocessed: frozenset[str]
    partial: tuple[str, ...] = ()


OrderResult = Union[Ordered, CycleDetected]


@dataclass(frozen=True)
class DanglingPrerequisite:
    """A prerequisite id that references no known subject."""
    subject_id: str
    missing_id: str


class SubjectGraph:
    """
    In-memory prerequisite graph.

    Edges point from prerequisite to dependent. The graph is not mutated after
    construction, so a built instance can be shared between threads.
    """

    def __init__(self, subjects: Sequence[SubjectNode]):
        # Creation order: position first, then the order records arrived in
        ordered = sorted(enumerate(subjects), key=lambda pair: (pair[1].position, pair[0]))

        self._rank: dict[str, int] = {}
        self._nodes: dict[str, SubjectNode] = {}
        for _, subject in ordered:
            if subject.id in self._nodes:
                logger.warning(f"Duplicate subject id {subject.id} ignored")
                continue
            self._rank[subject.id] = len(self._rank)
            self._nodes[subject.id] = subject

        self._dependents: dict[str, list[str]] = {sid: [] for sid in self._nodes}
        self._prerequisites: dict[str, list[str]] = {sid: [] for sid in self._nodes}
        self._dangling: list[DanglingPrerequisite] = []

        for sid, subject in self._nodes.items():
            for prereq_id in subject.prerequisite_ids:
                if prereq_id not in self._nodes:
                    self._dangling.append(DanglingPrerequisite(sid, prereq_id))
                    logger.warning(
                        f"Prerequisite {prereq_id} for subject {sid} not found; edge ignored"
                    )
                    continue
                if prereq_id in self._prerequisites[sid]:
                    continue
                self._prerequisites[sid].append(prereq_id)
                self._dependents[prereq_id].append(sid)

    # =========================================================================
    # Queries
    # =========================================================================

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, subject_id: object) -> bool:
        return subject_id in self._nodes

    @property
    def subject_ids(self) -> list[str]:
        """Subject ids in creation order."""
        return list(self._nodes)

    @property
    def dangling_references(self) -> list[DanglingPrerequisite]:
        return list(self._dangling)

    def get(self, subject_id: str) -> SubjectNode | None:
        return self._nodes.get(subject_id)

    def prerequisites_of(self, subject_id: str) -> list[str]:
        """Direct prerequisites of a subject (known subjects only)."""
        return list(self._prerequisites.get(subject_id, []))

    def dependents_of(self, subject_id: str) -> list[str]:
        """Subjects that list `subject_id` as a direct prerequisite."""
        return list(self._dependents.get(subject_id, []))

    # =========================================================================
    # Ordering
    # =========================================================================

    def topological_order(self) -> OrderResult:
        """
        Order subjects with Kahn's algorithm.

        Among subjects that become available at the same time, the one
        created first goes first, so repeated runs give identical orders.

        Returns:
            Ordered with the full sequence, or CycleDetected
        """
        in_degree = {sid: len(prereqs) for sid, prereqs in self._prerequisites.items()}
        ready = [(self._rank[sid], sid) for sid, degree in in_degree.items() if degree == 0]
        heapq.heapify(ready)

        order: list[str] = []
        while ready:
            _, sid = heapq.heappop(ready)
            order.append(sid)
            for dependent in self._dependents[sid]:
                in_degree[dependent] -= 1
                if in_degree[dependent] == 0:
                    heapq.heappush(ready, (self._rank[dependent], dependent))

        if len(order) < len(self._nodes):
            unprocessed = frozenset(self._nodes) - frozenset(order)
            logger.error(
                f"Cycle detected in subject dependencies; "
                f"{len(unprocessed)} subject(s) could not be ordered: {sorted(unprocessed)}"
            )
            return CycleDetected(unprocessed=unprocessed, partial=tuple(order))

        return Ordered(sequence=tuple(order))

    def has_cycle(self) -> bool:
        """Depth-first cycle check with a recursion-stack set."""
        return bool(self.find_cycle())

    def find_cycle(self) -> list[str]:
        """
        Return the members of one cycle in prerequisite order, or [] for a DAG.

        Walks subject -> prerequisite edges iteratively so deep chains do not
        hit the interpreter's recursion limit.
        """
        visited: set[str] = set()

        for root in self._nodes:
            if root in visited:
                continue
            visited.add(root)
            on_stack: set[str] = {root}
            path: list[str] = [root]
            stack: list[Iterator[str]] = [iter(self._prerequisites[root])]

            while stack:
                nxt = next(stack[-1], None)
                if nxt is None:
                    stack.pop()
                    on_stack.discard(path.pop())
                    continue
                if nxt in on_stack:
                    return path[path.index(nxt):]
                if nxt in visited:
                    continue
                visited.add(nxt)
                on_stack.add(nxt)
                path.append(nxt)
                stack.append(iter(self._prerequisites[nxt]))

        return []

    def cycle_members(self) -> set[str]:
        """Subjects that can reach themselves through prerequisite edges."""
        result = self.topological_order()
        if isinstance(result, Ordered):
            return set()

        # Only unprocessed subjects can sit on a cycle
        remaining = result.unprocessed
        members: set[str] = set()
        for sid in remaining:
            seen: set[str] = set()
            frontier = [p for p in self._prerequisites[sid] if p in remaining]
            while frontier:
                node = frontier.pop()
                if node == sid:
                    members.add(sid)
                    break
                if node in seen:
                    continue
                seen.add(node)
                frontier.extend(p for p in self._prerequisites[node] if p in remaining)
        return members

    def validate(self) -> None:
        """
        Check the graph for authoring errors.

        Raises:
            GraphInconsistency: a cycle or a dangling prerequisite reference
        """
        cycle = self.find_cycle()
        if cycle or self._dangling:
            raise GraphInconsistency(
                "Subject prerequisites are inconsistent.",
                cycle=cycle,
                dangling=[(d.subject_id, d.missing_id) for d in self._dangling],
            )
