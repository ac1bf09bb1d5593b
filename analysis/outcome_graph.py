"""
Outcome Graph.

Deduplicates the states observed across trials into nodes keyed by state
fingerprint, and the transitions between them into edges keyed by
(from, kind, to). Counters only ever change through ``merge``; every
statistic is derived from the counts on demand.
"""

import threading
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, Iterator, List, Mapping, Optional, Set, Tuple

import numpy as np

from sim.config import COUNTER_CEILING
from sim.state import EncounterState
from sim.transitions import replay

EdgeKey = Tuple[str, str, str]


def _saturating_increment(value: int) -> int:
    return value + 1 if value < COUNTER_CEILING else COUNTER_CEILING


@dataclass
class Node:
    """A distinct encounter state and how often trials reached it."""
    fingerprint: str
    state: EncounterState
    count: int = 0

    @property
    def terminal(self) -> bool:
        return self.state.over


class OutcomeGraph:
    """
    Occurrence graph over every merged trial.

    The root is the initial state; it is counted once per merged trial.
    Merging is serialized by a lock, so the graph may be shared with the
    thread that aggregates trial results.
    """

    def __init__(self, initial_state: EncounterState):
        self.initial_state = initial_state.copy()
        self.root = self.initial_state.fingerprint()
        self._nodes: Dict[str, Node] = {self.root: Node(self.root, self.initial_state.copy(), 0)}
        self._edges: Dict[EdgeKey, int] = {}
        self._out: Dict[str, Set[EdgeKey]] = {}
        self._trials = 0
        self._lock = threading.Lock()

    # -- the single mutator -------------------------------------------------

    def merge(self, log) -> None:
        """
        Fold one completed trial's log into the graph.

        The whole log is replayed before any counter changes, so a log that
        fails to replay leaves the graph exactly as it was.
        """
        staged: List[Tuple[str, EncounterState, EdgeKey]] = []
        previous = self.root
        for state, transition in replay(self.initial_state, log):
            fingerprint = state.fingerprint()
            staged.append((fingerprint, state.copy(), (previous, transition.kind, fingerprint)))
            previous = fingerprint

        with self._lock:
            self._trials = _saturating_increment(self._trials)
            root = self._nodes[self.root]
            root.count = _saturating_increment(root.count)

            for fingerprint, state, key in staged:
                node = self._nodes.get(fingerprint)
                if node is None:
                    node = self._nodes[fingerprint] = Node(fingerprint, state, 0)
                node.count = _saturating_increment(node.count)
                self._edges[key] = _saturating_increment(self._edges.get(key, 0))
                self._out.setdefault(key[0], set()).add(key)

    # -- counts -------------------------------------------------------------

    @property
    def trials_merged(self) -> int:
        return self._trials

    @property
    def nodes(self) -> Mapping[str, Node]:
        return MappingProxyType(self._nodes)

    @property
    def edges(self) -> Mapping[EdgeKey, int]:
        return MappingProxyType(self._edges)

    def node_count(self, fingerprint: str) -> int:
        node = self._nodes.get(fingerprint)
        return node.count if node is not None else 0

    def edge_count(self, edge: EdgeKey) -> int:
        return self._edges.get(edge, 0)

    def outgoing(self, fingerprint: str) -> List[EdgeKey]:
        return sorted(self._out.get(fingerprint, ()))

    def counts(self) -> Tuple[Dict[str, int], Dict[EdgeKey, int]]:
        """Plain copies of every node and edge counter."""
        with self._lock:
            return {fp: n.count for fp, n in self._nodes.items()}, dict(self._edges)

    # -- derived statistics -------------------------------------------------

    def edge_probability(self, edge: EdgeKey) -> float:
        """Edge count over the total count of edges leaving its source."""
        count = self._edges.get(edge, 0)
        if count == 0:
            return 0.0
        total = sum(self._edges[k] for k in self._out.get(edge[0], ()))
        return count / total

    def node_probability(self, fingerprint: str) -> float:
        """Share of merged trials that reached a node."""
        if self._trials == 0:
            return 0.0
        return self.node_count(fingerprint) / self._trials

    def branching_factor(self) -> float:
        """Average number of distinct outgoing edges per node."""
        if not self._nodes:
            return 0.0
        return float(np.mean([len(self._out.get(fp, ())) for fp in self._nodes]))

    def max_depth(self) -> int:
        """
        Longest acyclic path from the root, in edges.

        Iterative depth-first search; edges back into the current path are
        ignored so cycles cannot inflate the result.
        """
        children: Dict[str, List[str]] = {}
        for src, _, dst in self._edges:
            children.setdefault(src, []).append(dst)

        depth: Dict[str, int] = {}
        on_path: Set[str] = {self.root}
        stack: List[Tuple[str, Iterator[str]]] = [(self.root, iter(sorted(set(children.get(self.root, ())))))]
        best: Dict[str, int] = {self.root: 0}

        while stack:
            fingerprint, remaining = stack[-1]
            child = next(remaining, None)
            if child is None:
                stack.pop()
                on_path.discard(fingerprint)
                depth[fingerprint] = best[fingerprint]
                if stack:
                    parent = stack[-1][0]
                    best[parent] = max(best[parent], depth[fingerprint] + 1)
                continue
            if child in on_path:
                continue
            if child in depth:
                best[fingerprint] = max(best[fingerprint], depth[child] + 1)
                continue
            on_path.add(child)
            best[child] = 0
            stack.append((child, iter(sorted(set(children.get(child, ()))))))

        return depth.get(self.root, 0)

    def terminal_nodes(self) -> List[Node]:
        return [n for fp, n in sorted(self._nodes.items()) if n.terminal]

    def outcome_probabilities(self) -> Dict[Optional[int], float]:
        """Probability of each winning group (``None`` for no winner) over merged trials."""
        if self._trials == 0:
            return {}
        totals: Dict[Optional[int], int] = {}
        for node in self.terminal_nodes():
            totals[node.state.winner] = totals.get(node.state.winner, 0) + node.count
        return {winner: count / self._trials for winner, count in totals.items()}

    def statistics(self) -> Dict:
        """Plain-data summary suitable for serialization."""
        with self._lock:
            outcomes = self.outcome_probabilities()
            return {
                "trials": self._trials,
                "nodes": len(self._nodes),
                "edges": len(self._edges),
                "terminal_nodes": len(self.terminal_nodes()),
                "branching_factor": self.branching_factor(),
                "max_depth": self.max_depth(),
                "outcomes": {
                    ("none" if winner is None else str(winner)): p
                    for winner, p in sorted(outcomes.items(), key=lambda kv: (kv[0] is None, kv[0] or 0))
                },
            }

    def view(self) -> "OutcomeGraphView":
        return OutcomeGraphView(self)


class OutcomeGraphView:
    """Read-only access for analysis queries; states are handed out as copies."""

    def __init__(self, graph: OutcomeGraph):
        self._graph = graph

    @property
    def root(self) -> str:
        return self._graph.root

    @property
    def trials_merged(self) -> int:
        return self._graph.trials_merged

    @property
    def edges(self) -> Mapping[EdgeKey, int]:
        return self._graph.edges

    def fingerprints(self) -> List[str]:
        return sorted(self._graph.nodes)

    def count(self, fingerprint: str) -> int:
        return self._graph.node_count(fingerprint)

    def state(self, fingerprint: str) -> EncounterState:
        return self._graph.nodes[fingerprint].state.copy()

    def terminal_states(self) -> List[Tuple[EncounterState, int]]:
        """(state copy, count) for every terminal node."""
        return [(n.state.copy(), n.count) for n in self._graph.terminal_nodes()]

    def edge_probability(self, edge: EdgeKey) -> float:
        return self._graph.edge_probability(edge)

    def node_probability(self, fingerprint: str) -> float:
        return self._graph.node_probability(fingerprint)

    def branching_factor(self) -> float:
        return self._graph.branching_factor()

    def max_depth(self) -> int:
        return self._graph.max_depth()

    def outcome_probabilities(self) -> Dict[Optional[int], float]:
        return self._graph.outcome_probabilities()

    def statistics(self) -> Dict:
        return self._graph.statistics()
