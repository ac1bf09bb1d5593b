"""
Analysis Queries.

A query turns read access to an outcome graph (and/or the raw trial logs)
into a named scalar or distribution. Queries never mutate what they read.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Sequence

import numpy as np

from sim.state import EncounterState
from sim.transitions import Damage, RoundStart, TransitionLog

logger = logging.getLogger(__name__)


@dataclass
class QuerySource:
    """What a query may read: a graph view, trial logs, or both."""
    graph: Optional[Any] = None
    logs: Sequence[TransitionLog] = field(default_factory=list)

    def require_graph(self):
        if self.graph is None:
            raise ValueError("this query needs an outcome graph")
        return self.graph


class AnalysisQuery(ABC):
    """Capability: compute a derived statistic."""

    name = "query"

    @abstractmethod
    def evaluate(self, source: QuerySource) -> Any:
        """Return a scalar or a plain-data distribution."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def weighted_outcome_probability(graph, predicate: Callable[[Any], bool], as_dict: bool = False) -> float:
    """Share of trials whose final state satisfies ``predicate``."""
    hits = 0
    total = 0
    for state, count in graph.terminal_states():
        total += count
        if predicate(state.to_dict() if as_dict else state):
            hits += count
    return hits / total if total else 0.0


class OutcomeProbability(AnalysisQuery):
    """Probability that the final state satisfies a condition."""

    def __init__(self, name: str, condition: Callable[[EncounterState], bool]):
        self.name = name
        self.condition = condition

    def evaluate(self, source):
        return weighted_outcome_probability(source.require_graph(), self.condition)


class GroupWinProbability(OutcomeProbability):
    def __init__(self, group: int):
        self.group = group
        super().__init__(f"win_probability_group_{group}", lambda state: state.winner == group)


class SurvivalProbability(OutcomeProbability):
    """Probability a participant is still alive when the encounter ends."""

    def __init__(self, participant_id: int):
        self.participant_id = participant_id
        super().__init__(f"survival_probability_{participant_id}", self._survived)

    def _survived(self, state: EncounterState) -> bool:
        p = state.get(self.participant_id)
        return p is not None and p.is_alive()


def rounds_of(log: Iterable) -> int:
    """Number of rounds a trial log opened."""
    rounds = 0
    for entry in log:
        if isinstance(entry, RoundStart):
            rounds = entry.round
    return rounds


class RoundsDistribution(AnalysisQuery):
    """Distribution of encounter length over the trial logs."""

    name = "rounds_distribution"

    def evaluate(self, source):
        if not source.logs:
            return {"mean": 0.0, "std": 0.0, "min": 0, "max": 0, "histogram": {}}
        rounds = np.array([rounds_of(log) for log in source.logs])
        values, counts = np.unique(rounds, return_counts=True)
        return {
            "mean": float(rounds.mean()),
            "std": float(rounds.std()),
            "min": int(rounds.min()),
            "max": int(rounds.max()),
            "histogram": {int(v): float(c) / len(rounds) for v, c in zip(values, counts)},
        }


class MeanDamageTaken(AnalysisQuery):
    """Average damage a participant takes per trial."""

    def __init__(self, participant_id: int):
        self.participant_id = participant_id
        self.name = f"mean_damage_taken_{participant_id}"

    def evaluate(self, source):
        if not source.logs:
            return 0.0
        totals = [
            sum(e.amount for e in log if isinstance(e, Damage) and e.target == self.participant_id)
            for log in source.logs
        ]
        return float(np.mean(totals))


class GraphSummary(AnalysisQuery):
    name = "graph_summary"

    def evaluate(self, source):
        return source.require_graph().statistics()


class FunctionQuery(AnalysisQuery):
    """Adapt any ``fn(source)`` callable."""

    def __init__(self, name: str, fn: Callable[[QuerySource], Any]):
        self.name = name
        self.fn = fn

    def evaluate(self, source):
        return self.fn(source)


def run_queries(queries: Iterable[AnalysisQuery], graph=None, logs: Sequence[TransitionLog] = ()) -> Dict[str, Any]:
    """
    Evaluate queries against a graph and/or logs.

    A failing query is reported as ``{"error": message}`` under its name;
    the others still run.
    """
    if graph is not None and hasattr(graph, "view"):
        graph = graph.view()
    source = QuerySource(graph, list(logs))
    results: Dict[str, Any] = {}
    for query in queries:
        try:
            results[query.name] = query.evaluate(source)
        except Exception as e:
            logger.warning("Query %s failed: %s", query.name, e)
            results[query.name] = {"error": str(e)}
    return results
