"""
Scripted Queries.

Queries authored outside the package: a script engine turns whatever the
author supplies into a ``query(state)`` predicate that receives the final
encounter state as plain data, and the query reports the probability of the
predicate over all trials. The core only depends on the ``ScriptEngine``
contract; embedding an actual scripting language is left to engines
registered by the caller.
"""

from abc import ABC, abstractmethod
from functools import partial
from typing import Any, Callable, Dict, Optional

from analysis.queries import AnalysisQuery, weighted_outcome_probability
from sim.errors import ScriptError


class ScriptEngine(ABC):
    """Capability: load a script into a callable."""

    name = "engine"

    @abstractmethod
    def load(self, source: Any, entry: str = "query") -> Callable:
        """Resolve ``source`` and return its ``entry`` function."""


class CallableScriptEngine(ScriptEngine):
    """
    Bundled engine for scripts that are already Python callables.

    ``source`` may be the predicate itself, a mapping holding it under
    ``entry``, or any object (a module, a namespace) exposing it as an
    attribute. ``bindings`` are passed to the predicate as keyword arguments.
    """

    name = "callable"

    def __init__(self, bindings: Optional[Dict[str, Any]] = None):
        self.bindings = dict(bindings or {})

    def load(self, source, entry="query"):
        if isinstance(source, str):
            raise ScriptError("script source text needs an engine that embeds a scripting language")

        if isinstance(source, dict):
            fn = source.get(entry)
        elif callable(source):
            fn = source
        else:
            fn = getattr(source, entry, None)

        if not callable(fn):
            raise ScriptError(f"query script does not define {entry}()")
        if self.bindings:
            return partial(fn, **self.bindings)
        return fn


class ScriptedQuery(AnalysisQuery):
    """Probability that a scripted ``query(state)`` predicate holds at the end."""

    def __init__(self, name: str, source: Any, engine: ScriptEngine = None, entry: str = "query"):
        self.name = name
        self.source = source
        self.engine = engine or CallableScriptEngine()
        self.entry = entry
        self._predicate = None

    def predicate(self) -> Callable:
        if self._predicate is None:
            self._predicate = self.engine.load(self.source, self.entry)
        return self._predicate

    def evaluate(self, source):
        predicate = self.predicate()

        def checked(state_dict):
            try:
                return bool(predicate(state_dict))
            except Exception as e:
                raise ScriptError(f"{self.name}: {e}") from e

        return weighted_outcome_probability(source.require_graph(), checked, as_dict=True)
