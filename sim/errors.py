"""
Simulation Errors.

Invalid specifications are rejected before an encounter starts, illegal
actions abort the trial that produced them.
"""

from typing import Any, Dict, Optional


class SimulationError(Exception):
    """Base class for every error raised by the simulator."""


class InvalidSpecError(SimulationError, ValueError):
    """A roll specification, participant or item reference is malformed."""


class DiceNotationError(InvalidSpecError):
    """Dice notation text could not be parsed."""

    def __init__(self, text: str, reason: str = "unrecognised dice notation"):
        self.text = text
        self.reason = reason
        super().__init__(f"{reason}: {text!r}")


class IllegalActionError(SimulationError):
    """A policy asked for an action the actor cannot legally take."""

    def __init__(self, message: str, action: Any = None, context: Optional[Dict] = None):
        self.action = action
        self.context = dict(context or {})
        super().__init__(message)

    def with_context(self, **context) -> "IllegalActionError":
        self.context.update(context)
        return self

    def __str__(self) -> str:
        base = super().__str__()
        if not self.context:
            return base
        details = ", ".join(f"{k}={v}" for k, v in sorted(self.context.items()))
        return f"{base} ({details})"


class InvalidTargetError(IllegalActionError):
    """The action names a participant or item that cannot be targeted."""


class IllegalTransitionError(SimulationError):
    """A transition cannot be applied to the current encounter state."""


class TrialAbortedError(SimulationError):
    """A single trial was aborted; siblings are unaffected."""

    def __init__(self, trial_index: int, cause: BaseException, entry: Any = None):
        self.trial_index = trial_index
        self.cause = cause
        self.entry = entry
        super().__init__(f"trial {trial_index} aborted: {cause}")

    def __reduce__(self):
        # travels back from process-pool workers
        return (type(self), (self.trial_index, self.cause, self.entry))


class ScriptError(SimulationError):
    """An externally scripted query could not be loaded or evaluated."""
