"""
Aggregation Hooks.

Hooks observe completed trials. The aggregator replays each trial's log in
its own thread and calls the hooks in order, so a hook never runs inside a
worker and needs no locking.
"""

from typing import Dict

import numpy as np

from sim.transitions import Damage, TurnStart


class Hook:
    """Base hook; every callback is optional."""

    name = "hook"

    def on_batch_start(self, initial_state):
        pass

    def on_trial_start(self, index, initial_state):
        pass

    def on_transition(self, state, transition):
        pass

    def on_trial_end(self, index, final_state, result):
        pass

    def on_batch_end(self, batch):
        pass

    def metrics(self) -> Dict[str, float]:
        return {}


class TurnCounterHook(Hook):
    """Average number of turns taken per trial."""

    name = "turn_counter"

    def __init__(self):
        self.trial_turns = []
        self._turns = 0

    def on_batch_start(self, initial_state):
        self.trial_turns = []

    def on_trial_start(self, index, initial_state):
        self._turns = 0

    def on_transition(self, state, transition):
        if isinstance(transition, TurnStart):
            self._turns += 1

    def on_trial_end(self, index, final_state, result):
        self.trial_turns.append(self._turns)

    def metrics(self):
        return {"avg_turns": float(np.mean(self.trial_turns)) if self.trial_turns else 0.0}


class DamageHook(Hook):
    """Mean damage taken per trial by each group."""

    name = "damage"

    def __init__(self):
        self.totals: Dict[int, int] = {}
        self.trials = 0

    def on_batch_start(self, initial_state):
        self.totals = {g: 0 for g in {p.group for p in initial_state.ordered()}}
        self.trials = 0

    def on_transition(self, state, transition):
        if isinstance(transition, Damage):
            group = state.participants[transition.target].group
            self.totals[group] = self.totals.get(group, 0) + transition.amount

    def on_trial_end(self, index, final_state, result):
        self.trials += 1

    def metrics(self):
        return {
            f"group_{g}_mean_damage_taken": (total / self.trials if self.trials else 0.0)
            for g, total in sorted(self.totals.items())
        }
