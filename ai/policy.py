"""
Decision Policies.

A decision policy chooses one action per economy slot for the participant
whose turn it is. Policies only read the state; they draw any randomness
from the roller they are handed.
"""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from ai.schema import (
    Action, ATTACK, UNARMED_STRIKE, DODGE, WAIT,
    attack, dodge, unarmed_strike, wait,
)
from sim.state import ACTION, EncounterState


def legal_actions(state: EncounterState, actor_id: int, slot: str) -> List[Action]:
    """
    Enumerate the actions ``actor_id`` may take with ``slot``.

    Waiting is always legal. Attacks and dodging are offered on the primary
    action only, against living enemies in identifier order.
    """
    actions = [wait(actor_id, slot)]
    actor = state.get(actor_id)
    if state.over or actor is None or not actor.is_alive():
        return actions
    if slot != ACTION or not actor.economy.has(slot):
        return actions

    for target_id in state.living_enemies_of(actor_id):
        for item_id in actor.inventory:
            actions.append(attack(actor_id, target_id, item_id, slot))
        actions.append(unarmed_strike(actor_id, target_id, slot))
    actions.append(dodge(actor_id, slot))
    return actions


class DecisionPolicy(ABC):
    """Capability: choose an action for one economy slot."""

    name = "policy"

    @abstractmethod
    def decide(self, state: EncounterState, actor_id: int, slot: str, roller) -> Action:
        """Return the action ``actor_id`` attempts with ``slot``."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class WaitPolicy(DecisionPolicy):
    """Never does anything."""

    name = "wait"

    def decide(self, state, actor_id, slot, roller):
        return wait(actor_id, slot)


class RandomPolicy(DecisionPolicy):
    """Uniform choice over the legal actions for the slot."""

    name = "random"

    def __init__(self, include_wait: bool = False):
        self.include_wait = include_wait

    def decide(self, state, actor_id, slot, roller):
        options = legal_actions(state, actor_id, slot)
        if not self.include_wait and len(options) > 1:
            options = [a for a in options if a.type != WAIT]
        return roller.choice(options)


class WeightedPolicy(DecisionPolicy):
    """
    Weighted random choice of action type, then of target.

    Only the primary action is used; other slots wait. Weapon attacks use the
    first item in the actor's inventory. Targets missing from
    ``target_weights`` get weight 1.
    """

    name = "weighted"

    DEFAULT_ACTION_WEIGHTS = {ATTACK: 1, UNARMED_STRIKE: 1}

    def __init__(
        self,
        action_weights: Optional[Dict[str, int]] = None,
        target_weights: Optional[Dict[int, int]] = None
    ):
        self.action_weights: Dict[str, int] = dict(action_weights or {})
        self.target_weights: Dict[int, int] = dict(target_weights or {})

    def action_weight(self, action_type: str, weight: int) -> "WeightedPolicy":
        if weight < 0:
            raise ValueError("weights must be non-negative")
        self.action_weights[action_type] = weight
        return self

    def target_weight(self, participant_id: int, weight: int) -> "WeightedPolicy":
        if weight < 0:
            raise ValueError("weights must be non-negative")
        self.target_weights[participant_id] = weight
        return self

    def decide(self, state, actor_id, slot, roller):
        actor = state.get(actor_id)
        if slot != ACTION or actor is None or not actor.is_alive():
            return wait(actor_id, slot)

        targets = state.living_enemies_of(actor_id)
        if not targets:
            return wait(actor_id, slot)

        weights = self.action_weights or self.DEFAULT_ACTION_WEIGHTS
        types = [t for t, w in sorted(weights.items()) if w > 0 and (t != ATTACK or actor.inventory)]
        if not types:
            return wait(actor_id, slot)
        action_type = roller.choice(types, [weights[t] for t in types])

        if action_type == WAIT:
            return wait(actor_id, slot)
        if action_type == DODGE:
            return dodge(actor_id, slot)

        target_w = [self.target_weights.get(t, 1) for t in targets]
        if sum(target_w) <= 0:
            return wait(actor_id, slot)
        target = roller.choice(targets, target_w)

        if action_type == ATTACK:
            return attack(actor_id, target, actor.inventory[0], slot)
        return unarmed_strike(actor_id, target, slot)

    def __repr__(self) -> str:
        return f"WeightedPolicy(action_weights={self.action_weights}, target_weights={self.target_weights})"


class PolicyTable(DecisionPolicy):
    """Route decisions to per-participant or per-group policies."""

    name = "table"

    def __init__(
        self,
        default: DecisionPolicy,
        by_participant: Optional[Dict[int, DecisionPolicy]] = None,
        by_group: Optional[Dict[int, DecisionPolicy]] = None
    ):
        self.default = default
        self.by_participant = dict(by_participant or {})
        self.by_group = dict(by_group or {})

    def policy_for(self, state: EncounterState, actor_id: int) -> DecisionPolicy:
        if actor_id in self.by_participant:
            return self.by_participant[actor_id]
        actor = state.get(actor_id)
        if actor is not None and actor.group in self.by_group:
            return self.by_group[actor.group]
        return self.default

    def decide(self, state, actor_id, slot, roller):
        return self.policy_for(state, actor_id).decide(state, actor_id, slot, roller)
