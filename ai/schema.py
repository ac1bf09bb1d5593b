"""
Action Schema for the Encounter Simulator.

Defines the action vocabulary a decision policy chooses from.
"""

from dataclasses import dataclass
from typing import Dict, Optional

from sim.dice import NORMAL, ADVANTAGE_MODES
from sim.state import ACTION

# =============================================================================
# ACTION TYPES
# =============================================================================

WAIT = "wait"                      # do nothing with this slot
ATTACK = "attack"                  # weapon attack: needs target and item
UNARMED_STRIKE = "unarmed_strike"  # needs target
DODGE = "dodge"                    # attackers have disadvantage until next turn

ACTION_TYPES = (WAIT, ATTACK, UNARMED_STRIKE, DODGE)

# Types that need a target
TARGETED_TYPES = (ATTACK, UNARMED_STRIKE)

# Conditions
DODGING = "dodging"
HIDDEN = "hidden"
POISONED = "poisoned"
PRONE = "prone"
RESTRAINED = "restrained"
UNCONSCIOUS_CONDITION = "unconscious"


@dataclass(frozen=True)
class Action:
    """
    One policy decision.

    Attributes:
        type: One of ACTION_TYPES
        slot: Economy slot the action consumes
        actor: Acting participant id
        target: Target participant id (attacks only)
        item: Weapon item id (weapon attacks only)
        advantage: Advantage requested by the policy, combined with conditions
    """
    type: str = WAIT
    slot: str = ACTION
    actor: int = 0
    target: Optional[int] = None
    item: Optional[int] = None
    advantage: str = NORMAL

    def __post_init__(self):
        if self.type not in ACTION_TYPES:
            raise ValueError(f"unknown action type {self.type!r}")
        if self.advantage not in ADVANTAGE_MODES:
            raise ValueError(f"unknown advantage mode {self.advantage!r}")

    @property
    def is_targeted(self) -> bool:
        return self.type in TARGETED_TYPES

    def to_dict(self) -> Dict:
        return {
            "type": self.type,
            "slot": self.slot,
            "actor": self.actor,
            "target": self.target,
            "item": self.item,
            "advantage": self.advantage,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "Action":
        return cls(
            type=d.get("type", WAIT),
            slot=d.get("slot", ACTION),
            actor=int(d.get("actor", 0)),
            target=d.get("target"),
            item=d.get("item"),
            advantage=d.get("advantage", NORMAL),
        )


def wait(actor: int, slot: str = ACTION) -> Action:
    return Action(WAIT, slot, actor)


def attack(actor: int, target: int, item: int, slot: str = ACTION, advantage: str = NORMAL) -> Action:
    return Action(ATTACK, slot, actor, target, item, advantage)


def unarmed_strike(actor: int, target: int, slot: str = ACTION, advantage: str = NORMAL) -> Action:
    return Action(UNARMED_STRIKE, slot, actor, target, None, advantage)


def dodge(actor: int, slot: str = ACTION) -> Action:
    return Action(DODGE, slot, actor)
