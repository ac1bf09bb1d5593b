"""
Deterministic Combat Mechanics.

Turns a chosen action into the ordered log entries that describe its
effect. The resolver never mutates the encounter state: the caller applies
the returned transitions in order.
"""

from typing import List, Optional, Tuple

from ai.schema import (
    Action, ATTACK, UNARMED_STRIKE, DODGE, WAIT,
    DODGING, HIDDEN, POISONED, PRONE, RESTRAINED, UNCONSCIOUS_CONDITION,
)
from sim.dice import ADVANTAGE, DISADVANTAGE, NORMAL, RollResult, RollSpec, combine_advantage, roll
from sim.errors import IllegalActionError, InvalidTargetError
from sim.state import ECONOMY_SLOTS, EncounterState, Item, Participant
from sim.transitions import ConditionChange, Damage, EconomyUsed, Extra, LogEntry, StatusChange


# Conditions that shift an attack roll, keyed by whose condition it is
ATTACKER_CONDITIONS = {
    HIDDEN: ADVANTAGE,
    POISONED: DISADVANTAGE,
    PRONE: DISADVANTAGE,
}
TARGET_CONDITIONS = {
    DODGING: DISADVANTAGE,
    PRONE: ADVANTAGE,
    UNCONSCIOUS_CONDITION: ADVANTAGE,
    RESTRAINED: ADVANTAGE,
}

UNARMED_DIE = 4


def attack_advantage(attacker: Participant, target: Participant, requested: str = NORMAL) -> str:
    """Combine the requested mode with every condition-driven source."""
    sources = [requested]
    sources += [mode for cond, mode in ATTACKER_CONDITIONS.items() if attacker.has_condition(cond)]
    sources += [mode for cond, mode in TARGET_CONDITIONS.items() if target.has_condition(cond)]
    return combine_advantage(*sources)


def validate_action(
    state: EncounterState,
    action: Action
) -> Tuple[Participant, Optional[Participant], Optional[Item]]:
    """
    Check an action against the current state without rolling anything.

    Returns:
        (actor, target, item); target and item are None where not used

    Raises:
        IllegalActionError: actor missing or not alive, slot unavailable,
            item unknown or not carried
        InvalidTargetError: target missing, not alive, or the actor itself
    """
    if state.over:
        raise IllegalActionError("encounter already resolved", action)

    actor = state.get(action.actor)
    if actor is None:
        raise IllegalActionError(f"unknown actor {action.actor}", action)
    if not actor.is_alive():
        raise IllegalActionError(f"{actor.name} is {actor.status} and cannot act", action)

    # waiting spends nothing, so no slot check
    if action.type != WAIT:
        if action.slot not in ECONOMY_SLOTS:
            raise IllegalActionError(f"unknown economy slot {action.slot!r}", action)
        if not actor.economy.has(action.slot):
            raise IllegalActionError(f"{actor.name} has no {action.slot} left this round", action)

    target = None
    if action.is_targeted:
        if action.target is None:
            raise InvalidTargetError(f"{action.type} needs a target", action)
        target = state.get(action.target)
        if target is None:
            raise InvalidTargetError(f"unknown target {action.target}", action)
        if target.id == actor.id:
            raise InvalidTargetError(f"{actor.name} cannot target themselves", action)
        if not target.is_alive():
            raise InvalidTargetError(f"{target.name} is {target.status}", action)

    item = None
    if action.type == ATTACK:
        if action.item is None or action.item not in state.items:
            raise IllegalActionError(f"unknown item {action.item}", action)
        if action.item not in actor.inventory:
            raise IllegalActionError(f"{actor.name} does not carry item {action.item}", action)
        item = state.items[action.item]

    return actor, target, item


def _roll_extra(purpose: str, actor: int, result: RollResult) -> Extra:
    data = {"purpose": purpose, "actor": actor}
    data.update(result.to_dict())
    return Extra("roll", data)


def _damage_entries(target: Participant, amount: int) -> List[LogEntry]:
    """Damage plus at most one status change, the most severe reached."""
    entries: List[LogEntry] = [Damage(target.id, amount)]
    new_status = target.status_for_hp(target.hp - amount)
    if new_status != target.status:
        entries.append(StatusChange(target.id, new_status))
    return entries


def resolve_attack(
    attacker: Participant,
    target: Participant,
    to_hit: int,
    damage: RollSpec,
    critical_damage: RollSpec,
    requested: str,
    roller
) -> List[LogEntry]:
    """
    Resolve an attack roll against the target's armor class.

    A critical success always hits and rolls ``critical_damage``; a critical
    failure always misses.
    """
    advantage = attack_advantage(attacker, target, requested)
    attack_roll = roll(RollSpec(count=1, size=20, modifier=to_hit, advantage=advantage), roller)
    entries: List[LogEntry] = [_roll_extra("attack", attacker.id, attack_roll)]

    summary = {
        "attacker": attacker.id,
        "target": target.id,
        "total": attack_roll.total,
        "armor_class": target.armor_class,
        "critical": attack_roll.critical_kind,
    }
    if not attack_roll.meets(target.armor_class):
        entries.append(Extra("attack_miss", summary))
        return entries

    entries.append(Extra("attack_hit", summary))
    spec = critical_damage if attack_roll.is_critical_success else damage
    damage_roll = roll(spec, roller)
    entries.append(_roll_extra("damage", attacker.id, damage_roll))
    entries.extend(_damage_entries(target, max(0, damage_roll.total)))
    return entries


def resolve_action(state: EncounterState, action: Action, roller) -> List[LogEntry]:
    """
    Resolve one action into log entries.

    Validation happens before the first roll, so a rejected action never
    consumes randomness.

    Args:
        state: Current encounter state (read only)
        action: The chosen action
        roller: Randomness stream

    Returns:
        Ordered transitions and extras for the caller to apply
    """
    actor, target, item = validate_action(state, action)

    entries: List[LogEntry] = []
    if action.type != WAIT:
        entries.append(EconomyUsed(actor.id, action.slot))
    entries.append(Extra("action", action.to_dict()))

    if action.type == ATTACK:
        entries.extend(resolve_attack(
            actor, target,
            to_hit=actor.attack_modifier(item),
            damage=item.damage_spec(critical=False),
            critical_damage=item.damage_spec(critical=True),
            requested=action.advantage,
            roller=roller,
        ))
    elif action.type == UNARMED_STRIKE:
        strength = actor.modifier("STR")
        entries.extend(resolve_attack(
            actor, target,
            to_hit=strength + actor.proficiency_bonus(),
            damage=RollSpec(count=1, size=UNARMED_DIE, modifier=strength),
            critical_damage=RollSpec(count=2, size=UNARMED_DIE, modifier=strength),
            requested=action.advantage,
            roller=roller,
        ))
    elif action.type == DODGE:
        entries.append(ConditionChange(actor.id, DODGING, True))

    return entries
