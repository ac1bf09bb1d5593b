"""
Heuristic Policy.

Deterministic policy that picks the attack with the best expected damage
against a living enemy, preferring attacks that are likely to drop the
target. Falls back to dodging when no attack is worth anything.
"""

from typing import List, Tuple

from ai.policy import DecisionPolicy
from ai.schema import Action, attack, dodge, unarmed_strike, wait
from analysis.pmf import expected_total
from sim.dice import ADVANTAGE, DISADVANTAGE, RollSpec
from sim.mechanics import UNARMED_DIE, attack_advantage
from sim.state import ACTION, EncounterState, Participant

KILL_BONUS = 1.5


def hit_probability(to_hit: int, armor_class: int, advantage: str) -> float:
    """Chance a d20 + to_hit meets armor_class; natural 20s and 1s bound it."""
    needed_roll = armor_class - to_hit
    p = max(0.05, min(0.95, (21 - needed_roll) / 20))
    if advantage == ADVANTAGE:
        return 1 - (1 - p) ** 2
    if advantage == DISADVANTAGE:
        return p ** 2
    return p


def estimate_attack_utility(
    attacker: Participant,
    target: Participant,
    to_hit: int,
    damage: RollSpec
) -> float:
    """
    Estimate utility of an attack against a target.

    Considers: expected damage, hit probability (with condition-driven
    advantage), target vitality.
    """
    advantage = attack_advantage(attacker, target)
    expected_damage = max(0.0, expected_total(damage)) * hit_probability(to_hit, target.armor_class, advantage)

    # Bonus for potentially dropping the target
    if expected_damage >= target.hp:
        expected_damage *= KILL_BONUS

    return expected_damage


def candidate_attacks(state: EncounterState, actor: Participant) -> List[Tuple[Action, float]]:
    """Every attack option for the actor's primary action with its utility."""
    options = []
    strength = actor.modifier("STR")
    for target_id in state.living_enemies_of(actor.id):
        target = state.participants[target_id]
        for item_id in actor.inventory:
            item = state.items[item_id]
            utility = estimate_attack_utility(actor, target, actor.attack_modifier(item), item.damage)
            options.append((attack(actor.id, target_id, item_id, ACTION), utility))
        utility = estimate_attack_utility(
            actor, target,
            strength + actor.proficiency_bonus(),
            RollSpec(count=1, size=UNARMED_DIE, modifier=strength),
        )
        options.append((unarmed_strike(actor.id, target_id, ACTION), utility))
    return options


class HeuristicPolicy(DecisionPolicy):
    """Greedy expected-damage policy; ignores the roller."""

    name = "heuristic"

    def decide(self, state, actor_id, slot, roller):
        actor = state.get(actor_id)
        if slot != ACTION or actor is None or not actor.is_alive() or not actor.economy.has(ACTION):
            return wait(actor_id, slot)

        best_action = None
        best_utility = 0.0
        for action, utility in candidate_attacks(state, actor):
            if utility > best_utility:
                best_utility = utility
                best_action = action

        if best_action is not None:
            return best_action

        # Nothing worth swinging at
        return dodge(actor_id, slot)
