"""Tests for transitions, the transition log and replay."""

import logging

import pytest

from sim.errors import IllegalTransitionError
from sim.state import DEAD, UNCONSCIOUS
from sim.transitions import (
    ConditionChange, Damage, EconomyUsed, EndCombat, Extra, Heal, Initiative,
    RoundEnd, RoundStart, TransitionLog, TurnEnd, TurnStart, StatusChange,
    entry_from_dict, replay, transition_from_dict,
)


class TestTransitions:
    """Each transition applies exactly one change."""

    def test_initiative_sorts_with_id_tiebreak(self, simple_scenario):
        simple_scenario.apply(Initiative(((1, 12), (2, 18), (3, 12), (4, 3))))
        assert simple_scenario.initiative_order == [2, 1, 3, 4]
        assert simple_scenario.participants[3].initiative == 12

    def test_initiative_only_once(self, duel_state):
        duel_state.apply(Initiative(((1, 5), (2, 6))))
        with pytest.raises(IllegalTransitionError):
            duel_state.apply(Initiative(((1, 5), (2, 6))))

    def test_round_start_resets_economy(self, duel_state):
        duel_state.apply(Initiative(((1, 5), (2, 6))))
        duel_state.apply(RoundStart(1))
        duel_state.apply(EconomyUsed(1, "action"))
        assert not duel_state.participants[1].economy.action
        duel_state.apply(RoundEnd(1))
        duel_state.apply(RoundStart(2))
        assert duel_state.participants[1].economy.action

    def test_turn_start_does_not_reset_economy(self, duel_state):
        duel_state.apply(Initiative(((1, 5), (2, 6))))
        duel_state.apply(RoundStart(1))
        duel_state.apply(EconomyUsed(1, "action"))
        duel_state.apply(TurnStart(1, 1))
        assert not duel_state.participants[1].economy.action

    def test_rounds_must_be_consecutive(self, duel_state):
        with pytest.raises(IllegalTransitionError):
            duel_state.apply(RoundStart(2))

    def test_turn_start_checks_order(self, duel_state):
        duel_state.apply(Initiative(((1, 5), (2, 6))))
        duel_state.apply(RoundStart(1))
        with pytest.raises(IllegalTransitionError):
            duel_state.apply(TurnStart(1, 0))
        duel_state.apply(TurnStart(2, 0))
        assert duel_state.active == 2
        duel_state.apply(TurnEnd(2))
        assert duel_state.active is None

    def test_economy_spent_twice_is_illegal(self, duel_state):
        duel_state.apply(EconomyUsed(1, "bonus_action"))
        with pytest.raises(IllegalTransitionError):
            duel_state.apply(EconomyUsed(1, "bonus_action"))

    def test_damage_is_not_clamped(self, duel_state):
        duel_state.apply(Damage(2, 9))
        assert duel_state.participants[2].hp == -8

    def test_negative_damage_rejected(self, duel_state):
        with pytest.raises(IllegalTransitionError):
            duel_state.apply(Damage(2, -1))

    def test_heal_capped_at_max(self, duel_state):
        duel_state.apply(Damage(1, 5))
        duel_state.apply(Heal(1, 50))
        assert duel_state.participants[1].hp == 20

    def test_status_and_condition(self, duel_state):
        duel_state.apply(StatusChange(2, UNCONSCIOUS))
        assert not duel_state.participants[2].is_alive()
        duel_state.apply(ConditionChange(1, "dodging", True))
        assert duel_state.participants[1].has_condition("dodging")
        duel_state.apply(ConditionChange(1, "dodging", False))
        assert not duel_state.participants[1].has_condition("dodging")

    def test_unknown_participant(self, duel_state):
        with pytest.raises(IllegalTransitionError):
            duel_state.apply(Damage(99, 1))

    def test_end_combat_only_once(self, duel_state):
        duel_state.apply(EndCombat(0))
        assert duel_state.over and duel_state.winner == 0
        with pytest.raises(IllegalTransitionError):
            duel_state.apply(EndCombat(1))

    @pytest.mark.parametrize("transition", [
        Initiative(((1, 3), (2, 9))), RoundStart(1), TurnStart(2, 0), TurnEnd(2), RoundEnd(1),
        EconomyUsed(1, "reaction"), Damage(2, 4), Heal(1, 2), StatusChange(2, DEAD),
        ConditionChange(1, "prone", True), EndCombat(None, "round_limit"),
    ])
    def test_dict_round_trip(self, transition):
        assert transition_from_dict(transition.to_dict()) == transition

    def test_unknown_kind_rejected(self):
        with pytest.raises(IllegalTransitionError):
            transition_from_dict({"entry": "transition", "kind": "teleport"})


class TestTransitionLog:
    def _log(self):
        log = TransitionLog()
        log.append(Initiative(((1, 10), (2, 4))))
        log.append(Extra("roll", {"purpose": "attack", "total": 17}))
        log.append(RoundStart(1))
        log.append(Damage(2, 3))
        return log

    def test_append_only_accepts_entries(self):
        with pytest.raises(TypeError):
            TransitionLog().append("damage")

    def test_transitions_and_extras(self):
        log = self._log()
        assert len(log) == 4
        assert [t.kind for t in log.transitions()] == ["initiative", "round_start", "damage"]
        assert [e.kind for e in log.extras()] == ["roll"]
        assert log.of_kind("damage") == [Damage(2, 3)]

    def test_dumps_is_canonical(self):
        assert self._log().dumps() == self._log().dumps()
        assert isinstance(self._log().dumps(), bytes)

    def test_save_and_load(self, tmp_path):
        log = self._log()
        path = tmp_path / "trial.json"
        log.save(path)
        assert TransitionLog.load(path) == log

    def test_entry_from_dict(self):
        extra = Extra("attack_hit", {"attacker": 1, "target": 2})
        assert entry_from_dict(extra.to_dict()) == extra

    def test_debug_echo(self, duel_state, caplog):
        log = TransitionLog()
        with caplog.at_level(logging.DEBUG, logger="sim.transitions"):
            log.append(Damage(2, 3), duel_state)
            log.append(TurnEnd(1), duel_state)
        assert "Goblin takes 3 damage" in caplog.text
        # turn ends are quiet
        assert "ends their turn" not in caplog.text


class TestReplay:
    def test_replay_reaches_same_state(self, duel_state):
        log = TransitionLog([
            Initiative(((1, 10), (2, 4))), RoundStart(1), TurnStart(1, 0),
            EconomyUsed(1, "action"), Extra("action", {"type": "attack"}),
            Damage(2, 5), StatusChange(2, UNCONSCIOUS), TurnEnd(1), RoundEnd(1), EndCombat(0),
        ])
        states = [state.copy() for state, _ in replay(duel_state, log)]
        assert len(states) == 9
        final = states[-1]
        assert final.over and final.winner == 0
        assert final.participants[2].hp == -4
        # the initial state is untouched
        assert duel_state.participants[2].hp == 1
