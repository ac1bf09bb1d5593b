"""Tests for the encounter executor state machine."""

import json

import pytest

from ai.logger import DecisionLogger
from ai.policy import DecisionPolicy, PolicyTable, RandomPolicy, WaitPolicy
from ai.policy_heuristic import HeuristicPolicy
from ai.schema import dodge, unarmed_strike, wait
from sim import config
from sim.errors import IllegalActionError, IllegalTransitionError, InvalidTargetError
from sim.executor import (
    EncounterExecutor, INITIATIVE_ROLLED, RESOLVED, ROUND_COMPLETE, TURN_ACTIVE, TURN_COMPLETE,
)
from sim.rng import Roller
from sim.state import EncounterState, ParticipantBuilder
from sim.transitions import (
    ConditionChange, EndCombat, Extra, Initiative, StatusChange, TurnStart, replay,
)


class DodgePolicy(DecisionPolicy):
    def decide(self, state, actor_id, slot, roller):
        return dodge(actor_id, slot)


class SelfHarmPolicy(DecisionPolicy):
    """Always tries to punch itself."""

    def decide(self, state, actor_id, slot, roller):
        return unarmed_strike(actor_id, actor_id, slot)


class MeddlingPolicy(DecisionPolicy):
    """Edits the state it is shown, then waits."""

    def decide(self, state, actor_id, slot, roller):
        for p in state.participants.values():
            if p.id != actor_id:
                p.hp = -100
                p.status = "dead"
        return wait(actor_id, slot)


def transition_kinds(log):
    return [t.kind for t in log.transitions()]


class TestDuel:
    """Hero wins initiative 15 to 5, then a 14 hits AC 12 and a 3 kills the goblin."""

    def test_log_sequence(self, duel_state, loaded):
        roller = loaded([15, 5, 14, 3])
        log = EncounterExecutor(duel_state, HeuristicPolicy(), roller).run()

        assert transition_kinds(log) == [
            "initiative", "round_start", "turn_start", "economy_used", "damage",
            "status_change", "turn_end", "round_end", "end_combat",
        ]
        assert log.of_kind("initiative") == [Initiative(((1, 15), (2, 5)))]
        assert log.of_kind("status_change") == [StatusChange(2, "dead")]
        assert log.of_kind("end_combat") == [EndCombat(0)]
        assert roller.exhausted

    def test_final_state(self, duel_state, loaded):
        executor = EncounterExecutor(duel_state, HeuristicPolicy(), loaded([15, 5, 14, 3]))
        executor.run()
        assert executor.resolved
        assert executor.state.round == 1
        assert executor.state.winner == 0
        # the caller's state is untouched
        assert not duel_state.started
        assert duel_state.participants[2].hp == 1

    def test_phase_progression(self, duel_state, loaded):
        executor = EncounterExecutor(duel_state, HeuristicPolicy(), loaded([15, 5, 14, 3]))
        phases = []
        while not executor.resolved:
            phases.append(executor.step())
        assert phases == [INITIATIVE_ROLLED, TURN_ACTIVE, TURN_COMPLETE, ROUND_COMPLETE, RESOLVED]
        with pytest.raises(IllegalTransitionError):
            executor.step()

    def test_initiative_rolls_are_logged(self, duel_state, loaded):
        log = EncounterExecutor(duel_state, HeuristicPolicy(), loaded([15, 5, 14, 3])).run()
        rolls = [e for e in log.extras("roll") if e.data["purpose"] == "initiative"]
        assert [(e.data["actor"], e.data["total"]) for e in rolls] == [(1, 15), (2, 5)]


class TestExecutor:
    def test_same_seed_same_log(self, simple_scenario):
        first = EncounterExecutor(simple_scenario, RandomPolicy(), Roller(seed=17)).run()
        second = EncounterExecutor(simple_scenario, RandomPolicy(), Roller(seed=17)).run()
        assert first.dumps() == second.dumps()

    def test_started_state_rejected(self, duel_state):
        duel_state.apply(Initiative(((1, 3), (2, 4))))
        with pytest.raises(IllegalTransitionError):
            EncounterExecutor(duel_state, WaitPolicy(), Roller(seed=0))

    def test_max_rounds_must_be_positive(self, duel_state):
        with pytest.raises(ValueError):
            EncounterExecutor(duel_state, WaitPolicy(), Roller(seed=0), max_rounds=0)

    def test_round_limit_ends_without_winner(self, duel_state):
        executor = EncounterExecutor(duel_state, WaitPolicy(), Roller(seed=1), max_rounds=3)
        log = executor.run()
        assert executor.state.round == 3
        assert executor.state.winner is None
        assert log.extras("round_limit")[0].data == {"round": 3, "max_rounds": 3}
        assert log[-1] == EndCombat(None, "round_limit")

    def test_dodge_expires_at_next_own_turn(self, duel_state, loaded):
        executor = EncounterExecutor(duel_state, DodgePolicy(), loaded([15, 5]), max_rounds=2)
        log = executor.run()
        entries = list(log)
        second_turn = entries.index(TurnStart(1, 0), entries.index(TurnStart(1, 0)) + 1)
        assert entries[second_turn + 1] == ConditionChange(1, "dodging", False)
        # both slots are spent by both participants in both rounds
        assert len(log.of_kind("economy_used")) == 8

    def test_dead_participants_are_skipped(self, loaded):
        state = EncounterState()
        sword = state.add_item("Longsword", "1d8+3")
        state.add_participant(ParticipantBuilder("Hero").group(0).max_hp(20).item(sword).build())
        state.add_participant(ParticipantBuilder("Goblin").group(1).armor_class(12).max_hp(1).build())
        state.add_participant(ParticipantBuilder("Ghoul").group(1).max_hp(10).hp(-20).build())

        log = EncounterExecutor(state, HeuristicPolicy(), loaded([15, 5, 20, 14, 3])).run()
        turns = log.of_kind("turn_start")
        assert turns == [TurnStart(1, 1)]
        assert log[-1] == EndCombat(0)

    def test_illegal_action_carries_context(self, duel_state):
        executor = EncounterExecutor(duel_state, SelfHarmPolicy(), Roller(seed=3))
        with pytest.raises(IllegalActionError) as excinfo:
            executor.run()
        assert isinstance(excinfo.value, InvalidTargetError)
        assert excinfo.value.context["round"] == 1
        assert excinfo.value.context["slot"] == "action"
        assert executor.failed_entry["entry"] == "action"

    def test_policy_table_routes_by_group(self, duel_state, loaded):
        policy = PolicyTable(WaitPolicy(), by_group={0: HeuristicPolicy()})
        log = EncounterExecutor(duel_state, policy, loaded([5, 15, 14, 3])).run()
        # goblin acts first and waits; waiting spends nothing
        actions = [e.data for e in log.extras("action")]
        assert actions[0]["actor"] == 2 and actions[0]["type"] == "wait"
        assert log[-1] == EndCombat(0)

    def test_decision_log(self, duel_state, loaded, tmp_path):
        decisions = DecisionLogger(log_dir=str(tmp_path))
        decisions.start_trial(0, seed=1, trial_id="duel")
        EncounterExecutor(
            duel_state, HeuristicPolicy(), loaded([15, 5, 14, 3]), decision_logger=decisions
        ).run()
        lines = (tmp_path / "decisions_duel.jsonl").read_text().splitlines()
        # bonus action is never offered once the goblin is down
        assert len(lines) == 1
        assert json.loads(lines[0])["action"]["type"] == "attack"

    def test_wait_is_quiet_extra(self, duel_state):
        log = EncounterExecutor(duel_state, WaitPolicy(), Roller(seed=1), max_rounds=1).run()
        waits = [e for e in log.extras("action") if e.data["type"] == "wait"]
        assert waits and all(e.quiet for e in waits)
        assert isinstance(waits[0], Extra)

    def test_policy_cannot_mutate_executor_state(self, duel_state):
        executor = EncounterExecutor(duel_state, MeddlingPolicy(), Roller(seed=4), max_rounds=2)
        log = executor.run()

        goblin = executor.state.participants[2]
        assert (goblin.hp, goblin.status) == (1, "alive")
        assert executor.state.winner is None
        assert log.of_kind("damage") == []

        final = duel_state
        for final, _ in replay(duel_state, log):
            pass
        assert final.to_dict() == executor.state.to_dict()

    def test_turn_slots_come_from_config(self, duel_state):
        assert EncounterExecutor(duel_state, WaitPolicy(), Roller(seed=0)).turn_slots == config.DEFAULT_TURN_SLOTS
        custom = EncounterExecutor(duel_state, WaitPolicy(), Roller(seed=0), turn_slots=["action"])
        assert custom.turn_slots == ("action",)
