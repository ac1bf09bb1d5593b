"""Tests for the encounter state container."""

import numpy as np
import pytest

from sim.errors import IllegalActionError, InvalidSpecError
from sim.rng import Roller
from sim.state import (
    ALIVE, DEAD, UNCONSCIOUS, ActionEconomy, EncounterState, ParticipantBuilder,
    ability_modifier, build_encounter,
)
from sim.transitions import Initiative, StatusChange


class TestParticipant:
    def test_ability_modifier(self):
        assert ability_modifier(10) == 0
        assert ability_modifier(16) == 3
        assert ability_modifier(7) == -2

    def test_builder_defaults(self):
        p = ParticipantBuilder("Scout").ability("DEX", 14).max_hp(12).build()
        assert p.hp == 12
        assert p.status == ALIVE
        assert p.modifier("DEX") == 2
        assert p.initiative_spec().modifier == 2

    def test_builder_rejects_unknown_ability(self):
        with pytest.raises(InvalidSpecError):
            ParticipantBuilder("X").ability("LUCK", 12)

    def test_status_from_hp(self):
        p = ParticipantBuilder("X").max_hp(10).build()
        assert p.status_for_hp(1) == ALIVE
        assert p.status_for_hp(0) == UNCONSCIOUS
        assert p.status_for_hp(-9) == UNCONSCIOUS
        assert p.status_for_hp(-10) == DEAD

    def test_proficiency_by_level(self):
        assert ParticipantBuilder("X").level(1).build().proficiency_bonus() == 2
        assert ParticipantBuilder("X").level(5).build().proficiency_bonus() == 3
        assert ParticipantBuilder("X").level(17).build().proficiency_bonus() == 6


class TestActionEconomy:
    def test_spend_and_reset(self):
        economy = ActionEconomy()
        economy.spend("action")
        assert not economy.has("action")
        with pytest.raises(IllegalActionError):
            economy.spend("action")
        economy.reset()
        assert economy.has("action")

    def test_unknown_slot(self):
        with pytest.raises(IllegalActionError):
            ActionEconomy().has("free_action")


class TestEncounterState:
    def test_identifiers_assigned_in_order(self, simple_scenario):
        assert [p.id for p in simple_scenario.ordered()] == [1, 2, 3, 4]
        assert simple_scenario.enemies_of(1) == [3, 4]
        assert simple_scenario.allies_of(1) == [2]

    def test_iteration_follows_identifier_order(self):
        state = EncounterState.from_dict({
            "participants": [
                {"id": 3, "name": "C", "group": 1},
                {"id": 1, "name": "A", "group": 0},
                {"id": 2, "name": "B", "group": 0},
            ]
        })
        assert [p.name for p in state.ordered()] == ["A", "B", "C"]

    def test_unknown_item_rejected(self):
        state = EncounterState()
        with pytest.raises(InvalidSpecError):
            state.add_participant(ParticipantBuilder("X").item(7).build())

    def test_bad_notation_rejected(self):
        with pytest.raises(InvalidSpecError):
            EncounterState().add_item("Broken", "2q6")

    def test_setup_closed_after_start(self, duel_state):
        duel_state.apply(Initiative(((1, 10), (2, 5))))
        with pytest.raises(InvalidSpecError):
            duel_state.add_participant(ParticipantBuilder("Late").build())

    def test_copy_is_independent(self, simple_scenario):
        clone = simple_scenario.copy()
        clone.participants[1].hp = -4
        assert simple_scenario.participants[1].hp == 30
        assert clone != simple_scenario

    def test_round_trip(self, simple_scenario):
        assert EncounterState.from_dict(simple_scenario.to_dict()) == simple_scenario

    def test_fingerprint_tracks_dynamic_fields(self, simple_scenario):
        clone = simple_scenario.copy()
        assert clone.fingerprint() == simple_scenario.fingerprint()
        clone.participants[3].hp -= 1
        assert clone.fingerprint() != simple_scenario.fingerprint()

    def test_critical_damage_falls_back_to_doubled_dice(self, simple_scenario):
        scimitar = simple_scenario.items[2]
        assert scimitar.damage_spec(critical=True).count == 2
        sword = simple_scenario.items[1]
        assert sword.damage_spec(critical=True).notation() == "2d8+3"


class TestTermination:
    """Combat is over exactly when living participants span at most one group."""

    def test_randomized_groups_and_vitality(self):
        rng = np.random.default_rng(7)
        for _ in range(300):
            n = int(rng.integers(1, 7))
            groups = rng.integers(0, 3, size=n)
            hps = rng.integers(-12, 11, size=n)
            state = build_encounter([
                ParticipantBuilder(f"P{i}").group(int(g)).max_hp(10).hp(int(hp)).build()
                for i, (g, hp) in enumerate(zip(groups, hps))
            ])
            living_groups = {int(g) for g, hp in zip(groups, hps) if hp > 0}
            assert state.is_combat_over() == (len(living_groups) <= 1)
            if len(living_groups) == 1:
                assert state.get_winner() == living_groups.pop()
            elif not living_groups:
                assert state.get_winner() is None

    def test_recomputed_after_damage(self, duel_state):
        assert not duel_state.is_combat_over()
        duel_state.apply(StatusChange(2, DEAD))
        assert duel_state.is_combat_over()
        assert duel_state.get_winner() == 0


class TestRoller:
    def test_children_are_order_stable(self):
        c = Roller(seed=11).spawn(3)[2]
        d = Roller(seed=11).child(2)
        assert [c.die(100) for _ in range(10)] == [d.die(100) for _ in range(10)]

    def test_forks_differ(self):
        root = Roller(seed=5)
        first, second = root.fork(), root.fork()
        assert [first.die(1000) for _ in range(5)] != [second.die(1000) for _ in range(5)]

    def test_die_range(self):
        roller = Roller(seed=0)
        faces = {roller.die(4) for _ in range(500)}
        assert faces == {1, 2, 3, 4}

    def test_choice_validates_weights(self):
        roller = Roller(seed=0)
        assert roller.choice(["a", "b"], [0, 1]) == "b"
        with pytest.raises(ValueError):
            roller.choice([])
        with pytest.raises(ValueError):
            roller.choice(["a"], [0])
