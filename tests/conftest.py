"""Pytest configuration and fixtures."""

import pytest

from sim.state import EncounterState, ParticipantBuilder, create_simple_scenario


class LoadedRoller:
    """Randomness stream that replays fixed faces, for forcing exact outcomes."""

    def __init__(self, faces, choices=None):
        self.faces = list(faces)
        self.choices = list(choices or [])
        self.sizes = []

    def die(self, size):
        if not self.faces:
            raise IndexError("loaded roller ran out of faces")
        face = self.faces.pop(0)
        if not 1 <= face <= size:
            raise ValueError(f"loaded face {face} does not fit a d{size}")
        self.sizes.append(size)
        return face

    def choice(self, items, weights=None):
        if self.choices:
            return items[self.choices.pop(0)]
        return items[0]

    @property
    def exhausted(self):
        return not self.faces


@pytest.fixture
def loaded():
    """Factory for loaded rollers."""
    return LoadedRoller


def build_duel(hero_hp=20, goblin_hp=1, goblin_ac=12):
    """One hero with a longsword (group 0) against one goblin (group 1)."""
    state = EncounterState()
    sword = state.add_item("Longsword", "1d8+3")
    state.add_participant(
        ParticipantBuilder("Hero").group(0).ability("STR", 16).max_hp(hero_hp).item(sword).build()
    )
    state.add_participant(
        ParticipantBuilder("Goblin").group(1).armor_class(goblin_ac).max_hp(goblin_hp).build()
    )
    return state


@pytest.fixture
def duel_state():
    """Hero (id 1, 20 hp) vs goblin (id 2, 1 hp, AC 12)."""
    return build_duel()


@pytest.fixture
def simple_scenario():
    """Two heroes against two goblins."""
    return create_simple_scenario(num_party=2, num_enemies=2)
