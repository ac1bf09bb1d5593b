"""
Encounter State Container.

This module defines the mutable snapshot of an encounter: participants,
item registry, initiative order and round/turn counters. Once an encounter
has started the state is only changed through ``EncounterState.apply``.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Any, Iterable, Optional, Union
import hashlib
import json

from sim.dice import RollSpec, parse_roll
from sim.errors import IllegalActionError, IllegalTransitionError, InvalidSpecError


ABILITIES = ("STR", "DEX", "CON", "INT", "WIS", "CHA")

# Economy slots
ACTION = "action"
BONUS_ACTION = "bonus_action"
REACTION = "reaction"
MOVEMENT = "movement"
ECONOMY_SLOTS = (ACTION, BONUS_ACTION, REACTION, MOVEMENT)

# Participant status
ALIVE = "alive"
UNCONSCIOUS = "unconscious"
DEAD = "dead"
STATUSES = (ALIVE, UNCONSCIOUS, DEAD)


def default_abilities() -> Dict[str, int]:
    return {name: 10 for name in ABILITIES}


def ability_modifier(score: int) -> int:
    return (score - 10) // 2


@dataclass
class ActionEconomy:
    """Per-round allotment of economy slots."""
    action: bool = True
    bonus_action: bool = True
    reaction: bool = True
    movement: bool = True

    def has(self, slot: str) -> bool:
        if slot not in ECONOMY_SLOTS:
            raise IllegalActionError(f"unknown economy slot {slot!r}")
        return getattr(self, slot)

    def spend(self, slot: str) -> None:
        if not self.has(slot):
            raise IllegalActionError(f"{slot} already used this round")
        setattr(self, slot, False)

    def reset(self):
        """Reset for a new round."""
        self.action = True
        self.bonus_action = True
        self.reaction = True
        self.movement = True

    def to_dict(self) -> Dict:
        return {
            "action": self.action,
            "bonus_action": self.bonus_action,
            "reaction": self.reaction,
            "movement": self.movement,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "ActionEconomy":
        return cls(
            action=d.get("action", True),
            bonus_action=d.get("bonus_action", True),
            reaction=d.get("reaction", True),
            movement=d.get("movement", True),
        )


@dataclass(frozen=True)
class Item:
    """Weapon or other item owned by the encounter's registry."""
    id: int
    name: str
    damage: RollSpec
    critical_damage: Optional[RollSpec] = None
    attack_bonus: int = 0

    def damage_spec(self, critical: bool) -> RollSpec:
        """Damage to roll; a critical without a dedicated spec doubles the dice."""
        if not critical:
            return self.damage
        if self.critical_damage is not None:
            return self.critical_damage
        return self.damage.with_count(self.damage.count * 2)

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "damage": self.damage.to_dict(),
            "critical_damage": self.critical_damage.to_dict() if self.critical_damage else None,
            "attack_bonus": self.attack_bonus,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "Item":
        crit = d.get("critical_damage")
        return cls(
            id=int(d["id"]),
            name=d.get("name", "Item"),
            damage=RollSpec.from_dict(d["damage"]),
            critical_damage=RollSpec.from_dict(crit) if crit else None,
            attack_bonus=int(d.get("attack_bonus", 0)),
        )


@dataclass
class Participant:
    """A combatant. Death is a status, never removal."""
    id: int = 0
    name: str = "Participant"
    group: int = 0
    abilities: Dict[str, int] = field(default_factory=default_abilities)
    armor_class: int = 10
    max_hp: int = 10
    hp: int = 10
    level: int = 1
    economy: ActionEconomy = field(default_factory=ActionEconomy)
    inventory: List[int] = field(default_factory=list)
    conditions: List[str] = field(default_factory=list)
    status: str = ALIVE
    initiative: Optional[int] = None

    def is_alive(self) -> bool:
        return self.status == ALIVE

    def modifier(self, ability: str) -> int:
        return ability_modifier(self.abilities.get(ability, 10))

    def proficiency_bonus(self) -> int:
        return 2 + (max(self.level, 1) - 1) // 4

    def has_condition(self, condition: str) -> bool:
        return condition in self.conditions

    def attack_modifier(self, item: Item) -> int:
        return item.attack_bonus + self.proficiency_bonus()

    def initiative_spec(self) -> RollSpec:
        return RollSpec(count=1, size=20, modifier=self.modifier("DEX"))

    def status_for_hp(self, hp: int) -> str:
        """Status implied by a vitality value."""
        if hp <= -self.max_hp:
            return DEAD
        if hp <= 0:
            return UNCONSCIOUS
        return ALIVE

    def to_dict(self) -> Dict:
        return {
            "id": self.id,
            "name": self.name,
            "group": self.group,
            "abilities": dict(sorted(self.abilities.items())),
            "armor_class": self.armor_class,
            "max_hp": self.max_hp,
            "hp": self.hp,
            "level": self.level,
            "economy": self.economy.to_dict(),
            "inventory": list(self.inventory),
            "conditions": sorted(self.conditions),
            "status": self.status,
            "initiative": self.initiative,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "Participant":
        return cls(
            id=int(d.get("id", 0)),
            name=d.get("name", "Participant"),
            group=int(d.get("group", 0)),
            abilities={**default_abilities(), **d.get("abilities", {})},
            armor_class=int(d.get("armor_class", 10)),
            max_hp=int(d.get("max_hp", d.get("hp", 10))),
            hp=int(d.get("hp", d.get("max_hp", 10))),
            level=int(d.get("level", 1)),
            economy=ActionEconomy.from_dict(d.get("economy", {})),
            inventory=[int(i) for i in d.get("inventory", [])],
            conditions=sorted(d.get("conditions", [])),
            status=d.get("status", ALIVE),
            initiative=d.get("initiative"),
        )


class ParticipantBuilder:
    """Builder-style construction of a participant before the encounter starts."""

    def __init__(self, name: str):
        self._participant = Participant(name=name)

    def group(self, group: int) -> "ParticipantBuilder":
        self._participant.group = group
        return self

    def ability(self, ability: str, score: int) -> "ParticipantBuilder":
        if ability not in ABILITIES:
            raise InvalidSpecError(f"unknown ability {ability!r}")
        self._participant.abilities[ability] = score
        return self

    def abilities(self, **scores: int) -> "ParticipantBuilder":
        for ability, score in scores.items():
            self.ability(ability, score)
        return self

    def armor_class(self, armor_class: int) -> "ParticipantBuilder":
        self._participant.armor_class = armor_class
        return self

    def max_hp(self, max_hp: int) -> "ParticipantBuilder":
        if max_hp < 1:
            raise InvalidSpecError(f"max_hp must be positive, got {max_hp}")
        self._participant.max_hp = max_hp
        self._participant.hp = max_hp  # start at full health
        return self

    def hp(self, hp: int) -> "ParticipantBuilder":
        self._participant.hp = hp
        return self

    def level(self, level: int) -> "ParticipantBuilder":
        self._participant.level = level
        return self

    def item(self, item_id: int) -> "ParticipantBuilder":
        self._participant.inventory.append(item_id)
        return self

    def condition(self, condition: str) -> "ParticipantBuilder":
        if condition not in self._participant.conditions:
            self._participant.conditions.append(condition)
        return self

    def build(self) -> Participant:
        p = Participant.from_dict(self._participant.to_dict())
        p.status = p.status_for_hp(p.hp)
        return p


class EncounterState:
    """Complete encounter state for simulation."""

    def __init__(self):
        self.participants: Dict[int, Participant] = {}
        self.items: Dict[int, Item] = {}
        self.initiative_order: List[int] = []
        self.round: int = 0
        self.turn_index: int = -1
        self.active: Optional[int] = None
        self.over: bool = False
        self.winner: Optional[int] = None

    # -- construction -------------------------------------------------------

    @property
    def started(self) -> bool:
        return bool(self.initiative_order) or self.round > 0 or self.over

    def _require_setup(self):
        if self.started:
            raise InvalidSpecError("encounter already started; use transitions to change it")

    def add_item(
        self,
        name: str,
        damage: Union[str, RollSpec],
        critical_damage: Union[str, RollSpec, None] = None,
        attack_bonus: int = 0,
    ) -> int:
        """Register an item and return its identifier."""
        self._require_setup()
        item_id = max(self.items, default=0) + 1
        if isinstance(damage, str):
            damage = parse_roll(damage)
        if isinstance(critical_damage, str):
            critical_damage = parse_roll(critical_damage)
        self.items[item_id] = Item(item_id, name, damage, critical_damage, attack_bonus)
        return item_id

    def add_participant(self, participant: Participant) -> int:
        """Add a participant, assigning the next identifier."""
        self._require_setup()
        for item_id in participant.inventory:
            if item_id not in self.items:
                raise InvalidSpecError(f"{participant.name} references unknown item {item_id}")
        participant_id = max(self.participants, default=0) + 1
        participant.id = participant_id
        self.participants[participant_id] = participant
        return participant_id

    # -- queries ------------------------------------------------------------

    def get(self, participant_id: int) -> Optional[Participant]:
        return self.participants.get(participant_id)

    def require(self, participant_id: int) -> Participant:
        p = self.participants.get(participant_id)
        if p is None:
            raise IllegalTransitionError(f"unknown participant {participant_id}")
        return p

    def ordered(self) -> List[Participant]:
        """Participants in identifier order."""
        return [self.participants[k] for k in sorted(self.participants)]

    def living(self) -> List[Participant]:
        return [p for p in self.ordered() if p.is_alive()]

    def living_groups(self) -> List[int]:
        return sorted({p.group for p in self.living()})

    def allies_of(self, participant_id: int) -> List[int]:
        me = self.require(participant_id)
        return [p.id for p in self.ordered() if p.group == me.group and p.id != participant_id]

    def enemies_of(self, participant_id: int) -> List[int]:
        me = self.require(participant_id)
        return [p.id for p in self.ordered() if p.group != me.group]

    def living_enemies_of(self, participant_id: int) -> List[int]:
        return [pid for pid in self.enemies_of(participant_id) if self.participants[pid].is_alive()]

    def is_combat_over(self) -> bool:
        """Over when living participants span at most one group."""
        return len(self.living_groups()) <= 1

    def get_winner(self) -> Optional[int]:
        """Group of the last living side, or None while undecided or if nobody survives."""
        groups = self.living_groups()
        if len(groups) == 1 and self.is_combat_over():
            return groups[0]
        return None

    def current_participant(self) -> Optional[Participant]:
        if self.active is None:
            return None
        return self.participants.get(self.active)

    # -- mutation -----------------------------------------------------------

    def apply(self, transition) -> None:
        """Apply one transition. The only sanctioned mutation path."""
        transition.apply(self)

    # -- serialisation ------------------------------------------------------

    def to_dict(self) -> Dict:
        return {
            "participants": [p.to_dict() for p in self.ordered()],
            "items": [self.items[k].to_dict() for k in sorted(self.items)],
            "initiative_order": list(self.initiative_order),
            "round": self.round,
            "turn_index": self.turn_index,
            "active": self.active,
            "over": self.over,
            "winner": self.winner,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "EncounterState":
        state = cls()
        for item_d in sorted(d.get("items", []), key=lambda i: int(i["id"])):
            item = Item.from_dict(item_d)
            state.items[item.id] = item
        for p_d in sorted(d.get("participants", []), key=lambda p: int(p["id"])):
            p = Participant.from_dict(p_d)
            state.participants[p.id] = p
        state.initiative_order = [int(i) for i in d.get("initiative_order", [])]
        state.round = int(d.get("round", 0))
        state.turn_index = int(d.get("turn_index", -1))
        state.active = d.get("active")
        state.over = bool(d.get("over", False))
        state.winner = d.get("winner")
        return state

    def copy(self) -> "EncounterState":
        """Create a deep copy of the state."""
        return EncounterState.from_dict(self.to_dict())

    def fingerprint(self) -> str:
        """Stable digest of everything transitions can change."""
        payload = {
            "participants": [
                [p.id, p.hp, p.status, sorted(p.conditions), p.initiative,
                 p.economy.action, p.economy.bonus_action, p.economy.reaction, p.economy.movement]
                for p in self.ordered()
            ],
            "initiative_order": self.initiative_order,
            "round": self.round,
            "turn_index": self.turn_index,
            "active": self.active,
            "over": self.over,
            "winner": self.winner,
        }
        encoded = json.dumps(payload, separators=(",", ":")).encode("utf-8")
        return hashlib.blake2b(encoded, digest_size=16).hexdigest()

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, EncounterState):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def describe(self) -> str:
        """Render current state as text for debugging."""
        lines = [f"=== Round {self.round} ==="]
        for p in self.ordered():
            marker = " <--" if p.id == self.active else ""
            lines.append(f"  [{p.group}] {p.name}: HP {p.hp}/{p.max_hp} [{p.status.upper()}]{marker}")
        return "\n".join(lines)


def build_encounter(participants: Iterable[Participant], items: Iterable[Dict] = ()) -> EncounterState:
    """Convenience builder: register item dicts then participants."""
    state = EncounterState()
    for item in items:
        state.add_item(**item)
    for p in participants:
        state.add_participant(p)
    return state


def create_simple_scenario(num_party: int = 2, num_enemies: int = 2) -> EncounterState:
    """
    Create a simple encounter for testing.

    Party (group 0) with longswords against goblins (group 1) with scimitars.
    """
    state = EncounterState()
    sword = state.add_item("Longsword", "1d8+3", critical_damage="2d8+3", attack_bonus=1)
    scimitar = state.add_item("Scimitar", "1d6+2", attack_bonus=2)

    for i in range(num_party):
        hero = (
            ParticipantBuilder(f"Hero {i+1}")
            .group(0)
            .abilities(STR=16, DEX=12, CON=14)
            .armor_class(16)
            .max_hp(30)
            .level(3)
            .item(sword)
            .build()
        )
        state.add_participant(hero)

    for i in range(num_enemies):
        goblin = (
            ParticipantBuilder(f"Goblin {i+1}")
            .group(1)
            .abilities(STR=8, DEX=14)
            .armor_class(15)
            .max_hp(7)
            .item(scimitar)
            .build()
        )
        state.add_participant(goblin)

    return state
