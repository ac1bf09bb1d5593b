"""
Transitions and the Transition Log.

A transition is a single, atomic, deterministic change to an encounter
state. Transitions carry no randomness: dice are rolled by the resolver and
the executor, and only their consequences are recorded here. The log is the
ordered, replayable record of one trial.
"""

from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, Iterator, List, Optional, Tuple, Union
import json
import logging
from pathlib import Path

from sim.errors import IllegalActionError, IllegalTransitionError
from sim.state import ECONOMY_SLOTS, STATUSES, EncounterState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Transition:
    """Base class of the closed transition vocabulary."""
    kind: ClassVar[str] = "transition"
    quiet: ClassVar[bool] = False

    def apply(self, state: EncounterState) -> None:
        raise NotImplementedError

    def describe(self, state: EncounterState) -> str:
        return self.kind

    def to_dict(self) -> Dict:
        d = {"entry": "transition", "kind": self.kind}
        for f in fields(self):
            value = getattr(self, f.name)
            d[f.name] = [list(v) for v in value] if f.name == "rolls" else value
        return d


def _name(state: EncounterState, participant_id: int) -> str:
    p = state.get(participant_id)
    return p.name if p is not None else f"<participant {participant_id}>"


@dataclass(frozen=True)
class Initiative(Transition):
    """Stores every participant's initiative and sorts the order (ties by id)."""
    kind: ClassVar[str] = "initiative"
    rolls: Tuple[Tuple[int, int], ...] = ()

    def apply(self, state: EncounterState) -> None:
        if state.initiative_order:
            raise IllegalTransitionError("initiative already rolled")
        for participant_id, value in self.rolls:
            state.require(participant_id).initiative = value
        ranked = [p for p in state.ordered() if p.initiative is not None]
        ranked.sort(key=lambda p: (-p.initiative, p.id))
        state.initiative_order = [p.id for p in ranked]

    def describe(self, state: EncounterState) -> str:
        order = sorted(self.rolls, key=lambda r: (-r[1], r[0]))
        return "Initiative: " + ", ".join(f"{_name(state, pid)} {value}" for pid, value in order)


@dataclass(frozen=True)
class RoundStart(Transition):
    """Opens a round and resets every participant's economy."""
    kind: ClassVar[str] = "round_start"
    round: int = 1

    def apply(self, state: EncounterState) -> None:
        if state.over:
            raise IllegalTransitionError("encounter already resolved")
        if self.round != state.round + 1:
            raise IllegalTransitionError(f"round {self.round} cannot follow round {state.round}")
        state.round = self.round
        state.turn_index = -1
        state.active = None
        for p in state.ordered():
            p.economy.reset()

    def describe(self, state: EncounterState) -> str:
        return f"Round {self.round} begins"


@dataclass(frozen=True)
class TurnStart(Transition):
    kind: ClassVar[str] = "turn_start"
    participant: int = 0
    index: int = 0

    def apply(self, state: EncounterState) -> None:
        if not 0 <= self.index < len(state.initiative_order):
            raise IllegalTransitionError(f"turn index {self.index} outside initiative order")
        if state.initiative_order[self.index] != self.participant:
            raise IllegalTransitionError(f"participant {self.participant} is not at index {self.index}")
        if self.index <= state.turn_index:
            raise IllegalTransitionError("turns only move forward within a round")
        state.turn_index = self.index
        state.active = self.participant

    def describe(self, state: EncounterState) -> str:
        return f"{_name(state, self.participant)} begins their turn"


@dataclass(frozen=True)
class TurnEnd(Transition):
    kind: ClassVar[str] = "turn_end"
    quiet: ClassVar[bool] = True
    participant: int = 0

    def apply(self, state: EncounterState) -> None:
        if state.active != self.participant:
            raise IllegalTransitionError(f"participant {self.participant} is not the active participant")
        state.active = None

    def describe(self, state: EncounterState) -> str:
        return f"{_name(state, self.participant)} ends their turn"


@dataclass(frozen=True)
class RoundEnd(Transition):
    kind: ClassVar[str] = "round_end"
    quiet: ClassVar[bool] = True
    round: int = 1

    def apply(self, state: EncounterState) -> None:
        if self.round != state.round:
            raise IllegalTransitionError(f"cannot close round {self.round} during round {state.round}")
        state.turn_index = len(state.initiative_order)
        state.active = None

    def describe(self, state: EncounterState) -> str:
        return f"Round {self.round} ends"


@dataclass(frozen=True)
class EconomyUsed(Transition):
    kind: ClassVar[str] = "economy_used"
    quiet: ClassVar[bool] = True
    participant: int = 0
    slot: str = "action"

    def apply(self, state: EncounterState) -> None:
        if self.slot not in ECONOMY_SLOTS:
            raise IllegalTransitionError(f"unknown economy slot {self.slot!r}")
        try:
            state.require(self.participant).economy.spend(self.slot)
        except IllegalActionError as e:
            raise IllegalTransitionError(str(e)) from e

    def describe(self, state: EncounterState) -> str:
        return f"{_name(state, self.participant)} uses their {self.slot}"


@dataclass(frozen=True)
class Damage(Transition):
    """Vitality may go negative; it is never clamped at zero."""
    kind: ClassVar[str] = "damage"
    target: int = 0
    amount: int = 0

    def apply(self, state: EncounterState) -> None:
        if self.amount < 0:
            raise IllegalTransitionError("damage amount cannot be negative")
        state.require(self.target).hp -= self.amount

    def describe(self, state: EncounterState) -> str:
        return f"{_name(state, self.target)} takes {self.amount} damage"


@dataclass(frozen=True)
class Heal(Transition):
    kind: ClassVar[str] = "heal"
    target: int = 0
    amount: int = 0

    def apply(self, state: EncounterState) -> None:
        if self.amount < 0:
            raise IllegalTransitionError("heal amount cannot be negative")
        p = state.require(self.target)
        p.hp = min(p.max_hp, p.hp + self.amount)

    def describe(self, state: EncounterState) -> str:
        return f"{_name(state, self.target)} heals {self.amount}"


@dataclass(frozen=True)
class StatusChange(Transition):
    kind: ClassVar[str] = "status_change"
    target: int = 0
    status: str = "alive"

    def apply(self, state: EncounterState) -> None:
        if self.status not in STATUSES:
            raise IllegalTransitionError(f"unknown status {self.status!r}")
        state.require(self.target).status = self.status

    def describe(self, state: EncounterState) -> str:
        return f"{_name(state, self.target)} is now {self.status}"


@dataclass(frozen=True)
class ConditionChange(Transition):
    kind: ClassVar[str] = "condition"
    target: int = 0
    condition: str = ""
    active: bool = True

    def apply(self, state: EncounterState) -> None:
        p = state.require(self.target)
        if self.active and self.condition not in p.conditions:
            p.conditions = sorted(p.conditions + [self.condition])
        elif not self.active:
            p.conditions = [c for c in p.conditions if c != self.condition]

    def describe(self, state: EncounterState) -> str:
        verb = "gains" if self.active else "loses"
        return f"{_name(state, self.target)} {verb} {self.condition}"


@dataclass(frozen=True)
class EndCombat(Transition):
    kind: ClassVar[str] = "end_combat"
    winner: Optional[int] = None
    reason: str = "resolved"

    def apply(self, state: EncounterState) -> None:
        if state.over:
            raise IllegalTransitionError("encounter already resolved")
        state.over = True
        state.winner = self.winner
        state.active = None

    def describe(self, state: EncounterState) -> str:
        if self.winner is None:
            return f"Combat ends without a winner ({self.reason})"
        return f"Combat ends: group {self.winner} wins"


TRANSITION_TYPES: Dict[str, type] = {
    cls.kind: cls
    for cls in (Initiative, RoundStart, TurnStart, TurnEnd, RoundEnd,
                EconomyUsed, Damage, Heal, StatusChange, ConditionChange, EndCombat)
}


@dataclass(frozen=True)
class Extra:
    """Diagnostic annotation; never replayed."""
    kind: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def quiet(self) -> bool:
        return self.kind == "action" and self.data.get("type") == "wait"

    def describe(self, state: EncounterState) -> str:
        d = self.data
        if self.kind == "roll":
            return f"{d.get('purpose', 'roll')}: {d.get('spec')} -> {d.get('values')} = {d.get('total')}" + (
                f" (critical {d['critical']})" if d.get("critical") else "")
        if self.kind == "action":
            return f"{_name(state, d.get('actor'))} takes action {d.get('type')} ({d.get('slot')})"
        if self.kind in ("attack_hit", "attack_miss"):
            verb = "hits" if self.kind == "attack_hit" else "misses"
            return f"{_name(state, d.get('attacker'))} {verb} {_name(state, d.get('target'))}"
        return f"{self.kind}: {d}"

    def to_dict(self) -> Dict:
        return {"entry": "extra", "kind": self.kind, "data": self.data}


LogEntry = Union[Transition, Extra]


def transition_from_dict(d: Dict) -> Transition:
    cls = TRANSITION_TYPES.get(d.get("kind"))
    if cls is None:
        raise IllegalTransitionError(f"unknown transition kind {d.get('kind')!r}")
    kwargs = {f.name: d[f.name] for f in fields(cls) if f.name in d}
    if "rolls" in kwargs:
        kwargs["rolls"] = tuple((int(pid), int(value)) for pid, value in kwargs["rolls"])
    return cls(**kwargs)


def entry_from_dict(d: Dict) -> LogEntry:
    if d.get("entry") == "extra":
        return Extra(kind=d["kind"], data=dict(d.get("data", {})))
    return transition_from_dict(d)


class TransitionLog:
    """Append-only, ordered sequence of log entries for one trial."""

    def __init__(self, entries: Optional[List[LogEntry]] = None):
        self._entries: List[LogEntry] = list(entries or [])

    def append(self, entry: LogEntry, state: Optional[EncounterState] = None) -> None:
        if not isinstance(entry, (Transition, Extra)):
            raise TypeError(f"not a log entry: {entry!r}")
        if state is not None and not entry.quiet and logger.isEnabledFor(logging.DEBUG):
            logger.debug(entry.describe(state))
        self._entries.append(entry)

    def extend(self, entries, state: Optional[EncounterState] = None) -> None:
        for entry in entries:
            self.append(entry, state)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __getitem__(self, index):
        return self._entries[index]

    def __eq__(self, other: Any) -> bool:
        if not isinstance(other, TransitionLog):
            return NotImplemented
        return self._entries == other._entries

    def transitions(self) -> List[Transition]:
        return [e for e in self._entries if isinstance(e, Transition)]

    def extras(self, kind: Optional[str] = None) -> List[Extra]:
        return [e for e in self._entries if isinstance(e, Extra) and (kind is None or e.kind == kind)]

    def of_kind(self, kind: str) -> List[Transition]:
        return [t for t in self.transitions() if t.kind == kind]

    def to_dicts(self) -> List[Dict]:
        return [e.to_dict() for e in self._entries]

    @classmethod
    def from_dicts(cls, entries: List[Dict]) -> "TransitionLog":
        return cls([entry_from_dict(d) for d in entries])

    def dumps(self) -> bytes:
        """Canonical byte encoding; identical runs produce identical bytes."""
        return json.dumps(self.to_dicts(), sort_keys=True, separators=(",", ":")).encode("utf-8")

    def save(self, path: Union[str, Path]) -> None:
        with open(path, "w") as f:
            json.dump(self.to_dicts(), f, indent=2, sort_keys=True)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "TransitionLog":
        with open(path, "r") as f:
            return cls.from_dicts(json.load(f))


def replay(initial_state: EncounterState, entries) -> Iterator[Tuple[EncounterState, Transition]]:
    """
    Re-apply the transitions of a log to a copy of ``initial_state``.

    Yields ``(state, transition)`` after each transition is applied. The
    same working state object is yielded each time; copy it to keep it.
    """
    state = initial_state.copy()
    for entry in entries:
        if isinstance(entry, Transition):
            state.apply(entry)
            yield state, entry
