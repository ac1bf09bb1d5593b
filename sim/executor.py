"""
Encounter Executor.

Runs one encounter as an explicit state machine:

    NOT_STARTED -> INITIATIVE_ROLLED -> (TURN_ACTIVE <-> TURN_COMPLETE)
        -> ROUND_COMPLETE -> (next round | RESOLVED)

Every change to the encounter goes through a transition that is applied
to the executor's private state and appended to its log.
"""

import logging
from typing import Iterable, List, Optional, Sequence

from sim import config
from sim.dice import roll
from sim.errors import IllegalActionError, IllegalTransitionError
from sim.mechanics import resolve_action
from sim.state import EncounterState
from sim.transitions import (
    ConditionChange, EndCombat, Extra, Initiative, LogEntry, RoundEnd,
    RoundStart, Transition, TransitionLog, TurnEnd, TurnStart,
)
from ai.schema import DODGING

logger = logging.getLogger(__name__)

# Executor phases
NOT_STARTED = "not_started"
INITIATIVE_ROLLED = "initiative_rolled"
TURN_ACTIVE = "turn_active"
TURN_COMPLETE = "turn_complete"
ROUND_COMPLETE = "round_complete"
RESOLVED = "resolved"

PHASES = (NOT_STARTED, INITIATIVE_ROLLED, TURN_ACTIVE, TURN_COMPLETE, ROUND_COMPLETE, RESOLVED)


class EncounterExecutor:
    """
    Orchestrates one full encounter.

    The executor owns a copy of the initial state; the caller's state is
    never touched.
    """

    def __init__(
        self,
        initial_state: EncounterState,
        policy,
        roller,
        max_rounds: int = None,
        decision_logger=None,
        turn_slots: Sequence[str] = None
    ):
        """
        Initialize executor.

        Args:
            initial_state: Encounter before initiative
            policy: DecisionPolicy consulted once per slot per turn
            roller: Randomness stream owned by this encounter
            max_rounds: Rounds after which a stalled encounter ends without a winner
            decision_logger: Optional DecisionLogger
            turn_slots: Economy slots offered each turn
        """
        if initial_state.started:
            raise IllegalTransitionError("executor needs an encounter that has not started")

        self.state = initial_state.copy()
        self.policy = policy
        self.roller = roller
        self.max_rounds = config.DEFAULT_MAX_ROUNDS if max_rounds is None else max_rounds
        self.decision_logger = decision_logger
        self.turn_slots = tuple(turn_slots or config.DEFAULT_TURN_SLOTS)

        self.phase = NOT_STARTED
        self.log = TransitionLog()
        self.failed_entry: Optional[dict] = None

        if self.max_rounds < 1:
            raise ValueError("max_rounds must be at least 1")

    # -- public -------------------------------------------------------------

    @property
    def resolved(self) -> bool:
        return self.phase == RESOLVED

    def step(self) -> str:
        """Perform one state-machine transition and return the new phase."""
        if self.phase == NOT_STARTED:
            self._roll_initiative()
        elif self.phase in (INITIATIVE_ROLLED, ROUND_COMPLETE):
            self._open_round()
        elif self.phase == TURN_ACTIVE:
            self._take_turn()
        elif self.phase == TURN_COMPLETE:
            self._after_turn()
        else:
            raise IllegalTransitionError("encounter already resolved")
        return self.phase

    def run(self) -> TransitionLog:
        """Step until resolved and return the log."""
        while self.phase != RESOLVED:
            self.step()
        return self.log

    # -- phases -------------------------------------------------------------

    def _roll_initiative(self):
        rolls = []
        for p in self.state.ordered():
            result = roll(p.initiative_spec(), self.roller)
            self._record([Extra("roll", {"purpose": "initiative", "actor": p.id, **result.to_dict()})])
            rolls.append((p.id, result.total))
        self._record([Initiative(tuple(rolls))])
        self.phase = INITIATIVE_ROLLED

    def _open_round(self):
        if self.state.is_combat_over():
            self._resolve(self.state.get_winner())
            return
        if self.state.round >= self.max_rounds:
            logger.info("Encounter stalled after %d rounds", self.state.round)
            self._record([Extra("round_limit", {"round": self.state.round, "max_rounds": self.max_rounds})])
            self._resolve(None, reason="round_limit")
            return
        self._record([RoundStart(self.state.round + 1)])
        self._begin_next_turn()

    def _begin_next_turn(self):
        """Start the next living participant's turn, or close the round."""
        order = self.state.initiative_order
        for index in range(self.state.turn_index + 1, len(order)):
            participant = self.state.participants[order[index]]
            if not participant.is_alive():
                continue
            entries: List[LogEntry] = [TurnStart(participant.id, index)]
            # dodging lasts until the start of the dodger's next turn
            if participant.has_condition(DODGING):
                entries.append(ConditionChange(participant.id, DODGING, False))
            self._record(entries)
            self.phase = TURN_ACTIVE
            return

        self._record([RoundEnd(self.state.round)])
        self.phase = ROUND_COMPLETE

    def _take_turn(self):
        actor_id = self.state.active
        for slot in self.turn_slots:
            if self.state.is_combat_over() or not self.state.participants[actor_id].is_alive():
                break
            # policies and the decision log only ever see a copy
            view = self.state.copy()
            action = self.policy.decide(view, actor_id, slot, self.roller)
            if self.decision_logger is not None:
                self.decision_logger.log_decision(view, actor_id, slot, action)
            try:
                entries = resolve_action(self.state, action, self.roller)
            except IllegalActionError as e:
                self.failed_entry = {"entry": "action", **action.to_dict()}
                raise e.with_context(round=self.state.round, actor=actor_id, slot=slot, action=action.type)
            self._record(entries)

        self._record([TurnEnd(actor_id)])
        self.phase = TURN_COMPLETE

    def _after_turn(self):
        if self.state.is_combat_over():
            # close the round early; the next step resolves
            self._record([RoundEnd(self.state.round)])
            self.phase = ROUND_COMPLETE
            return
        self._begin_next_turn()

    def _resolve(self, winner: Optional[int], reason: str = "resolved"):
        self._record([EndCombat(winner, reason)])
        self.phase = RESOLVED

    # -- application --------------------------------------------------------

    def _record(self, entries: Iterable[LogEntry]):
        """Apply transitions in order and append every entry to the log."""
        for entry in entries:
            if isinstance(entry, Transition):
                try:
                    self.state.apply(entry)
                except IllegalTransitionError:
                    self.failed_entry = entry.to_dict()
                    raise
            self.log.append(entry, self.state)
