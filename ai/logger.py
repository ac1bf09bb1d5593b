"""
JSONL Decision Logger.

Records every policy decision (state summary -> action) of a trial as one
JSON line, for offline inspection of how a policy behaves.
"""

import json
import logging
import os
from datetime import datetime
from typing import Dict, Optional

import numpy as np

from ai.schema import Action
from sim.state import EncounterState

logger = logging.getLogger(__name__)


def convert_numpy(obj):
    """Convert numpy types to Python native types for JSON serialization."""
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    elif isinstance(obj, np.integer):
        return int(obj)
    elif isinstance(obj, np.floating):
        return float(obj)
    elif isinstance(obj, np.bool_):
        return bool(obj)
    elif isinstance(obj, dict):
        return {k: convert_numpy(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [convert_numpy(v) for v in obj]
    return obj


class DecisionLogger:
    """
    Logger for policy decisions in JSONL format.

    One instance belongs to one trial at a time; it is not shared between
    worker threads.
    """

    def __init__(self, log_dir: str = None, enabled: bool = True):
        """
        Initialize decision logger.

        Args:
            log_dir: Directory to write logs. Defaults to ./decision_logs
            enabled: Whether logging is active
        """
        self.enabled = enabled
        self.log_dir = log_dir or os.path.join(os.getcwd(), "decision_logs")
        self.current_file: Optional[str] = None
        self.trial_id: Optional[str] = None
        self.step_idx = 0
        self.seed = None

        if self.enabled:
            os.makedirs(self.log_dir, exist_ok=True)

    def start_trial(self, trial_index: int = None, seed=None, trial_id: str = None):
        """Start a new trial; each trial gets its own file."""
        if not self.enabled:
            return

        self.seed = seed
        self.step_idx = 0

        if trial_id is None:
            stamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
            trial_id = f"{stamp}_{trial_index}" if trial_index is not None else stamp
        self.trial_id = trial_id
        self.current_file = os.path.join(self.log_dir, f"decisions_{trial_id}.jsonl")

    def _write(self, entry: Dict):
        try:
            with open(self.current_file, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except OSError as e:
            logger.warning("Failed to write decision log entry: %s", e)

    def log_decision(self, state: EncounterState, actor_id: int, slot: str, action: Action):
        """
        Log a single decision.

        Args:
            state: State the policy saw
            actor_id: Deciding participant
            slot: Economy slot being filled
            action: The chosen action
        """
        if not self.enabled or self.current_file is None:
            return

        actor = state.get(actor_id)
        entry = {
            "timestamp": datetime.now().isoformat(),
            "seed": convert_numpy(self.seed),
            "trial_id": self.trial_id,
            "step_idx": self.step_idx,
            "round": state.round,
            "actor": actor_id,
            "actor_hp": actor.hp if actor else None,
            "living_enemies": len(state.living_enemies_of(actor_id)) if actor else 0,
            "slot": slot,
            "action": action.to_dict(),
        }
        self._write(entry)
        self.step_idx += 1

    def end_trial(self, final_info: Dict = None):
        """End current trial."""
        if not self.enabled:
            return

        if final_info and self.current_file:
            self._write({
                "timestamp": datetime.now().isoformat(),
                "trial_id": self.trial_id,
                "type": "trial_end",
                "total_steps": self.step_idx,
                "final_info": convert_numpy(final_info),
            })

        self.trial_id = None
        self.current_file = None
        self.step_idx = 0
