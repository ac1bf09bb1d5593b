"""Central configuration defaults for the encounter simulator."""

import logging
import os

# Aggregation defaults
DEFAULT_TRIALS = int(os.getenv("ENCOUNTER_SIM_TRIALS", "1000"))
DEFAULT_SEED = int(os.getenv("ENCOUNTER_SIM_SEED", "42"))
DEFAULT_WORKERS = int(os.getenv("ENCOUNTER_SIM_WORKERS", "1"))
DEFAULT_POOL_MODE = os.getenv("ENCOUNTER_SIM_POOL_MODE", "thread")  # "thread" or "process"

# Upper bound on rounds in one trial; a stalled encounter ends without a winner
DEFAULT_MAX_ROUNDS = int(os.getenv("ENCOUNTER_SIM_MAX_ROUNDS", "200"))

# Economy slots offered to the decision policy on each turn, in order
_turn_slots_env = os.getenv("ENCOUNTER_SIM_TURN_SLOTS")
DEFAULT_TURN_SLOTS = (
    tuple(s.strip() for s in _turn_slots_env.split(",") if s.strip()) if _turn_slots_env
    else ("action", "bonus_action")
)

# Logging
DEFAULT_LOG_LEVEL = os.getenv("ENCOUNTER_SIM_LOG_LEVEL", "WARNING").upper()
DEFAULT_DECISION_LOG_DIR = os.getenv("ENCOUNTER_SIM_DECISION_LOG_DIR", "")
DEFAULT_DECISION_LOGGING = os.getenv("ENCOUNTER_SIM_DECISION_LOGGING", "false").lower() in ("true", "1", "yes", "on")

# Outcome graph counters saturate at this value
COUNTER_CEILING = 2 ** 64 - 1


def configure_logging(level: str = None) -> None:
    """Install a basic handler for the simulator's loggers."""
    logging.basicConfig(
        level=getattr(logging, (level or DEFAULT_LOG_LEVEL).upper(), logging.WARNING),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
