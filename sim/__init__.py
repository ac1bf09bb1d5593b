# Simulation module for headless encounters
# This module provides:
# - rng.py: seedable randomness source with independent child streams
# - dice.py: roll engine and dice notation
# - state.py: encounter state container and participant builder
# - transitions.py: transition vocabulary, transition log and replay
# - mechanics.py: action resolver
# - executor.py: encounter state machine
# - runner.py: parallel trial aggregator
# - config.py / errors.py: defaults and error taxonomy

__version__ = "0.1.0"
