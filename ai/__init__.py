# AI module for participant decisions
# This module provides:
# - schema.py: action vocabulary and economy slots
# - policy.py: decision-policy capability and built-in policies
# - policy_heuristic.py: expected-damage heuristic policy
# - logger.py: JSONL decision logging

__version__ = "0.1.0"
