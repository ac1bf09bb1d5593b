# Analysis module for aggregated trials
# This module provides:
# - outcome_graph.py: deduplicated state/outcome graph with counters
# - pmf.py: exact roll distributions
# - queries.py: analysis-query capability and native queries
# - scripting.py: script engines and scripted queries
# - hooks.py: observers replayed over completed trials

__version__ = "0.1.0"
