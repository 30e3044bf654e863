"""Federated aggregation of tactic outcome statistics.

Contributors record outcomes locally and sync them through a repository or
directly with a round coordinator, which publishes one immutable global
snapshot per finalized round.
"""

__version__ = "0.1.0"
