"""Round coordinator: single authority that finalizes contribution rounds.

Reads and writes the coordinator DB; publishes one immutable cumulative
snapshot per finalized round.
"""
