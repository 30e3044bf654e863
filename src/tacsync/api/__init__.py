"""API module for the round coordinator.

The api layer:
- Validates contribution payloads
- Serves finalized snapshots and statistics
- Forbidden: merge logic, round bookkeeping, transport calls
"""
