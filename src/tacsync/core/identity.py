"""Identity utilities for contributor tokens.

Contributor tokens are opaque and never stored. The coordinator keeps only
a per-round hash, enough to count distinct contributors in the open round
and useless for linking a contributor across rounds.
"""

import hashlib


def hash_contributor_token(token: str, round_number: int) -> str:
    """Compute the stored form of a contributor token.

    token_hash = sha256("{round_number}:{token}")

    Args:
        token: Opaque contributor token.
        round_number: Round the token contributes to.

    Returns:
        64-character hex string (SHA256)
    """
    if not token:
        raise ValueError("contributor token must be non-empty")
    return hashlib.sha256(f"{round_number}:{token}".encode("utf-8")).hexdigest()
