from __future__ import annotations

PARKED_ACTIONS = ("restore", "discard")


def encode_parked_action(action: str, key: str) -> str:
    """
    Encode a restore/discard button for a parked session.

    Format: parked:{action}:{key}
    """

    if action not in PARKED_ACTIONS:
        raise ValueError(f"Unknown parked-session action: {action}")
    return f"parked:{action}:{key}"


def parse_parked_action(data: str) -> tuple[str, str]:
    parts = data.split(":", 2)
    if len(parts) != 3 or parts[0] != "parked" or parts[1] not in PARKED_ACTIONS or not parts[2]:
        raise ValueError(f"Invalid parked-session callback data: {data}")
    return parts[1], parts[2]


def encode_settle(stake_id: str) -> str:
    """Format: settle:{stake_id}"""

    return f"settle:{stake_id}"


def parse_settle(data: str) -> str:
    prefix, sep, stake_id = data.partition(":")
    if prefix != "settle" or not sep or not stake_id:
        raise ValueError(f"Invalid settle callback data: {data}")
    return stake_id
