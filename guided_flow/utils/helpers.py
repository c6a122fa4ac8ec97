"""
Utility helpers for the guided flow engine

Simple utility functions for ID and timestamp generation.
"""

import uuid
from datetime import datetime, timezone


def generate_run_id(length=8):
    """
    Random hex identifier for runs, records and browser sessions.

    Args:
        length (int | None): Number of hex characters kept (None keeps
            all 32)

    Examples:
        >>> len(generate_run_id())
        8
        >>> len(generate_run_id(length=None))
        32
    """
    token = uuid.uuid4().hex
    return token if length is None else token[:length]


def utc_now_iso():
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()
