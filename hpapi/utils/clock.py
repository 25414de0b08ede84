"""Timestamp helpers.

Every security timestamp is stored as naive UTC in ``DateTime`` columns, so
values read back from the database compare cleanly with ``utcnow()``.
"""

import datetime
import math


def utcnow():
    """Return the current UTC time as a naive ``datetime``."""
    return datetime.datetime.now(datetime.UTC).replace(tzinfo=None)


def minutes_until(moment, now=None):
    """Whole minutes from ``now`` until ``moment``, rounded up, never negative."""
    if moment is None:
        return None
    now = now or utcnow()
    seconds = (moment - now).total_seconds()
    return max(0, math.ceil(seconds / 60))
