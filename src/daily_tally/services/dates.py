"""Effective date: the day partition a moment in time belongs to."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def effective_date(
    reset_hour: int,
    tz_name: str,
    now: Optional[datetime] = None,
) -> str:
    """Return the YYYY-MM-DD key for ``now`` in the civil timezone ``tz_name``.

    From ``reset_hour`` onwards the civil day counts as the following day.
    Naive datetimes are taken as UTC. This is the only place the day key is
    computed; read, write and replay paths all go through it.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    elif now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    local = now.astimezone(ZoneInfo(tz_name))
    day = local.date()
    if local.hour >= reset_hour:
        day = day + timedelta(days=1)
    return day.isoformat()
