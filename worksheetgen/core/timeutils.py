"""
UTC helpers. Timestamps are stored naive (UTC) so SQLite and Postgres compare the same way.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def from_unix(timestamp: Optional[int]) -> Optional[datetime]:
    """Convert a provider epoch-seconds timestamp to naive UTC."""
    if timestamp is None:
        return None
    return datetime.fromtimestamp(int(timestamp), tz=timezone.utc).replace(tzinfo=None)
