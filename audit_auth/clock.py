"""Time helpers shared by the entities and the engine."""
from datetime import datetime, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp, matching how the database stores datetimes."""
    return datetime.now(timezone.utc).replace(tzinfo=None)
