from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Naive UTC timestamp; queue and cache deadlines are compared in SQL."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def utc_after(seconds: float) -> datetime:
    return utcnow() + timedelta(seconds=seconds)
