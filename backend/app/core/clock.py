from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    # SQLite rend des datetimes naïfs ; on les considère UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value
