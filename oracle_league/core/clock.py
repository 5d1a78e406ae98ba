from datetime import datetime, timezone


def utcnow() -> datetime:
    # Guardamos siempre UTC "naive": SQLite no conserva tzinfo
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def resolve_now(now: datetime | None) -> datetime:
    """El `now` recibido, pasado a UTC naive, o el instante actual."""
    return utcnow() if now is None else as_naive_utc(now)
