from datetime import datetime, timedelta, timezone

SUBSCRIPTION_PERIOD_DAYS = 30


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    # Naive datetimes coming back from the database are already UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def calculate_period_end(start: datetime) -> datetime:
    return as_utc(start) + timedelta(days=SUBSCRIPTION_PERIOD_DAYS)
