from datetime import UTC, datetime

_UNIT_SECONDS = {"m": 60, "h": 3600, "d": 86400, "w": 604800}


def utc_now() -> datetime:
    return datetime.now(UTC)


def ensure_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def timeframe_to_seconds(timeframe: str) -> int:
    """'1m' -> 60, '4h' -> 14400. Raises ValueError for anything else."""
    if len(timeframe) < 2 or timeframe[-1] not in _UNIT_SECONDS:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    try:
        value = int(timeframe[:-1])
    except ValueError:
        raise ValueError(f"Unsupported timeframe: {timeframe}") from None
    if value <= 0:
        raise ValueError(f"Unsupported timeframe: {timeframe}")
    return value * _UNIT_SECONDS[timeframe[-1]]
