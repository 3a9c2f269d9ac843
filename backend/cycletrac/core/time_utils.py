from datetime import datetime, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def format_duration(total_seconds: float) -> str:
    """
    Convert seconds -> 'MM:SS', or 'HH:MM:SS' once the ride passes an hour.
    Example: 2732 -> '45:32', 3725 -> '01:02:05'
    """
    total = int(total_seconds)
    hours = total // 3600
    minutes = (total % 3600) // 60
    seconds = total % 60
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{seconds:02d}"
    return f"{minutes:02d}:{seconds:02d}"


def datetime_to_millis(dt: datetime) -> int:
    """Aware (or naive, assumed UTC) datetime -> epoch milliseconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(round(dt.timestamp() * 1000))
