from datetime import date, datetime, time, timezone


def utcnow() -> datetime:
    """不帶時區的 UTC 時間，所有 DateTime 欄位都以這個形式儲存"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_naive_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


def combine(day: date, at: time) -> datetime:
    return datetime.combine(day, at)
