from datetime import datetime, timezone

from sqlalchemy import DateTime
from sqlalchemy.types import TypeDecorator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """naive 값은 UTC로 간주, aware 값은 UTC로 변환."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """
    DB에는 naive UTC로 저장하고, 읽을 때 tz-aware UTC로 돌려준다.

    SQLite는 타임존을 보관하지 않으므로 드라이버와 무관하게
    비교/정렬이 일관되도록 저장 형식을 하나로 맞춘다.
    """
    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return as_utc(value).replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return value.replace(tzinfo=timezone.utc)
