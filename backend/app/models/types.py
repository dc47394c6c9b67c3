from datetime import datetime, timezone

from sqlalchemy import DateTime, Uuid
from sqlalchemy.types import TypeDecorator


class GUID(Uuid):
    """Native UUID on PostgreSQL, CHAR(32) on SQLite."""

    cache_ok = True

    def __init__(self) -> None:
        super().__init__(as_uuid=True)


class UTCDateTime(TypeDecorator):
    """Timezone-aware datetime that always comes back as UTC.

    SQLite drops tzinfo on the way out, which breaks comparisons against
    ``datetime.now(timezone.utc)`` once a row has been reloaded.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value

    def process_result_value(self, value: datetime | None, dialect):
        if value is not None and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value
