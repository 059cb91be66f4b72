# goaltrack/orm_types.py
from datetime import timezone
from sqlalchemy.types import TypeDecorator, DateTime


class UTCDateTime(TypeDecorator):
    """Timezone-aware timestamp that always round-trips as UTC.

    - PostgreSQL: TIMESTAMP WITH TIME ZONE, values normalized to UTC on write
    - SQLite: naive text storage, so aware values are converted to UTC before
      binding and re-tagged as UTC when loaded
    """
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            # naive input is taken as UTC
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        return value if dialect.name == "postgresql" else value.replace(tzinfo=None)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
