from minicompete.db.base import Base, TimestampMixin, UTCDateTime, utcnow
from minicompete.db.session import Database, create_database, get_db

__all__ = ["Base", "TimestampMixin", "UTCDateTime", "utcnow", "Database", "create_database", "get_db"]
