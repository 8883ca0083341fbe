"""Database models"""

from campus_session.db.models.kv_entry import KVEntry

__all__ = [
    "KVEntry",
]
