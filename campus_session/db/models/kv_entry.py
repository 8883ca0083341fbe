from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from campus_session.db.base import Base


class KVEntry(Base):
    """Durable key-value record (session snapshots and audit log segments)."""

    # Base provides: id, created_at, updated_at
    key: Mapped[str] = mapped_column(String, unique=True, index=True, nullable=False)
    value: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def __repr__(self) -> str:  # pragma: no cover - debug helper
        return f"<KVEntry(key={self.key!r})>"
