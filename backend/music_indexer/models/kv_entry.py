"""Plain key/value rows — scan state, settings and locks."""

from typing import Optional

from sqlalchemy import String, Text, Float
from sqlalchemy.orm import Mapped, mapped_column

from music_indexer.database import Base


class KVEntry(Base):
    __tablename__ = "kv_entries"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    # Unix timestamp; NULL means the entry never expires
    expires_at: Mapped[Optional[float]] = mapped_column(Float, index=True)

    def is_expired(self, now: float) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def __repr__(self):
        return f"<KVEntry {self.key}: expires={self.expires_at}>"
