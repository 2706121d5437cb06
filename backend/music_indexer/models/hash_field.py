"""Hash fields — one row per (parent key, field), used for the per-path music cache."""

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column

from music_indexer.database import Base


class HashField(Base):
    __tablename__ = "kv_hash_fields"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    field: Mapped[str] = mapped_column(String(2048), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    def __repr__(self):
        return f"<HashField {self.key}[{self.field}]>"
