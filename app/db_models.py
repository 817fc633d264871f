"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class CatalogueSnapshot(Base):
    """Serialized movie pool used for fast cold starts."""

    __tablename__ = "catalogue_snapshots"

    cache_key: Mapped[str] = mapped_column(String(64), primary_key=True)
    movies: Mapped[list[dict[str, Any]]] = mapped_column(JSON)
    grouped_by_bucket: Mapped[dict[str, list[int]]] = mapped_column(JSON)
    movie_count: Mapped[int] = mapped_column(Integer, default=0)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
