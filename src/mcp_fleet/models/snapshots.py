"""Snapshot model holding one JSON document per logical table."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base

# Logical tables stored as snapshot rows
FLEET_SNAPSHOT = "fleet-snapshot"
LAYOUT = "layout"


class Snapshot(Base):
    """A durable JSON document keyed by logical table name."""

    __tablename__ = "snapshots"

    # Logical table name, e.g. "fleet-snapshot" or "layout"
    name: Mapped[str] = mapped_column(String(100), primary_key=True)

    # Whole document, rewritten on every save
    document: Mapped[Any] = mapped_column(JSON, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    def __repr__(self) -> str:
        """String representation of Snapshot."""
        return f"<Snapshot(name={self.name}, updated_at={self.updated_at})>"
