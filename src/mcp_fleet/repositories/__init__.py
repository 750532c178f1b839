"""Repository pattern implementations for data access."""

from .base import BaseRepository
from .snapshots import SnapshotRepository

__all__ = [
    "BaseRepository",
    "SnapshotRepository",
]
