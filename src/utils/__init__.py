"""Utility functions for the RMF compliance system."""

from .errors import (
    RMFError,
    InvalidInputError,
    AlreadyPromotedError,
    NotFoundError,
    UniqueConstraintError,
)
from .storage import RecordStore, StorageManager

__all__ = [
    "RMFError",
    "InvalidInputError",
    "AlreadyPromotedError",
    "NotFoundError",
    "UniqueConstraintError",
    "RecordStore",
    "StorageManager",
]
