"""Expose ORM models."""
from .base import Base
from .usage import MonthlyUsage

__all__ = [
    "Base",
    "MonthlyUsage",
]
