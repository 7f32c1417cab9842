"""
recordhistory Database Base - SQLAlchemy declarative base and timestamp mixin.

Provides:
- Base: SQLAlchemy declarative base for applications that have none
- TimestampMixin: created_at, updated_at

Versioned models may use any declarative base. ``Base`` exists for small
applications and for the test-suite.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, DateTime
from sqlalchemy.orm import DeclarativeBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for recordhistory models."""
    pass


class TimestampMixin:
    """Adds created_at, updated_at columns."""
    created_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )
