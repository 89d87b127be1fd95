# models/base.py
"""
Base model and mixins for all database tables.
"""
from sqlalchemy.orm import declarative_base
from sqlalchemy import Column, DateTime, DECIMAL
from datetime import datetime, timezone

Base = declarative_base()


def Money(**kwargs):
    """Monetary column: two decimal places, never NULL, zero by default."""
    kwargs.setdefault("nullable", False)
    kwargs.setdefault("default", 0)
    return Column(DECIMAL(18, 2), **kwargs)


class AuditMixin:
    createdAt = Column(DateTime, default=lambda: datetime.now(timezone.utc))
    updatedAt = Column(DateTime, default=lambda: datetime.now(timezone.utc),
                       onupdate=lambda: datetime.now(timezone.utc))
