"""
brewbracket/orm/base.py
Base model for all ORM models
"""
from sqlalchemy import Column, DateTime
from sqlalchemy.orm import declarative_base

from brewbracket.utils.time_utils import utcnow

Base = declarative_base()


class TimestampMixin:
    """Created/updated timestamps shared by mutable bracket rows."""

    created_at = Column(
        DateTime,
        default=utcnow,
        nullable=False,
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime,
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
        comment="Timestamp when record was last updated"
    )


def iso(value):
    return value.isoformat() if value else None
