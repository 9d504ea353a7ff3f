"""Shared SQLAlchemy base and common mixins for the rental schema."""

from __future__ import annotations

import enum
from datetime import datetime

from sqlalchemy import DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from rentcore.utils.clock import utcnow


class Base(DeclarativeBase):
    """Declarative base class for the rental schema."""


class TimestampMixin:
    """Creation/update timestamps shared by mutable domain rows."""

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


def enum_column(enum_cls: type[enum.Enum]) -> SAEnum:
    """Store enum *values* (not member names) in a portable VARCHAR column."""
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=32,
        values_callable=lambda members: [member.value for member in members],
        validate_strings=True,
    )
