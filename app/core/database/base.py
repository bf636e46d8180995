"""
SQLAlchemy declarative base and common model utilities.
"""
from datetime import datetime
from sqlalchemy import DateTime, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


class TimestampMixin:
    """
    Mixin adding a server-side created_at timestamp.

    Usage:
        class AuditLog(Base, TimestampMixin):
            __tablename__ = "audit_logs"
            id: Mapped[str] = mapped_column(primary_key=True)
    """
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )
