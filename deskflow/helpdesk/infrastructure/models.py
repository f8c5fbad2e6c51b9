"""
Helpdesk Infrastructure Models
==============================

SQLAlchemy ORM models for the helpdesk records the automation engine
reads and writes through its collaborator interfaces: tickets, assets,
users, comments and in-app notifications.
"""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from deskflow.infrastructure.database import Base
from deskflow.config import AssetStatus, NotificationChannel, Priority, TicketStatus, UserRole


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid4())


class UserModel(Base):
    """
    Database model for users.

    Maps to the 'users' table.
    """
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=UserRole.USER, index=True)

    # Assignment attributes
    is_available: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class TicketModel(Base):
    """
    Database model for tickets.

    Maps to the 'tickets' table.
    """
    __tablename__ = "tickets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default=TicketStatus.OPEN, index=True)
    priority: Mapped[str] = mapped_column(String(20), nullable=False, default=Priority.MEDIUM)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    assigned_to_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    created_by_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    asset_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class AssetModel(Base):
    """
    Database model for assets.

    Maps to the 'assets' table.
    """
    __tablename__ = "assets"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    asset_type: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AssetStatus.AVAILABLE, index=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    assigned_to_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class CommentModel(Base):
    """
    Database model for comments on tickets and assets.

    ``content_hash`` (MD5 of the text) lets system comments be written
    idempotently.
    """
    __tablename__ = "comments"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    author_id: Mapped[str] = mapped_column(String(64), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_hash: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)


class NotificationModel(Base):
    """
    Database model for queued in-app notifications.

    Maps to the 'notifications' table.
    """
    __tablename__ = "notifications"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    channel: Mapped[str] = mapped_column(String(20), nullable=False, default=NotificationChannel.IN_APP)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)

    entity_type: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    is_read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
