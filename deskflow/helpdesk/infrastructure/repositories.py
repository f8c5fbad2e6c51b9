"""
Helpdesk Infrastructure Repositories
====================================

SQLAlchemy adapters for the automation engine's collaborators:
- SQLAlchemyEntityStore: ticket/asset snapshots, writes and technician workload
- DatabaseMessagingTransport: in-app notification queue and system comments
"""

import hashlib
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Type

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from deskflow.config import EntityType, NotificationChannel, TERMINAL_TICKET_STATUSES, UserRole
from deskflow.core import ResourceNotFoundException, ValidationException
from deskflow.helpdesk.infrastructure.external import GatewayMessage, WebhookNotificationClient
from deskflow.helpdesk.infrastructure.models import (
    AssetModel, CommentModel, NotificationModel, TicketModel, UserModel
)
from deskflow.shared.infrastructure.logging import get_logger
from deskflow.workflows.application.services import IEntityStore, IMessagingTransport
from deskflow.workflows.domain import TechnicianWorkload

logger = get_logger(__name__)

_MODELS: Dict[str, Type] = {
    EntityType.TICKET: TicketModel,
    EntityType.ASSET: AssetModel,
}

# Fields automation is allowed to write
_WRITABLE_FIELDS = {
    EntityType.TICKET: {"status", "priority", "assigned_to_id"},
    EntityType.ASSET: {"status", "assigned_to_id"},
}


def _snapshot(model: Any) -> Dict[str, Any]:
    """Column values of a row as a plain dict."""
    return {column.key: getattr(model, column.key) for column in model.__table__.columns}


class SQLAlchemyEntityStore(IEntityStore):
    """Entity store over the tickets/assets/users tables."""

    def __init__(self, session: AsyncSession):
        self._session = session

    def _model_for(self, entity_type: str) -> Type:
        model = _MODELS.get(entity_type)
        if model is None:
            raise ValidationException(f"Unknown entity type '{entity_type}'")
        return model

    async def get_entity(self, entity_type: str, entity_id: str) -> Optional[Dict[str, Any]]:
        model = await self._session.get(self._model_for(entity_type), entity_id)
        return _snapshot(model) if model else None

    async def update_entity(
        self,
        entity_type: str,
        entity_id: str,
        patch: Dict[str, Any]
    ) -> Dict[str, Any]:
        unknown = set(patch) - _WRITABLE_FIELDS[entity_type] if entity_type in _WRITABLE_FIELDS else set(patch)
        if unknown:
            raise ValidationException(
                f"Fields not writable on {entity_type}: {sorted(unknown)}"
            )

        model = await self._session.get(self._model_for(entity_type), entity_id)
        if model is None:
            raise ResourceNotFoundException(entity_type, entity_id)

        for key, value in patch.items():
            setattr(model, key, value)
        model.updated_at = datetime.now(timezone.utc)
        await self._session.flush()

        return _snapshot(model)

    async def list_technicians(self) -> List[TechnicianWorkload]:
        active_tickets = func.count(TicketModel.id)
        stmt = (
            select(UserModel, active_tickets)
            .outerjoin(
                TicketModel,
                and_(
                    TicketModel.assigned_to_id == UserModel.id,
                    TicketModel.status.notin_(TERMINAL_TICKET_STATUSES)
                )
            )
            .where(UserModel.role == UserRole.TECHNICIAN)
            .group_by(UserModel.id)
            .order_by(UserModel.id)
        )
        result = await self._session.execute(stmt)

        return [
            TechnicianWorkload(
                user_id=user.id,
                active_ticket_count=count,
                is_available=user.is_available,
                name=user.name,
                email=user.email,
                skills=list(user.skills or []),
                location=user.location
            )
            for user, count in result.all()
        ]

    async def list_tickets(self, statuses: List[str]) -> List[Dict[str, Any]]:
        stmt = (
            select(TicketModel)
            .where(TicketModel.status.in_(statuses))
            .order_by(TicketModel.created_at.asc())
        )
        result = await self._session.execute(stmt)
        return [_snapshot(m) for m in result.scalars().all()]


class DatabaseMessagingTransport(IMessagingTransport):
    """
    Queues in-app notifications and writes system comments.

    Both calls are idempotent: an unread notification with the same
    recipient, entity and message is not queued twice, and a comment with
    the same content hash on the same entity is not written twice.
    """

    def __init__(
        self,
        session: AsyncSession,
        gateway: Optional[WebhookNotificationClient] = None
    ):
        self._session = session
        self._gateway = gateway

    async def send(
        self,
        message: str,
        recipients: List[str],
        *,
        channel: str = NotificationChannel.IN_APP,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        title: Optional[str] = None
    ) -> Dict[str, Any]:
        queued = 0
        duplicates = 0
        title = title or "Notification"

        for user_id in dict.fromkeys(recipients):
            stmt = select(NotificationModel.id).where(
                NotificationModel.user_id == user_id,
                NotificationModel.entity_type == entity_type,
                NotificationModel.entity_id == entity_id,
                NotificationModel.message == message,
                NotificationModel.channel == channel,
                NotificationModel.is_read.is_(False)
            ).limit(1)
            if (await self._session.execute(stmt)).scalar_one_or_none() is not None:
                duplicates += 1
                continue

            self._session.add(NotificationModel(
                user_id=user_id,
                channel=channel,
                title=title,
                message=message,
                entity_type=entity_type,
                entity_id=entity_id
            ))
            queued += 1

        await self._session.flush()

        if duplicates:
            logger.info(
                "Duplicate notifications skipped",
                extra={"entity_id": entity_id, "duplicates": duplicates}
            )

        forwarded = False
        if queued and self._gateway is not None and self._gateway.enabled:
            forwarded = await self._gateway.forward(GatewayMessage(
                channel=channel,
                title=title,
                message=message,
                recipients=list(recipients),
                entity_type=entity_type,
                entity_id=entity_id
            ))

        return {"queued": queued, "duplicates": duplicates, "forwarded": forwarded}

    async def add_comment(
        self,
        entity_type: str,
        entity_id: str,
        author_system_id: str,
        text: str
    ) -> str:
        content_hash = hashlib.md5(text.encode("utf-8")).hexdigest()

        stmt = select(CommentModel.id).where(
            CommentModel.entity_type == entity_type,
            CommentModel.entity_id == entity_id,
            CommentModel.content_hash == content_hash
        ).limit(1)
        existing = (await self._session.execute(stmt)).scalar_one_or_none()
        if existing is not None:
            logger.debug("Comment already present", extra={"entity_id": entity_id, "comment_id": existing})
            return existing

        comment = CommentModel(
            entity_type=entity_type,
            entity_id=entity_id,
            author_id=author_system_id,
            content=text,
            content_hash=content_hash
        )
        self._session.add(comment)
        await self._session.flush()
        return comment.id
