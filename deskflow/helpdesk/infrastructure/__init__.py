"""
Helpdesk Infrastructure Layer
=============================

Infrastructure implementations for the collaborator interfaces:
- Models: SQLAlchemy ORM models
- Repositories: Entity store and messaging transport
- External: Notification gateway client
"""

from deskflow.helpdesk.infrastructure.models import (
    UserModel,
    TicketModel,
    AssetModel,
    CommentModel,
    NotificationModel,
)
from deskflow.helpdesk.infrastructure.repositories import (
    SQLAlchemyEntityStore,
    DatabaseMessagingTransport,
)
from deskflow.helpdesk.infrastructure.external import (
    WebhookNotificationClient,
    notification_client,
)

__all__ = [
    "UserModel",
    "TicketModel",
    "AssetModel",
    "CommentModel",
    "NotificationModel",
    "SQLAlchemyEntityStore",
    "DatabaseMessagingTransport",
    "WebhookNotificationClient",
    "notification_client",
]
