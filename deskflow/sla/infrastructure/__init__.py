"""
SLA Infrastructure Layer
========================

Infrastructure implementations for SLA tracking:
- Models: SQLAlchemy ORM models
- Repositories: Data access layer
- External: Config watcher and sweep scheduler
"""

from deskflow.sla.infrastructure.models import SLAPolicyModel, TicketSLAModel
from deskflow.sla.infrastructure.repositories import (
    SQLAlchemySLAPolicyRepository,
    SQLAlchemyTicketSLARepository,
)

__all__ = [
    "SLAPolicyModel",
    "TicketSLAModel",
    "SQLAlchemySLAPolicyRepository",
    "SQLAlchemyTicketSLARepository",
]
