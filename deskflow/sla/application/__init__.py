"""
SLA Application Layer
=====================

Application services and DTOs for SLA tracking.
"""

from deskflow.sla.application.services import (
    ISLAPolicyRepository,
    ITicketSLARepository,
    SLATracker,
    SLAPolicyService,
    sweep_lock,
)
from deskflow.sla.application.dto import (
    SLAPolicyCreate,
    SLAPolicyUpdate,
    SLAPolicyResponse,
    TicketSLAResponse,
    SLAStatsResponse,
)

__all__ = [
    # Interfaces
    "ISLAPolicyRepository",
    "ITicketSLARepository",
    # Services
    "SLATracker",
    "SLAPolicyService",
    "sweep_lock",
    # DTOs
    "SLAPolicyCreate",
    "SLAPolicyUpdate",
    "SLAPolicyResponse",
    "TicketSLAResponse",
    "SLAStatsResponse",
]
