"""
SLA Domain Layer
================

Domain layer for SLA tracking.

Contains:
- Entities: SLAPolicy, TicketSLA, SLAComplianceStats
- Value Objects: BusinessHours, AutomationConfig
- Domain Services: Stateless business logic (SLACalculator)

This layer has no dependencies on infrastructure - pure Python business logic.
"""

from deskflow.sla.domain.entities import SLAPolicy, TicketSLA, SLAComplianceStats
from deskflow.sla.domain.value_objects import (
    BusinessHours,
    SLACalculator,
    AutomationConfig,
    BusinessHoursConfig,
    DefaultSLAPolicyConfig,
    STATUS_RANK,
)

__all__ = [
    # Entities
    "SLAPolicy",
    "TicketSLA",
    "SLAComplianceStats",
    # Value Objects & Services
    "BusinessHours",
    "SLACalculator",
    "AutomationConfig",
    "BusinessHoursConfig",
    "DefaultSLAPolicyConfig",
    "STATUS_RANK",
]
