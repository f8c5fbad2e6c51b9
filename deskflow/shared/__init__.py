"""
Shared Kernel Module
====================

Shared infrastructure used across all bounded contexts (workflows, SLA
tracking and the helpdesk collaborator adapters).

Architecture Pattern: Modular Monolith
- Each module (workflows, sla, helpdesk) is a bounded context
- Shared kernel contains only generic infrastructure

DO NOT add workflow or SLA business logic to shared kernel.
"""

__version__ = "1.0.0"
