"""
Workflow Interfaces Layer
=========================

Interface adapters (controllers) for workflow automation, auto-assignment
and lifecycle event ingestion.
"""

from deskflow.workflows.interfaces.controllers import workflows_router

__all__ = ["workflows_router"]
