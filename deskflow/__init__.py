"""
Deskflow Automation
===================

Workflow, auto-assignment and SLA tracking engine for the helpdesk.
"""

__version__ = "1.0.0"
