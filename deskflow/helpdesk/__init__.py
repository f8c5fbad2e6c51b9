"""
Helpdesk Module
===============

Bounded Context for the helpdesk records the automation engine works on.

Ticket, asset and user CRUD belongs to the surrounding helpdesk
application; this module only provides the adapters the workflow and SLA
engines consume:
- Entity store over the tickets/assets/users tables
- Messaging transport (in-app notification queue, system comments)
- Optional HTTP notification gateway
"""

__version__ = "1.0.0"
