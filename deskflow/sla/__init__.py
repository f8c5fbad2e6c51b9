"""
SLA Tracking Module
===================

Bounded Context for Service Level Agreement tracking and escalation.

Responsibilities:
- Select the SLA policy matching a ticket's priority
- Compute response/resolution deadlines, optionally in business hours
- Maintain the monotonic on_track -> at_risk -> breached state machine
- Escalate once per transition through the action executor
- Periodic sweep (APScheduler) and compliance statistics
- Automation config hot-reload via watchdog
"""

__version__ = "1.0.0"
