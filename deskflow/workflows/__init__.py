"""
Workflow Automation Module
==========================

Bounded Context for rule-driven automation of tickets and assets.

Responsibilities:
- Evaluate rule conditions against entity snapshots
- Dispatch active workflow rules on lifecycle triggers, by priority
- Execute actions with per-action timeouts and failure isolation
- Bounded cascades when actions re-trigger workflows
- Auto-assign tickets through assignment rules and strategies
- Record execution history
"""

__version__ = "1.0.0"
