"""
Assignment Selection
====================

Stateless selection logic shared by the assignment strategies. The
stateful part (the round-robin cursor) lives in the application layer.
"""

from typing import Dict, Iterable, List, Optional

from deskflow.config import AssignmentType
from deskflow.workflows.domain.entities import AssignmentRule, TechnicianWorkload


def index_pool(pool: Iterable[TechnicianWorkload]) -> Dict[str, TechnicianWorkload]:
    """Map user id -> workload."""
    return {tech.user_id: tech for tech in pool}


def eligible_pool(
    rule: AssignmentRule,
    pool: Iterable[TechnicianWorkload]
) -> List[TechnicianWorkload]:
    """
    Technicians a workload-based strategy may pick from.

    Always requires availability; skill_based additionally requires every
    required skill and location_based an exact location match.
    ``target_users`` only drive the cyclic strategies and are ignored here.
    """
    eligible = []

    for tech in pool:
        if not tech.is_available:
            continue
        if rule.assignment_type == AssignmentType.SKILL_BASED and not tech.has_skills(rule.required_skills):
            continue
        if rule.assignment_type == AssignmentType.LOCATION_BASED and tech.location != rule.location:
            continue
        eligible.append(tech)

    return eligible


def pick_least_busy(candidates: Iterable[TechnicianWorkload]) -> Optional[str]:
    """Fewest active tickets wins; ties go to the lowest user id."""
    best = min(
        candidates,
        key=lambda tech: (tech.active_ticket_count, tech.user_id),
        default=None
    )
    return best.user_id if best else None


def is_assignable(user_id: str, pool_index: Dict[str, TechnicianWorkload]) -> bool:
    """A cyclic target is assignable when known and available."""
    tech = pool_index.get(user_id)
    return tech is not None and tech.is_available
