"""
Configuration Module
====================

Application settings and configuration management using Pydantic.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
from functools import lru_cache
from pathlib import Path
from typing import List, Optional


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Uses Pydantic for validation and type safety.
    """

    # ========== Application ==========
    app_name: str = Field(default="deskflow-automation", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(default="development", description="Environment name")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ========== Server ==========
    host: str = Field(default="0.0.0.0", description="Server host")
    port: int = Field(default=8000, description="Server port", ge=1, le=65535)

    # ========== Database ==========
    database_url: str = Field(
        default="postgresql+asyncpg://localhost:5432/deskflow",
        description="PostgreSQL connection URL (async)"
    )
    db_pool_size: int = Field(default=5, description="Database connection pool size", ge=1)
    db_max_overflow: int = Field(default=10, description="Max overflow connections", ge=0)

    # ========== Automation Configuration ==========
    automation_config_path: Path = Field(
        default=Path("automation_config.yaml"),
        description="Path to the automation YAML file (business hours, default SLA policies)"
    )
    sla_sweep_interval_seconds: int = Field(
        default=60,
        description="Seconds between SLA sweeps (0 disables the scheduler)",
        ge=0
    )

    # ========== Workflow Engine ==========
    action_timeout_seconds: float = Field(
        default=10.0,
        description="Timeout applied to every single action invocation",
        gt=0,
        le=120
    )
    max_dispatch_depth: int = Field(
        default=5,
        description="Maximum cascade depth for actions that re-trigger workflows",
        ge=1,
        le=20
    )
    system_author_id: str = Field(
        default="system",
        description="Author id stamped on automation comments"
    )

    # ========== Assignment ==========
    auto_assign_on_create: bool = Field(
        default=True,
        description="Run assignment rules when a ticket is created"
    )
    assignment_fallback_least_busy: bool = Field(
        default=False,
        description="Assign the least busy technician when no rule yields one"
    )

    # ========== Notification Gateway ==========
    notification_webhook_url: Optional[str] = Field(
        default=None,
        description="Optional HTTP gateway that accepted notifications are forwarded to"
    )
    notification_timeout_seconds: float = Field(
        default=5.0,
        description="Timeout for notification gateway calls",
        ge=0.1,
        le=30
    )

    # ========== CORS ==========
    cors_origins: List[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Ensure environment is one of allowed values."""
        allowed = {"development", "staging", "production"}
        if v not in allowed:
            raise ValueError(f"environment must be one of {allowed}")
        return v

    @field_validator("sla_sweep_interval_seconds")
    @classmethod
    def validate_sweep_interval(cls, v: int) -> int:
        """Interval is either disabled (0) or at least 10 seconds."""
        if 0 < v < 10:
            raise ValueError("sla_sweep_interval_seconds must be 0 or >= 10")
        return v


@lru_cache()
def get_settings() -> Settings:
    """Returns cached Settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()


# ========== Constants ==========

class Priority(str):
    """Ticket priority levels."""
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class TicketStatus(str):
    """Ticket lifecycle statuses."""
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    CLOSED = "closed"


class AssetStatus(str):
    """Asset lifecycle statuses."""
    AVAILABLE = "available"
    ASSIGNED = "assigned"
    MAINTENANCE = "maintenance"
    REPAIR = "repair"
    RETIRED = "retired"


class EntityType(str):
    """Entities workflow rules can target."""
    TICKET = "ticket"
    ASSET = "asset"


class Trigger(str):
    """Entity lifecycle events that start workflow evaluation."""
    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    PRIORITY_CHANGED = "priority_changed"
    UPDATED = "updated"


class ConditionOperator(str):
    """Operators usable in a rule condition."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    IN = "in"
    NOT_IN = "not_in"


class ActionType(str):
    """Automated effects a workflow rule can apply."""
    ASSIGN = "assign"
    CHANGE_STATUS = "change_status"
    CHANGE_PRIORITY = "change_priority"
    ADD_COMMENT = "add_comment"
    SEND_NOTIFICATION = "send_notification"
    SEND_WHATSAPP = "send_whatsapp"


class AssignmentType(str):
    """Technician selection strategies."""
    ROUND_ROBIN = "round_robin"
    LEAST_BUSY = "least_busy"
    SKILL_BASED = "skill_based"
    LOCATION_BASED = "location_based"
    SPECIFIC_USER = "specific_user"


class SLAStatus(str):
    """SLA tracking states (monotonic, ordered by severity)."""
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"


class ExecutionStatus(str):
    """Outcome of one rule evaluation recorded in the execution history."""
    COMPLETED = "completed"
    PARTIAL = "partial"
    SKIPPED = "skipped"
    FAILED = "failed"


class NotificationChannel(str):
    """Channels a queued notification is tagged with."""
    IN_APP = "in_app"
    WHATSAPP = "whatsapp"


class UserRole(str):
    """Roles forwarded by the authentication gateway."""
    ADMIN = "ADMIN"
    TECHNICIAN = "TECHNICIAN"
    USER = "USER"
    SYSTEM = "SYSTEM"


# ========== Lists for validation ==========

VALID_PRIORITIES = [
    Priority.CRITICAL, Priority.HIGH,
    Priority.MEDIUM, Priority.LOW
]
VALID_TICKET_STATUSES = [
    TicketStatus.OPEN, TicketStatus.IN_PROGRESS, TicketStatus.CLOSED
]
TERMINAL_TICKET_STATUSES = [TicketStatus.CLOSED]
VALID_ASSET_STATUSES = [
    AssetStatus.AVAILABLE, AssetStatus.ASSIGNED, AssetStatus.MAINTENANCE,
    AssetStatus.REPAIR, AssetStatus.RETIRED
]
VALID_ENTITY_TYPES = [EntityType.TICKET, EntityType.ASSET]
VALID_TRIGGERS = [
    Trigger.CREATED, Trigger.STATUS_CHANGED, Trigger.ASSIGNED,
    Trigger.PRIORITY_CHANGED, Trigger.UPDATED
]
VALID_OPERATORS = [
    ConditionOperator.EQUALS, ConditionOperator.NOT_EQUALS,
    ConditionOperator.CONTAINS, ConditionOperator.NOT_CONTAINS,
    ConditionOperator.GREATER_THAN, ConditionOperator.LESS_THAN,
    ConditionOperator.IN, ConditionOperator.NOT_IN
]
VALID_ACTION_TYPES = [
    ActionType.ASSIGN, ActionType.CHANGE_STATUS, ActionType.CHANGE_PRIORITY,
    ActionType.ADD_COMMENT, ActionType.SEND_NOTIFICATION, ActionType.SEND_WHATSAPP
]
VALID_ASSIGNMENT_TYPES = [
    AssignmentType.ROUND_ROBIN, AssignmentType.LEAST_BUSY,
    AssignmentType.SKILL_BASED, AssignmentType.LOCATION_BASED,
    AssignmentType.SPECIFIC_USER
]
VALID_SLA_STATUSES = [SLAStatus.ON_TRACK, SLAStatus.AT_RISK, SLAStatus.BREACHED]

# Allowed status values per entity type, used to validate change_status
STATUSES_BY_ENTITY = {
    EntityType.TICKET: VALID_TICKET_STATUSES,
    EntityType.ASSET: VALID_ASSET_STATUSES,
}
