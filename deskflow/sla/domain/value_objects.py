"""
SLA Value Objects
=================

Immutable value objects for the SLA domain.

Value objects are defined by their attributes rather than an identity.
They are immutable and can be freely shared.
"""

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone
from typing import List, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator, model_validator

from deskflow.config import SLAStatus, VALID_PRIORITIES

# Severity order used to keep status transitions monotonic
STATUS_RANK = {
    SLAStatus.ON_TRACK: 0,
    SLAStatus.AT_RISK: 1,
    SLAStatus.BREACHED: 2,
}


@dataclass(frozen=True)
class BusinessHours:
    """
    Working window across which business-hours SLA minutes are counted.

    Defaults to 09:00-17:00, Monday to Friday, in UTC. No holiday calendar.
    """
    start: time = time(9, 0)
    end: time = time(17, 0)
    weekdays: Tuple[int, ...] = (0, 1, 2, 3, 4)
    timezone_name: str = "UTC"

    @property
    def tz(self) -> ZoneInfo:
        return ZoneInfo(self.timezone_name)

    def is_business_time(self, moment: datetime) -> bool:
        local = self._localize(moment)
        return local.weekday() in self.weekdays and self.start <= local.time() < self.end

    def add_minutes(self, start: datetime, minutes: int) -> datetime:
        """
        Advance ``start`` by ``minutes`` of business time.

        Time outside the window is skipped. A deadline that uses up a day
        exactly ends at the closing time of that day.

        Example:
            Friday 16:30 + 120 -> 30 minutes on Friday, 90 on Monday -> Monday 10:30
        """
        original_tz = start.tzinfo or timezone.utc
        cursor = self._localize(start)
        remaining = timedelta(minutes=minutes)

        while remaining > timedelta(0):
            if cursor.weekday() not in self.weekdays or cursor.time() >= self.end:
                cursor = self._next_opening(cursor)
                continue

            if cursor.time() < self.start:
                cursor = datetime.combine(cursor.date(), self.start, tzinfo=self.tz)

            closing = datetime.combine(cursor.date(), self.end, tzinfo=self.tz)
            available = closing - cursor

            if remaining <= available:
                cursor = cursor + remaining
                remaining = timedelta(0)
            else:
                remaining -= available
                cursor = self._next_opening(cursor)

        return cursor.astimezone(original_tz)

    def _localize(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self.tz)

    def _next_opening(self, cursor: datetime) -> datetime:
        day = cursor.date() + timedelta(days=1)
        while day.weekday() not in self.weekdays:
            day += timedelta(days=1)
        return datetime.combine(day, self.start, tzinfo=self.tz)


class SLACalculator:
    """
    Pure functions for SLA calculations.

    Stateless utility class - all deadline and status logic in one place.
    """

    @staticmethod
    def calculate_deadline(
        start: datetime,
        minutes: int,
        business_hours_only: bool,
        business_hours: Optional[BusinessHours] = None
    ) -> datetime:
        """Wall-clock addition, or a walk across business windows."""
        if not business_hours_only:
            return start + timedelta(minutes=minutes)
        return (business_hours or BusinessHours()).add_minutes(start, minutes)

    @staticmethod
    def calculate_status(
        now: datetime,
        response_deadline: datetime,
        resolution_deadline: datetime,
        first_response_at: Optional[datetime],
        notify_before_minutes: int
    ) -> Tuple[str, bool, bool]:
        """
        Status the deadlines imply at ``now``.

        Returns:
            Tuple of (status, response_breached, resolution_breached)
        """
        resolution_breached = now > resolution_deadline
        response_breached = first_response_at is None and now > response_deadline

        if resolution_breached or response_breached:
            return SLAStatus.BREACHED, response_breached, resolution_breached

        warn_from = resolution_deadline - timedelta(minutes=notify_before_minutes)
        if now >= warn_from:
            return SLAStatus.AT_RISK, False, False

        return SLAStatus.ON_TRACK, False, False

    @staticmethod
    def escalate_status(current: str, computed: str) -> str:
        """Statuses only move towards breached."""
        if STATUS_RANK.get(computed, 0) > STATUS_RANK.get(current, 0):
            return computed
        return current

    @staticmethod
    def should_escalate(previous: str, current: str, last_escalated: Optional[str]) -> bool:
        """
        True on the first entry into at_risk or breached.

        ``last_escalated`` guards against re-notifying for a status that
        already produced an escalation.
        """
        if current == SLAStatus.ON_TRACK or current == previous:
            return False
        return STATUS_RANK[current] > STATUS_RANK.get(last_escalated, -1)


# ========== Automation Configuration (YAML) ==========

class BusinessHoursConfig(BaseModel):
    """Business window as written in the automation YAML file."""
    start: time = Field(default=time(9, 0))
    end: time = Field(default=time(17, 0))
    weekdays: List[int] = Field(default_factory=lambda: [0, 1, 2, 3, 4])
    timezone: str = Field(default="UTC")

    @field_validator("weekdays")
    @classmethod
    def validate_weekdays(cls, v: List[int]) -> List[int]:
        if not v or any(day < 0 or day > 6 for day in v):
            raise ValueError("weekdays must be a non-empty list of 0 (Mon) to 6 (Sun)")
        return sorted(set(v))

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone '{v}'")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "BusinessHoursConfig":
        if self.end <= self.start:
            raise ValueError("business hours end must be after start")
        return self

    def to_value_object(self) -> BusinessHours:
        return BusinessHours(
            start=self.start,
            end=self.end,
            weekdays=tuple(self.weekdays),
            timezone_name=self.timezone
        )


class DefaultSLAPolicyConfig(BaseModel):
    """SLA policy seeded into an empty policy table at startup."""
    name: str = Field(..., min_length=1)
    priority: str
    response_time_minutes: int = Field(..., ge=1)
    resolution_time_minutes: int = Field(..., ge=1)
    business_hours_only: bool = True
    escalation_enabled: bool = False
    escalation_user_id: Optional[str] = None
    notify_before_minutes: int = Field(default=30, ge=0)

    @field_validator("priority")
    @classmethod
    def validate_priority(cls, v: str) -> str:
        if v not in VALID_PRIORITIES:
            raise ValueError(f"priority must be one of {VALID_PRIORITIES}")
        return v


class AutomationConfig(BaseModel):
    """
    Automation configuration loaded from YAML.

    This is a value object - immutable and defined by its attributes.
    """
    business_hours: BusinessHoursConfig = Field(default_factory=BusinessHoursConfig)
    default_sla_policies: List[DefaultSLAPolicyConfig] = Field(default_factory=list)

    def get_business_hours(self) -> BusinessHours:
        return self.business_hours.to_value_object()
