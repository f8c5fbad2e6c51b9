"""
Tests for business-hours arithmetic and SLA status calculation.
"""

from datetime import datetime, time, timedelta, timezone

import pytest
from pydantic import ValidationError

from deskflow.sla.domain import AutomationConfig, BusinessHours, BusinessHoursConfig, SLACalculator


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


class TestBusinessHours:
    """Adding minutes across the working window."""

    def test_within_the_same_day(self):
        # Wednesday
        assert BusinessHours().add_minutes(utc(2024, 1, 10, 10, 0), 90) == utc(2024, 1, 10, 11, 30)

    def test_friday_afternoon_rolls_over_the_weekend(self):
        friday = utc(2024, 1, 12, 16, 30)

        assert BusinessHours().add_minutes(friday, 120) == utc(2024, 1, 15, 10, 30)

    def test_deadline_can_end_exactly_at_closing(self):
        assert BusinessHours().add_minutes(utc(2024, 1, 10, 16, 0), 60) == utc(2024, 1, 10, 17, 0)

    def test_start_before_opening(self):
        assert BusinessHours().add_minutes(utc(2024, 1, 10, 7, 15), 30) == utc(2024, 1, 10, 9, 30)

    def test_start_on_weekend(self):
        saturday = utc(2024, 1, 13, 12, 0)

        assert BusinessHours().add_minutes(saturday, 60) == utc(2024, 1, 15, 10, 0)

    def test_multi_day_budget(self):
        # Two full eight-hour days from Monday opening
        assert BusinessHours().add_minutes(utc(2024, 1, 15, 9, 0), 960) == utc(2024, 1, 16, 17, 0)

    def test_is_business_time(self):
        hours = BusinessHours()
        assert hours.is_business_time(utc(2024, 1, 10, 9, 0))
        assert not hours.is_business_time(utc(2024, 1, 10, 17, 0))
        assert not hours.is_business_time(utc(2024, 1, 13, 12, 0))

    def test_local_timezone_window(self):
        hours = BusinessHours(timezone_name="Europe/Berlin")
        # 08:00 UTC is 09:00 in Berlin (winter time)
        start = utc(2024, 1, 10, 8, 0)

        assert hours.add_minutes(start, 60) == utc(2024, 1, 10, 9, 0)


class TestSLACalculator:

    def test_wall_clock_deadline(self):
        start = utc(2024, 1, 13, 23, 30)

        assert SLACalculator.calculate_deadline(start, 60, False) == start + timedelta(minutes=60)

    def test_business_hours_deadline(self):
        assert SLACalculator.calculate_deadline(utc(2024, 1, 12, 16, 30), 120, True) == utc(2024, 1, 15, 10, 30)

    def test_status_on_track(self):
        now = utc(2024, 1, 10, 10, 0)
        status, response, resolution = SLACalculator.calculate_status(
            now, now + timedelta(minutes=30), now + timedelta(hours=4), None, 30
        )
        assert (status, response, resolution) == ("on_track", False, False)

    def test_status_at_risk_inside_warning_window(self):
        now = utc(2024, 1, 10, 10, 0)
        status, _, _ = SLACalculator.calculate_status(
            now, now - timedelta(minutes=5), now + timedelta(minutes=20), now - timedelta(minutes=10), 30
        )
        assert status == "at_risk"

    def test_missed_response_is_a_breach(self):
        now = utc(2024, 1, 10, 10, 0)
        status, response, resolution = SLACalculator.calculate_status(
            now, now - timedelta(minutes=1), now + timedelta(hours=4), None, 30
        )
        assert (status, response, resolution) == ("breached", True, False)

    def test_responded_ticket_ignores_response_deadline(self):
        now = utc(2024, 1, 10, 10, 0)
        status, response, _ = SLACalculator.calculate_status(
            now, now - timedelta(minutes=1), now + timedelta(hours=4), now - timedelta(minutes=2), 30
        )
        assert status == "on_track"
        assert response is False

    def test_status_never_moves_back(self):
        assert SLACalculator.escalate_status("breached", "on_track") == "breached"
        assert SLACalculator.escalate_status("on_track", "at_risk") == "at_risk"

    @pytest.mark.parametrize("previous,current,last,expected", [
        ("on_track", "at_risk", None, True),
        ("at_risk", "breached", "at_risk", True),
        ("at_risk", "at_risk", "at_risk", False),
        ("on_track", "on_track", None, False),
        ("on_track", "at_risk", "breached", False),
    ])
    def test_should_escalate(self, previous, current, last, expected):
        assert SLACalculator.should_escalate(previous, current, last) is expected


class TestAutomationConfig:

    def test_defaults(self):
        hours = AutomationConfig().get_business_hours()

        assert hours.start == time(9, 0)
        assert hours.weekdays == (0, 1, 2, 3, 4)

    def test_window_must_be_ordered(self):
        with pytest.raises(ValidationError):
            BusinessHoursConfig(start=time(17, 0), end=time(9, 0))

    def test_unknown_timezone_is_rejected(self):
        with pytest.raises(ValidationError):
            BusinessHoursConfig(timezone="Mars/Olympus")

    def test_default_policy_priority_is_validated(self):
        with pytest.raises(ValidationError):
            AutomationConfig.model_validate({
                "default_sla_policies": [{
                    "name": "x", "priority": "urgent",
                    "response_time_minutes": 10, "resolution_time_minutes": 20
                }]
            })
