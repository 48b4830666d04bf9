"""
Unit tests for ticket restriction validation.
"""

import pytest

from shared.errors import ValidationError
from service_eligibility.app.rules.restrictions import RestrictionValidator

WEEKDAY = "2026-01-14"     # Wednesday
SATURDAY = "2026-01-17"
BANK_HOLIDAY = "2026-05-04"  # Early May bank holiday, a Monday


class TestRestrictionValidator:
    """Test cases for RestrictionValidator."""

    @pytest.fixture
    def validator(self):
        return RestrictionValidator()

    def test_empty_codes_are_valid(self, validator):
        result = validator.validate([], WEEKDAY, "08:00")
        assert result.valid is True
        assert result.restrictions_checked == []
        assert result.notes == "No restrictions to validate"

    @pytest.mark.parametrize("code", ["OP", "SP", "RE", "XA"])
    def test_peak_restricted_codes_blocked_in_morning_peak(self, validator, code):
        result = validator.validate([code], WEEKDAY, "07:45")
        assert result.valid is False
        assert result.blocking_restriction == code
        assert "peak hours" in result.reason

    @pytest.mark.parametrize("departure,valid", [
        ("06:29", True),
        ("06:30", False),
        ("09:29", False),
        ("09:30", True),
        ("15:59", True),
        ("16:00", False),
        ("18:59", False),
        ("19:00", True),
    ])
    def test_peak_window_boundaries(self, validator, departure, valid):
        assert validator.validate(["OP"], WEEKDAY, departure).valid is valid

    @pytest.mark.parametrize("journey_date", [SATURDAY, BANK_HOLIDAY])
    def test_off_peak_allowed_at_peak_time_on_weekend_or_bank_holiday(self, validator, journey_date):
        assert validator.validate(["OP"], journey_date, "08:00").valid is True

    def test_weekend_only_blocked_on_weekday(self, validator):
        result = validator.validate(["WE"], WEEKDAY, "11:00")
        assert result.valid is False
        assert result.blocking_restriction == "WE"
        assert result.reason == "Ticket is valid for weekend travel only"

    @pytest.mark.parametrize("journey_date", [SATURDAY, "2026-01-18", "2026-12-25"])
    def test_weekend_only_allowed_on_weekend_and_holidays(self, validator, journey_date):
        assert validator.validate(["WE"], journey_date, "08:00").valid is True

    @pytest.mark.parametrize("code", ["AT", "1F"])
    def test_anytime_and_first_class_never_block(self, validator, code):
        result = validator.validate([code], WEEKDAY, "08:00")
        assert result.valid is True
        assert result.notes == "All 1 restriction(s) validated successfully"

    def test_unknown_codes_allowed_and_listed(self, validator):
        result = validator.validate(["ZZ", "AT", "Q9"], WEEKDAY, "08:00")
        assert result.valid is True
        assert result.notes == "Unknown restriction codes (allowed): ZZ, Q9"

    def test_first_blocking_code_wins(self, validator):
        result = validator.validate(["AT", "WE", "OP"], WEEKDAY, "08:00")
        assert result.blocking_restriction == "WE"
        assert result.restrictions_checked == ["AT", "WE", "OP"]

    @pytest.mark.parametrize("journey_date", [
        "2026-1-14", "14/01/2026", "2026-02-30", "2025-02-29", "", "2026-01-14T08:00",
    ])
    def test_invalid_journey_date(self, validator, journey_date):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(["OP"], journey_date, "08:00")
        assert exc_info.value.message == "Invalid journey_date format"

    def test_leap_day_accepted(self, validator):
        assert validator.validate(["OP"], "2028-02-29", "12:00").valid is True

    @pytest.mark.parametrize("departure", ["8:00", "24:00", "12:60", "0800", "noon", "12:00:00"])
    def test_invalid_departure_time(self, validator, departure):
        with pytest.raises(ValidationError) as exc_info:
            validator.validate(["OP"], WEEKDAY, departure)
        assert exc_info.value.message == "Invalid departure_time format"

    def test_format_checked_even_without_codes(self, validator):
        with pytest.raises(ValidationError):
            validator.validate([], "not-a-date", "08:00")
