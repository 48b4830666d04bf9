"""
Ticket restriction validation.

Peak windows are the London weekday peaks, half-open:
morning 06:30-09:30, evening 16:00-19:00.
"""

import re
from datetime import date
from typing import List, Optional, Tuple

from shared.errors import ValidationError
from shared.logging import get_logger
from .models import RestrictionValidationResult

_DATE_PATTERN = re.compile(r"^[0-9]{4}-[0-9]{2}-[0-9]{2}$")
_TIME_PATTERN = re.compile(r"^[0-9]{2}:[0-9]{2}$")

# England & Wales bank holidays, treated as weekends for restriction purposes.
UK_BANK_HOLIDAYS = frozenset(date.fromisoformat(d) for d in (
    "2025-01-01", "2025-04-18", "2025-04-21", "2025-05-05",
    "2025-05-26", "2025-08-25", "2025-12-25", "2025-12-26",
    "2026-01-01", "2026-04-03", "2026-04-06", "2026-05-04",
    "2026-05-25", "2026-08-31", "2026-12-25", "2026-12-28",
    "2027-01-01", "2027-03-26", "2027-03-29", "2027-05-03",
    "2027-05-31", "2027-08-30", "2027-12-27", "2027-12-28",
    "2028-01-03", "2028-04-14", "2028-04-17", "2028-05-01",
    "2028-05-29", "2028-08-28", "2028-12-25", "2028-12-26",
))

PEAK_WINDOWS: Tuple[Tuple[int, int], ...] = (
    (6 * 60 + 30, 9 * 60 + 30),
    (16 * 60, 19 * 60),
)

WEEKEND_ONLY = "WE"
PEAK_BLOCKED_REASONS = {
    "OP": "Off-peak ticket cannot be used during peak hours",
    "SP": "Super off-peak ticket cannot be used during peak hours",
    "RE": "Restricted ticket cannot be used during peak hours",
    "XA": "Advance ticket cannot be used during peak hours",
}
NEVER_BLOCKED = frozenset({"AT", "1F"})
KNOWN_CODES = frozenset({WEEKEND_ONLY}) | frozenset(PEAK_BLOCKED_REASONS) | NEVER_BLOCKED


def parse_journey_date(value: str) -> date:
    """Parse a strict YYYY-MM-DD string that names a real calendar day."""
    if not isinstance(value, str) or not _DATE_PATTERN.match(value):
        raise ValidationError("Invalid journey_date format", details={"journey_date": value})
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise ValidationError("Invalid journey_date format", details={"journey_date": value})


def parse_departure_time(value: str) -> int:
    """Parse a strict HH:MM 24-hour string into minutes after midnight."""
    if not isinstance(value, str) or not _TIME_PATTERN.match(value):
        raise ValidationError("Invalid departure_time format", details={"departure_time": value})
    hours, minutes = (int(part) for part in value.split(":"))
    if hours > 23 or minutes > 59:
        raise ValidationError("Invalid departure_time format", details={"departure_time": value})
    return hours * 60 + minutes


def is_weekend_or_bank_holiday(journey_date: date) -> bool:
    return journey_date.weekday() >= 5 or journey_date in UK_BANK_HOLIDAYS


def is_peak_time(minutes_after_midnight: int, weekend: bool) -> bool:
    if weekend:
        return False
    return any(start <= minutes_after_midnight < end for start, end in PEAK_WINDOWS)


class RestrictionValidator:
    """Decides whether a ticket's restriction codes permit travel at a given date and time."""

    def __init__(self):
        self.logger = get_logger("eligibility.rules.restrictions")

    def validate(self, restriction_codes: List[str], journey_date: str,
                 departure_time: str) -> RestrictionValidationResult:
        travel_date = parse_journey_date(journey_date)
        departure_minutes = parse_departure_time(departure_time)

        if not restriction_codes:
            return RestrictionValidationResult(
                valid=True,
                restrictions_checked=[],
                notes="No restrictions to validate",
            )

        weekend = is_weekend_or_bank_holiday(travel_date)
        peak = is_peak_time(departure_minutes, weekend)

        for code in restriction_codes:
            reason = self._blocking_reason(code, weekend, peak)
            if reason is not None:
                self.logger.debug(
                    "Restriction blocks travel",
                    code=code,
                    journey_date=journey_date,
                    departure_time=departure_time
                )
                return RestrictionValidationResult(
                    valid=False,
                    restrictions_checked=list(restriction_codes),
                    blocking_restriction=code,
                    reason=reason,
                )

        return RestrictionValidationResult(
            valid=True,
            restrictions_checked=list(restriction_codes),
            notes=self._build_notes(restriction_codes),
        )

    def _blocking_reason(self, code: str, weekend: bool, peak: bool) -> Optional[str]:
        if code == WEEKEND_ONLY:
            return None if weekend else "Ticket is valid for weekend travel only"
        if code in PEAK_BLOCKED_REASONS:
            return PEAK_BLOCKED_REASONS[code] if peak else None
        # AT, 1F and unrecognised codes never block
        return None

    @staticmethod
    def unknown_codes(codes: List[str]) -> List[str]:
        return [code for code in codes if code not in KNOWN_CODES]

    def _build_notes(self, codes: List[str]) -> str:
        unknown = self.unknown_codes(codes)
        if unknown:
            return f"Unknown restriction codes (allowed): {', '.join(unknown)}"
        return f"All {len(codes)} restriction(s) validated successfully"
