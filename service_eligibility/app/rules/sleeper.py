"""
Sleeper fare capping.

Sleeper tickets (Caledonian Sleeper, Night Riviera) are compensated against
the seated equivalent fare for the route rather than the full berth fare.
"""

from datetime import date
from typing import Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from ..ports import ReferenceDataStore
from .models import CappedResult


class SleeperFareCapper:
    """Bounds sleeper compensation by the seated fare effective on the journey date."""

    def __init__(self):
        self.logger = get_logger("eligibility.rules.sleeper")

    async def cap(self, route_code: str, sleeper_class: str, sleeper_fare_pence: int,
                  calculated_compensation_pence: int, journey_date: date,
                  reference: ReferenceDataStore,
                  percentage: Optional[int] = None) -> CappedResult:
        fare = await reference.find_seated_fare(route_code, sleeper_class, journey_date)

        if fare is None:
            return self._uncapped(calculated_compensation_pence,
                                  notes="No seated fare equivalent found for route/class")

        if fare.has_ended_before(journey_date):
            return self._uncapped(calculated_compensation_pence,
                                  notes="Expired fare equivalent - using original calculation")

        seated = fare.seated_equivalent_pence

        # A supplied percentage always caps proportionally, even below the seated fare
        if percentage is not None and percentage > 0:
            capped = (seated * percentage) // 100
            self.logger.debug(
                "Proportional sleeper cap applied",
                route_code=route_code,
                sleeper_class=sleeper_class,
                percentage=percentage,
                capped_compensation_pence=capped
            )
            return CappedResult(
                capped_compensation_pence=capped,
                cap_applied=True,
                original_compensation_pence=calculated_compensation_pence,
                seated_equivalent_pence=seated,
            )

        if calculated_compensation_pence <= seated:
            return self._uncapped(calculated_compensation_pence, seated_equivalent_pence=seated)

        if sleeper_fare_pence <= 0:
            raise ValidationError(
                "Sleeper fare must be positive to derive a compensation percentage",
                details={"sleeper_fare_pence": sleeper_fare_pence}
            )

        # floor(seated * (compensation / fare)) without going through floats
        capped = (seated * calculated_compensation_pence) // sleeper_fare_pence
        return CappedResult(
            capped_compensation_pence=capped,
            cap_applied=True,
            original_compensation_pence=calculated_compensation_pence,
            seated_equivalent_pence=seated,
        )

    @staticmethod
    def _uncapped(compensation_pence: int, notes: Optional[str] = None,
                  seated_equivalent_pence: Optional[int] = None) -> CappedResult:
        return CappedResult(
            capped_compensation_pence=compensation_pence,
            cap_applied=False,
            original_compensation_pence=compensation_pence,
            seated_equivalent_pence=seated_equivalent_pence,
            notes=notes,
        )
