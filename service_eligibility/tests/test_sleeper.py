"""
Unit tests for sleeper fare capping.
"""

import pytest
from datetime import date

from shared.errors import ValidationError
from service_eligibility.app.rules.models import SeatedFareEquivalent
from service_eligibility.app.rules.sleeper import SleeperFareCapper


JOURNEY_DATE = date(2026, 1, 15)


def fare(seated: int, effective_from: date = date(2025, 1, 1), effective_to=None,
         route: str = "EUS-INV", sleeper_class: str = "standard"):
    return SeatedFareEquivalent(
        route_code=route,
        sleeper_class=sleeper_class,
        seated_equivalent_pence=seated,
        effective_from=effective_from,
        effective_to=effective_to,
    )


class TestSleeperFareCapper:
    """Test cases for SleeperFareCapper."""

    @pytest.fixture
    def capper(self):
        return SleeperFareCapper()

    @pytest.mark.asyncio
    async def test_no_fare_row_leaves_compensation_unchanged(self, capper, store_factory):
        reference = store_factory(fares=[])
        result = await capper.cap("EUS-INV", "standard", 20000, 10000, JOURNEY_DATE, reference)

        assert result.cap_applied is False
        assert result.capped_compensation_pence == 10000
        assert result.original_compensation_pence == 10000
        assert result.notes == "No seated fare equivalent found for route/class"

    @pytest.mark.asyncio
    async def test_full_refund_capped_at_seated_fare(self, capper, store_factory):
        reference = store_factory(fares=[fare(2000)])
        result = await capper.cap("EUS-INV", "standard", 5000, 5000, JOURNEY_DATE, reference,
                                  percentage=100)

        assert result.cap_applied is True
        assert result.capped_compensation_pence == 2000
        assert result.original_compensation_pence == 5000
        assert result.seated_equivalent_pence == 2000

    @pytest.mark.parametrize("seated,percentage,expected", [
        (8500, 25, 2125),
        (8500, 50, 4250),
        (4000, 50, 2000),
        (3333, 25, 833),
    ])
    @pytest.mark.asyncio
    async def test_percentage_applied_to_seated_fare(self, capper, store_factory, seated, percentage, expected):
        reference = store_factory(fares=[fare(seated)])
        result = await capper.cap("EUS-INV", "standard", 20000, 20000 * percentage // 100,
                                  JOURNEY_DATE, reference, percentage=percentage)

        assert result.cap_applied is True
        assert result.capped_compensation_pence == expected

    @pytest.mark.asyncio
    async def test_percentage_caps_even_below_seated_fare(self, capper, store_factory):
        reference = store_factory(fares=[fare(8000)])
        result = await capper.cap("EUS-INV", "standard", 4000, 1000, JOURNEY_DATE, reference,
                                  percentage=25)

        assert result.cap_applied is True
        assert result.capped_compensation_pence == 2000

    @pytest.mark.asyncio
    async def test_expired_fare_uses_original_calculation(self, capper, store_factory):
        reference = store_factory(fares=[fare(2000, effective_to=date(2025, 12, 31))])
        result = await capper.cap("EUS-INV", "standard", 24000, 12000, date(2026, 3, 1), reference,
                                  percentage=50)

        assert result.cap_applied is False
        assert result.capped_compensation_pence == 12000
        assert result.notes == "Expired fare equivalent - using original calculation"

    @pytest.mark.asyncio
    async def test_without_percentage_compensation_within_seated_is_uncapped(self, capper, store_factory):
        reference = store_factory(fares=[fare(5000)])
        result = await capper.cap("EUS-INV", "standard", 10000, 5000, JOURNEY_DATE, reference)

        assert result.cap_applied is False
        assert result.capped_compensation_pence == 5000
        assert result.seated_equivalent_pence == 5000

    @pytest.mark.asyncio
    async def test_without_percentage_scales_by_fare_ratio(self, capper, store_factory):
        reference = store_factory(fares=[fare(3000)])
        # 3000 * 7000 / 10000 = 2100
        result = await capper.cap("EUS-INV", "standard", 10000, 7000, JOURNEY_DATE, reference)

        assert result.cap_applied is True
        assert result.capped_compensation_pence == 2100

    @pytest.mark.asyncio
    async def test_fare_ratio_floors(self, capper, store_factory):
        reference = store_factory(fares=[fare(1000)])
        # 1000 * 2000 / 3000 = 666.67
        result = await capper.cap("EUS-INV", "standard", 3000, 2000, JOURNEY_DATE, reference)

        assert result.capped_compensation_pence == 666

    @pytest.mark.asyncio
    async def test_zero_sleeper_fare_rejected(self, capper, store_factory):
        reference = store_factory(fares=[fare(1000)])
        with pytest.raises(ValidationError):
            await capper.cap("EUS-INV", "standard", 0, 2000, JOURNEY_DATE, reference)

    @pytest.mark.asyncio
    async def test_latest_effective_row_is_used(self, capper, store_factory):
        reference = store_factory(fares=[
            fare(2000, effective_from=date(2024, 1, 1)),
            fare(3000, effective_from=date(2025, 6, 1)),
            fare(9000, effective_from=date(2026, 6, 1)),
        ])
        result = await capper.cap("EUS-INV", "standard", 10000, 10000, JOURNEY_DATE, reference,
                                  percentage=100)

        assert result.seated_equivalent_pence == 3000
        assert result.capped_compensation_pence == 3000

    @pytest.mark.asyncio
    async def test_other_sleeper_class_not_matched(self, capper, store_factory):
        reference = store_factory(fares=[fare(2000, sleeper_class="club")])
        result = await capper.cap("EUS-INV", "standard", 10000, 10000, JOURNEY_DATE, reference,
                                  percentage=100)

        assert result.cap_applied is False
