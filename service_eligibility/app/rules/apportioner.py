"""
Multi-TOC fare apportionment.

For split-ticket journeys across several train operating companies, each
segment is evaluated against its own TOC's scheme independently.
"""

from typing import List

from shared.errors import ValidationError
from shared.logging import get_logger
from ..ports import OperatorLookup
from .bands import CompensationBandResolver
from .models import ApportionmentResult, JourneySegment, SegmentEligibility


class MultiOperatorApportioner:
    """Splits a journey's fare across segments and evaluates each one on its own."""

    def __init__(self, resolver: CompensationBandResolver):
        self.resolver = resolver
        self.logger = get_logger("eligibility.rules.apportioner")

    async def apportion(self, journey_id: str, delay_minutes: int, total_fare_pence: int,
                        segments: List[JourneySegment],
                        operators: OperatorLookup) -> ApportionmentResult:
        self._validate(total_fare_pence, segments)

        results = [await self._evaluate_segment(index, segment, delay_minutes, operators)
                   for index, segment in enumerate(segments)]
        results.sort(key=lambda r: r.segment_order)

        total = sum(r.compensation_pence for r in results)

        self.logger.debug(
            "Journey apportioned",
            journey_id=journey_id,
            segments=len(results),
            total_compensation_pence=total
        )

        return ApportionmentResult(
            journey_id=journey_id,
            segment_eligibilities=results,
            total_compensation_pence=total,
        )

    def _validate(self, total_fare_pence: int, segments: List[JourneySegment]) -> None:
        if not segments:
            raise ValidationError("At least one journey segment is required")

        fare_sum = sum(s.fare_portion_pence for s in segments)
        if fare_sum != total_fare_pence:
            raise ValidationError(
                "Fare portions do not sum to total fare",
                details={"fare_portion_sum": fare_sum, "total_fare_pence": total_fare_pence}
            )

    async def _evaluate_segment(self, index: int, segment: JourneySegment, delay_minutes: int,
                                operators: OperatorLookup) -> SegmentEligibility:
        order = segment.segment_order if segment.segment_order is not None else index
        rulepack = await operators.get_operator(segment.toc_code)

        if rulepack is None:
            return SegmentEligibility(
                toc_code=segment.toc_code,
                segment_order=order,
                fare_portion_pence=segment.fare_portion_pence,
                eligible=False,
                compensation_percentage=0,
                compensation_pence=0,
                notes="Unknown TOC code",
            )

        if not rulepack.active:
            return SegmentEligibility(
                toc_code=segment.toc_code,
                segment_order=order,
                fare_portion_pence=segment.fare_portion_pence,
                eligible=False,
                compensation_percentage=0,
                compensation_pence=0,
                scheme=rulepack.scheme,
                notes="TOC is inactive for delay repay claims",
            )

        band = self.resolver.resolve(rulepack.scheme, delay_minutes)
        percentage = band.percentage if band else 0

        return SegmentEligibility(
            toc_code=segment.toc_code,
            segment_order=order,
            fare_portion_pence=segment.fare_portion_pence,
            eligible=percentage > 0,
            compensation_percentage=percentage,
            compensation_pence=(segment.fare_portion_pence * percentage) // 100,
            scheme=rulepack.scheme,
        )
