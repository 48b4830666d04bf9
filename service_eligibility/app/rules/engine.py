"""
Eligibility decision engine.

Composes band resolution, restriction validation, multi-TOC apportionment
and sleeper capping into a single decision for one journey.
"""

import uuid
from typing import List, Optional

from shared.errors import ValidationError
from shared.logging import get_logger
from ..ports import ReferenceDataStore
from .apportioner import MultiOperatorApportioner
from .bands import CompensationBandResolver
from .models import EligibilityEvaluation, EvaluationRequest, OperatorRulepack, network_local_time
from .restrictions import RestrictionValidator
from .sleeper import SleeperFareCapper

MULTI_TOC_RULE = "MULTI_TOC_APPORTIONMENT"
SLEEPER_CAP_RULE = "SLEEPER_SEATED_CAP"
UNKNOWN_TOC_REASON = "Unknown TOC"
INACTIVE_TOC_REASON = "TOC is not active for delay repay claims"


def restriction_rule(code: str) -> str:
    return f"RESTRICTION_{code}_BLOCKED"


def compute_delay_minutes(request: EvaluationRequest) -> int:
    """Whole minutes late at arrival; early arrivals count as zero."""
    if request.delay_minutes is not None:
        return max(0, request.delay_minutes)

    try:
        elapsed = request.actual_arrival - request.scheduled_arrival
    except TypeError:
        raise ValidationError(
            "scheduled_arrival and actual_arrival must both carry a UTC offset or neither",
            details={"journey_id": request.journey_id}
        )
    return max(0, int(elapsed.total_seconds() // 60))


class EligibilityEngine:
    """Decides eligibility for a journey whose operator is already known."""

    def __init__(self, resolver: CompensationBandResolver,
                 validator: Optional[RestrictionValidator] = None,
                 capper: Optional[SleeperFareCapper] = None,
                 apportioner: Optional[MultiOperatorApportioner] = None):
        self.resolver = resolver
        self.validator = validator or RestrictionValidator()
        self.capper = capper or SleeperFareCapper()
        self.apportioner = apportioner or MultiOperatorApportioner(resolver)
        self.logger = get_logger("eligibility.engine")

    async def decide(self, request: EvaluationRequest, operator: OperatorRulepack,
                     reference: ReferenceDataStore) -> EligibilityEvaluation:
        """Evaluate an active operator's journey. Lookups only, nothing is written."""
        scheme = operator.scheme
        delay = compute_delay_minutes(request)
        band = self.resolver.resolve(scheme, delay)

        reasons: List[str] = []
        applied_rules: List[str] = []

        if band is None:
            eligible = False
            percentage = 0
            compensation = 0
            reasons.append(
                f"Delay of {delay} minutes does not meet {scheme.value} "
                f"{scheme.threshold_minutes}-minute threshold"
            )
        else:
            eligible = True
            percentage = band.percentage
            compensation = (request.ticket_fare_pence * percentage) // 100
            reasons.append(
                f"Delay of {delay} minutes qualifies for {percentage}% refund under {scheme.value} scheme"
            )
            applied_rules.append(band.rule_id)

        evaluation = EligibilityEvaluation(
            evaluation_id=str(uuid.uuid4()),
            journey_id=request.journey_id,
            toc_code=request.toc_code,
            scheme=scheme,
            delay_minutes=delay,
            eligible=eligible,
            compensation_percentage=percentage,
            compensation_pence=compensation,
            ticket_fare_pence=request.ticket_fare_pence,
            reasons=reasons,
            applied_rules=applied_rules,
        )

        if self._apply_restrictions(request, evaluation):
            return evaluation

        if request.journey_segments:
            await self._apportion(request, evaluation, reference)
        elif evaluation.eligible and request.is_sleeper and request.route_code and request.sleeper_class:
            await self._cap_sleeper(request, evaluation, reference)

        self.logger.debug(
            "Eligibility decided",
            journey_id=request.journey_id,
            toc_code=request.toc_code,
            scheme=scheme.value,
            delay_minutes=delay,
            eligible=evaluation.eligible,
            compensation_pence=evaluation.compensation_pence
        )
        return evaluation

    def _apply_restrictions(self, request: EvaluationRequest, evaluation: EligibilityEvaluation) -> bool:
        """Return True when a restriction blocks the journey."""
        codes = request.ticket_restrictions
        if not codes or request.scheduled_departure is None:
            return False

        departure = network_local_time(request.scheduled_departure)
        result = self.validator.validate(
            codes,
            departure.date().isoformat(),
            departure.strftime("%H:%M"),
        )

        if not result.valid:
            evaluation.eligible = False
            evaluation.compensation_percentage = 0
            evaluation.compensation_pence = 0
            evaluation.reasons.append(result.reason)
            evaluation.applied_rules.append(restriction_rule(result.blocking_restriction))
            return True

        if self.validator.unknown_codes(codes):
            evaluation.reasons.append(result.notes)
        return False

    async def _apportion(self, request: EvaluationRequest, evaluation: EligibilityEvaluation,
                         reference: ReferenceDataStore):
        result = await self.apportioner.apportion(
            request.journey_id,
            evaluation.delay_minutes,
            request.ticket_fare_pence,
            request.journey_segments,
            reference,
        )
        segments = result.segment_eligibilities

        evaluation.segment_breakdown = segments
        evaluation.eligible = any(s.eligible for s in segments)
        evaluation.compensation_pence = result.total_compensation_pence
        evaluation.compensation_percentage = max(s.compensation_percentage for s in segments)
        evaluation.reasons.append(
            f"Compensation apportioned across {len(segments)} segments: "
            f"{result.total_compensation_pence} pence"
        )
        evaluation.applied_rules.append(MULTI_TOC_RULE)

    async def _cap_sleeper(self, request: EvaluationRequest, evaluation: EligibilityEvaluation,
                           reference: ReferenceDataStore):
        travel_date = request.travel_date()
        if travel_date is None:
            evaluation.reasons.append("Sleeper cap skipped: journey date unknown")
            return

        result = await self.capper.cap(
            request.route_code,
            request.sleeper_class,
            request.ticket_fare_pence,
            evaluation.compensation_pence,
            travel_date,
            reference,
            percentage=evaluation.compensation_percentage,
        )

        if result.cap_applied:
            evaluation.compensation_pence = result.capped_compensation_pence
            evaluation.reasons.append(
                f"Sleeper compensation capped against seated fare of {result.seated_equivalent_pence} pence"
            )
            evaluation.applied_rules.append(SLEEPER_CAP_RULE)
        elif result.notes:
            evaluation.reasons.append(result.notes)

    def unknown_operator(self, request: EvaluationRequest) -> EligibilityEvaluation:
        """Ineligible outcome for a TOC with no rulepack."""
        return self._ineligible(request, None, UNKNOWN_TOC_REASON)

    def inactive_operator(self, request: EvaluationRequest,
                          operator: OperatorRulepack) -> EligibilityEvaluation:
        """Ineligible outcome for a TOC that is not accepting claims."""
        return self._ineligible(request, operator, INACTIVE_TOC_REASON)

    @staticmethod
    def _ineligible(request: EvaluationRequest, operator: Optional[OperatorRulepack],
                    reason: str) -> EligibilityEvaluation:
        return EligibilityEvaluation(
            evaluation_id=str(uuid.uuid4()),
            journey_id=request.journey_id,
            toc_code=request.toc_code,
            scheme=operator.scheme if operator else None,
            delay_minutes=compute_delay_minutes(request),
            eligible=False,
            compensation_percentage=0,
            compensation_pence=0,
            ticket_fare_pence=request.ticket_fare_pence,
            reasons=[reason],
            applied_rules=[],
        )
