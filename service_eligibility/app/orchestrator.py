"""
Evaluation orchestrator.

Owns the idempotency check, operator lookup and the atomic write of an
evaluation together with its EligibilityEvaluated outbox event.
"""

import time
import uuid
from typing import Optional

from shared.errors import InactiveOperatorError, NotFoundError, StorageError, UnknownReferenceDataError
from shared.logging import get_logger, set_journey_context
from shared.metrics import MetricsCollector
from shared.observability import ObservabilityManager
from shared.tracing import add_span_attributes, trace_operation
from .ports import EvaluationConflictError, EvaluationStore
from .rules.engine import INACTIVE_TOC_REASON, EligibilityEngine
from .rules.models import EligibilityEvaluation, EvaluationRequest, OutboxEvent

AGGREGATE_TYPE = "eligibility_evaluation"
EVALUATED_EVENT_TYPE = "EligibilityEvaluated"


def ineligible_reason(evaluation: EligibilityEvaluation) -> Optional[str]:
    """Metric label for why an evaluation was ineligible."""
    if evaluation.eligible:
        return None
    if evaluation.scheme is None:
        return "unknown_operator"
    if INACTIVE_TOC_REASON in evaluation.reasons:
        return "inactive_operator"
    if any(rule.startswith("RESTRICTION_") for rule in evaluation.applied_rules):
        return "restriction_blocked"
    if evaluation.segment_breakdown and any(s.notes for s in evaluation.segment_breakdown):
        return "all_segments_ineligible"
    return "below_threshold"


class EvaluationOrchestrator:
    """Runs evaluations against a store supplied per call."""

    def __init__(self, engine: EligibilityEngine,
                 metrics: Optional[MetricsCollector] = None,
                 observability: Optional[ObservabilityManager] = None):
        self.engine = engine
        self.metrics = metrics
        self.observability = observability
        self.logger = get_logger("eligibility.orchestrator")

    async def evaluate(self, request: EvaluationRequest, store: EvaluationStore,
                       correlation_id: Optional[str] = None) -> EligibilityEvaluation:
        """Synchronous evaluation. Unknown or inactive TOCs are errors."""
        start_time = time.time()
        set_journey_context(request.journey_id)

        with trace_operation("eligibility.evaluate", journey_id=request.journey_id,
                             toc_code=request.toc_code):
            existing = await self._find_existing(request.journey_id, store)
            if existing is not None:
                return existing

            operator = await store.get_operator(request.toc_code)
            if operator is None:
                raise UnknownReferenceDataError(
                    f"Unknown TOC code: {request.toc_code}",
                    details={"toc_code": request.toc_code}
                )
            if not operator.active:
                raise InactiveOperatorError(
                    f"TOC {request.toc_code} is not currently active",
                    details={"toc_code": request.toc_code}
                )

            evaluation = await self.engine.decide(request, operator, store)
            return await self._persist(evaluation, store, correlation_id, start_time)

    async def handle_delay_confirmed(self, request: EvaluationRequest, store: EvaluationStore,
                                     correlation_id: Optional[str] = None) -> EligibilityEvaluation:
        """Event-driven evaluation. Unknown or inactive TOCs are recorded as ineligible."""
        start_time = time.time()
        set_journey_context(request.journey_id)

        with trace_operation("eligibility.handle_delay_confirmed", journey_id=request.journey_id,
                             toc_code=request.toc_code):
            existing = await self._find_existing(request.journey_id, store)
            if existing is not None:
                return existing

            operator = await store.get_operator(request.toc_code)
            if operator is None:
                self.logger.warning("Unknown TOC on delay event", toc_code=request.toc_code,
                                    journey_id=request.journey_id)
                evaluation = self.engine.unknown_operator(request)
            elif not operator.active:
                self.logger.warning("Inactive TOC on delay event", toc_code=request.toc_code,
                                    journey_id=request.journey_id)
                evaluation = self.engine.inactive_operator(request, operator)
            else:
                evaluation = await self.engine.decide(request, operator, store)

            return await self._persist(evaluation, store, correlation_id, start_time)

    async def get(self, journey_id: str, store: EvaluationStore) -> EligibilityEvaluation:
        evaluation = await store.find_evaluation(journey_id)
        if evaluation is None:
            raise NotFoundError(
                f"No evaluation found for journey {journey_id}",
                details={"journey_id": journey_id}
            )
        return evaluation

    async def _find_existing(self, journey_id: str,
                             store: EvaluationStore) -> Optional[EligibilityEvaluation]:
        existing = await store.find_evaluation(journey_id)
        if existing is not None:
            add_span_attributes(idempotent_hit=True)
            self._business_event("eligibility_idempotent_hit", journey_id=journey_id)
        return existing

    async def _persist(self, evaluation: EligibilityEvaluation, store: EvaluationStore,
                       correlation_id: Optional[str], start_time: float) -> EligibilityEvaluation:
        event = OutboxEvent(
            event_id=str(uuid.uuid4()),
            aggregate_type=AGGREGATE_TYPE,
            aggregate_id=evaluation.journey_id,
            event_type=EVALUATED_EVENT_TYPE,
            payload=evaluation.outbox_payload(correlation_id),
        )

        try:
            async with store.transaction() as writer:
                await writer.insert_evaluation(evaluation)
                await writer.insert_outbox_event(event)
        except EvaluationConflictError:
            winner = await store.find_evaluation(evaluation.journey_id)
            if winner is None:
                raise StorageError(
                    "Evaluation conflict but no committed evaluation found",
                    details={"journey_id": evaluation.journey_id}
                )
            self.logger.info("Concurrent evaluation lost insert race", journey_id=evaluation.journey_id)
            return winner

        if self.metrics:
            self.metrics.record_evaluation(
                toc_code=evaluation.toc_code,
                scheme=evaluation.scheme.value if evaluation.scheme else "UNKNOWN",
                eligible=evaluation.eligible,
                duration=time.time() - start_time,
                reason=ineligible_reason(evaluation),
            )
            self.metrics.increment_counter("outbox_events_written_total", event_type=event.event_type)

        self._business_event(
            "eligibility_evaluated",
            journey_id=evaluation.journey_id,
            toc_code=evaluation.toc_code,
            eligible=evaluation.eligible,
            compensation_pence=evaluation.compensation_pence,
            correlation_id=correlation_id,
        )
        return evaluation

    def _business_event(self, event_type: str, **kwargs):
        if self.observability:
            self.observability.log_business_event(event_type, **kwargs)
        else:
            self.logger.info("Business event", event_type=event_type, **kwargs)
