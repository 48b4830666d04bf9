"""
Handler for JourneyDelayConfirmed events.

Malformed events are logged and dropped. Storage failures are retried with
backoff and then raised so the consumer redelivers the message; a repeated
event is harmless because evaluations are idempotent per journey_id.
"""

import functools
import json
from typing import Optional

from pydantic import ValidationError as PayloadValidationError

from shared.base_service import CORRELATION_HEADER
from shared.errors import StorageError, ValidationError
from shared.logging import clear_context, set_correlation_id
from shared.observability import ObservabilityManager
from shared.retry import RetryConfig, RetryError, retry_async
from ..kafka.consumer import KafkaMessage
from ..orchestrator import EvaluationOrchestrator
from ..persistence.postgres import PostgreSQLPersistence
from ..rules.models import EligibilityEvaluation, EvaluationRequest, JourneyDelayConfirmedEvent

EVENT_TYPE = "JourneyDelayConfirmed"


class JourneyDelayConfirmedHandler:
    """Turns delay confirmations into persisted evaluations."""

    def __init__(self, orchestrator: EvaluationOrchestrator, persistence: PostgreSQLPersistence,
                 observability: ObservabilityManager, retry_config: Optional[RetryConfig] = None):
        self.orchestrator = orchestrator
        self.persistence = persistence
        self.observability = observability
        self.retry_config = retry_config or RetryConfig()

    async def handle_message(self, message: KafkaMessage) -> Optional[EligibilityEvaluation]:
        event = self._parse(message)
        if event is None:
            return None

        correlation_id = set_correlation_id(event.correlation_id or message.header(CORRELATION_HEADER))
        try:
            request = event.payload.to_request()
            return await retry_async(
                functools.partial(self._evaluate, request, correlation_id),
                (StorageError,),
                self.retry_config,
                name="handle_delay_confirmed",
                journey_id=request.journey_id,
                event_id=event.event_id
            )

        except (PayloadValidationError, ValidationError) as e:
            self._drop(message, "invalid_payload", str(e), event_id=event.event_id)
            return None

        except RetryError as e:
            self.observability.log_error(
                "delay_event_failed",
                str(e.last_exception),
                event_id=event.event_id,
                journey_id=request.journey_id,
                attempts=e.attempts
            )
            raise

        finally:
            clear_context()

    async def _evaluate(self, request: EvaluationRequest, correlation_id: str) -> EligibilityEvaluation:
        async with self.persistence.acquire() as store:
            return await self.orchestrator.handle_delay_confirmed(request, store, correlation_id)

    def _parse(self, message: KafkaMessage) -> Optional[JourneyDelayConfirmedEvent]:
        if not message.value:
            self._drop(message, "empty_message", "Message has no value")
            return None

        try:
            event = JourneyDelayConfirmedEvent.model_validate(json.loads(message.value))
        except (ValueError, PayloadValidationError) as e:
            self._drop(message, "malformed_event", str(e))
            return None

        if event.event_type != EVENT_TYPE:
            self._drop(message, "unexpected_event_type", event.event_type, event_id=event.event_id)
            return None

        return event

    def _drop(self, message: KafkaMessage, reason: str, error: str, event_id: Optional[str] = None):
        self.observability.log_business_event(
            "delay_event_dropped",
            reason=reason,
            error=error,
            event_id=event_id,
            topic=message.topic,
            partition=message.partition,
            offset=message.offset
        )
