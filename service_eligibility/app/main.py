"""
Eligibility service for Delay Repay claims.
"""

from typing import Dict, List, Optional

from fastapi import Request

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.retry import RetryConfig

from .handlers.journey_delay_confirmed import JourneyDelayConfirmedHandler
from .kafka.consumer import KafkaConsumerManager
from .orchestrator import EvaluationOrchestrator
from .persistence.postgres import PostgreSQLPersistence
from .rules.bands import CompensationBandResolver
from .rules.engine import EligibilityEngine
from .rules.models import (
    CompensationBand, EvaluationRequest, EvaluationResponse,
    RestrictionValidationRequest, RestrictionValidationResult
)
from .rules.restrictions import RestrictionValidator


class EligibilityService(BaseService):
    """Eligibility service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None):
        super().__init__("eligibility", 8020, config)

        self.validator = RestrictionValidator()
        self.persistence = PostgreSQLPersistence(
            self.config.postgres_dsn,
            schema=self.config.postgres_schema,
            min_size=self.config.postgres_min_pool_size,
            max_size=self.config.postgres_max_pool_size,
            command_timeout=self.config.postgres_command_timeout
        )
        self.consumer: Optional[KafkaConsumerManager] = None
        self._build_rules(CompensationBandResolver.statutory())

        self._setup_eligibility_routes()

    def _build_rules(self, resolver: CompensationBandResolver):
        """Wire the engine, orchestrator and event handler around a band resolver."""
        self.resolver = resolver
        self.engine = EligibilityEngine(resolver, validator=self.validator)
        self.orchestrator = EvaluationOrchestrator(
            self.engine,
            metrics=self.metrics,
            observability=self.observability
        )
        self.delay_handler = JourneyDelayConfirmedHandler(
            self.orchestrator,
            self.persistence,
            self.observability,
            RetryConfig(
                max_attempts=self.config.storage_retry_attempts,
                base_delay=self.config.storage_retry_base_delay
            )
        )

    def load_bands(self, bands: List[CompensationBand]):
        self._build_rules(CompensationBandResolver(bands))
        self.logger.info("Compensation bands loaded", bands=len(bands))

    def _setup_eligibility_routes(self):
        """Set up eligibility-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "eligibility",
                "message": "Delay Repay - Eligibility Engine",
                "version": "1.0.0",
                "capabilities": ["dr15", "dr30", "restrictions", "sleeper_cap", "multi_toc", "outbox"]
            }

        @self.app.post("/eligibility/evaluate", response_model=EvaluationResponse)
        async def evaluate(request: EvaluationRequest, http_request: Request):
            """Evaluate a journey, or return the stored evaluation for its journey_id."""
            async with self.persistence.acquire() as store:
                evaluation = await self.orchestrator.evaluate(
                    request, store, correlation_id=http_request.state.correlation_id
                )
            return evaluation.to_response()

        @self.app.get("/eligibility/{journey_id}", response_model=EvaluationResponse)
        async def get_evaluation(journey_id: str):
            """Fetch a stored evaluation."""
            async with self.persistence.acquire() as store:
                evaluation = await self.orchestrator.get(journey_id, store)
            return evaluation.to_response()

        @self.app.post("/eligibility/restriction/validate", response_model=RestrictionValidationResult)
        async def validate_restrictions(request: RestrictionValidationRequest):
            """Check ticket restriction codes against a travel date and departure time."""
            return self.validator.validate(
                request.restriction_codes,
                request.journey_date,
                request.departure_time
            )

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check eligibility service dependencies."""
        dependencies = {
            "postgres": "ok" if await self.persistence.health_check() else "error"
        }

        if self.consumer is not None:
            dependencies["kafka"] = "ok" if self.consumer.is_running() else "error"

        return dependencies

    async def start(self):
        """Start eligibility service components."""
        await self.persistence.start()
        self.load_bands(await self.persistence.load_compensation_bands())

        if self.config.enable_kafka_consumer:
            self.consumer = KafkaConsumerManager(self.config.kafka_bootstrap, self.config.kafka_group_id)
            await self.consumer.start()
            self.consumer.subscribe_to_topic(self.config.delay_confirmed_topic, self.delay_handler.handle_message)
            self.consumer.start_consuming()

        self.logger.info("Eligibility service started", kafka_enabled=self.config.enable_kafka_consumer)

    async def stop(self):
        """Stop eligibility service components."""
        if self.consumer is not None:
            await self.consumer.stop()
            self.consumer = None
        await self.persistence.stop()

        self.logger.info("Eligibility service stopped")


def create_app():
    """Create eligibility service application."""
    service = EligibilityService()
    return service.app


if __name__ == "__main__":
    service = EligibilityService()
    service.run()
