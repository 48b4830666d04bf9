"""Port definitions for the eligibility orchestrator.

Responsibilities:
  - Define the contracts the rules and orchestrator need from storage.
Must not:
  - Implement logic; interfaces only.
"""

from __future__ import annotations

from datetime import date
from typing import AsyncContextManager, Optional, Protocol

from .rules.models import EligibilityEvaluation, OperatorRulepack, OutboxEvent, SeatedFareEquivalent


class EvaluationConflictError(Exception):
    """Another transaction already committed an evaluation for this journey."""

    def __init__(self, journey_id: str):
        super().__init__(f"Evaluation already exists for journey {journey_id}")
        self.journey_id = journey_id


class OperatorLookup(Protocol):
    async def get_operator(self, toc_code: str) -> Optional[OperatorRulepack]:
        ...


class ReferenceDataStore(OperatorLookup, Protocol):
    async def find_seated_fare(self, route_code: str, sleeper_class: str,
                               journey_date: date) -> Optional[SeatedFareEquivalent]:
        """Latest row for route/class whose effective_from is on or before journey_date."""
        ...


class EvaluationWriter(Protocol):
    async def insert_evaluation(self, evaluation: EligibilityEvaluation) -> None:
        """Raises EvaluationConflictError when the journey already has an evaluation."""
        ...

    async def insert_outbox_event(self, event: OutboxEvent) -> None:
        ...


class EvaluationStore(ReferenceDataStore, Protocol):
    async def find_evaluation(self, journey_id: str) -> Optional[EligibilityEvaluation]:
        ...

    def transaction(self) -> AsyncContextManager[EvaluationWriter]:
        """Writes made through the yielded writer commit together or not at all."""
        ...
