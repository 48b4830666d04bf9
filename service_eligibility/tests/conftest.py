"""
Shared fixtures and in-memory fakes for Eligibility Service tests.
"""

from contextlib import asynccontextmanager
from datetime import date
from typing import Dict, List, Optional

import pytest

from shared.errors import StorageError
from shared.metrics import MetricsCollector
from service_eligibility.app.orchestrator import EvaluationOrchestrator
from service_eligibility.app.ports import EvaluationConflictError
from service_eligibility.app.rules.bands import CompensationBandResolver
from service_eligibility.app.rules.engine import EligibilityEngine
from service_eligibility.app.rules.models import (
    EligibilityEvaluation, OperatorRulepack, OutboxEvent, Scheme, SeatedFareEquivalent
)

DEFAULT_OPERATORS = [
    OperatorRulepack(toc_code="GR", toc_name="LNER", scheme=Scheme.DR15),
    OperatorRulepack(toc_code="SW", toc_name="South Western Railway", scheme=Scheme.DR15),
    OperatorRulepack(toc_code="GW", toc_name="Great Western Railway", scheme=Scheme.DR30),
    OperatorRulepack(toc_code="VT", toc_name="Avanti West Coast", scheme=Scheme.DR30),
    OperatorRulepack(toc_code="CS", toc_name="Caledonian Sleeper", scheme=Scheme.DR30),
    OperatorRulepack(toc_code="XX", toc_name="Withdrawn Operator", scheme=Scheme.DR30, active=False),
]


class InMemoryEvaluationStore:
    """Store fake with commit-on-success transactions and lookup counters."""

    def __init__(self, operators: Optional[List[OperatorRulepack]] = None,
                 fares: Optional[List[SeatedFareEquivalent]] = None):
        self.operators: Dict[str, OperatorRulepack] = {
            o.toc_code: o for o in (operators if operators is not None else DEFAULT_OPERATORS)
        }
        self.fares: List[SeatedFareEquivalent] = list(fares or [])
        self.evaluations: Dict[str, EligibilityEvaluation] = {}
        self.outbox: List[OutboxEvent] = []
        self.operator_lookups = 0
        self.fare_lookups = 0
        self.fail_outbox = False
        self.concurrent_winner: Optional[EligibilityEvaluation] = None

    async def get_operator(self, toc_code: str) -> Optional[OperatorRulepack]:
        self.operator_lookups += 1
        return self.operators.get(toc_code)

    async def find_seated_fare(self, route_code: str, sleeper_class: str,
                               journey_date: date) -> Optional[SeatedFareEquivalent]:
        self.fare_lookups += 1
        candidates = [
            f for f in self.fares
            if f.route_code == route_code and f.sleeper_class == sleeper_class
            and f.effective_from <= journey_date
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda f: f.effective_from)

    async def find_evaluation(self, journey_id: str) -> Optional[EligibilityEvaluation]:
        return self.evaluations.get(journey_id)

    @asynccontextmanager
    async def transaction(self):
        writer = _InMemoryWriter(self)
        yield writer
        for evaluation in writer.evaluations:
            self.evaluations[evaluation.journey_id] = evaluation
        self.outbox.extend(writer.outbox)


class _InMemoryWriter:

    def __init__(self, store: InMemoryEvaluationStore):
        self.store = store
        self.evaluations: List[EligibilityEvaluation] = []
        self.outbox: List[OutboxEvent] = []

    async def insert_evaluation(self, evaluation: EligibilityEvaluation) -> None:
        winner = self.store.concurrent_winner
        if winner is not None:
            # Another transaction commits between the idempotency check and this insert
            self.store.evaluations[winner.journey_id] = winner
            self.store.concurrent_winner = None
        if evaluation.journey_id in self.store.evaluations:
            raise EvaluationConflictError(evaluation.journey_id)
        self.evaluations.append(evaluation)

    async def insert_outbox_event(self, event: OutboxEvent) -> None:
        if self.store.fail_outbox:
            raise StorageError("Outbox write failed")
        self.outbox.append(event)


class FakePersistence:
    """Stand-in for PostgreSQLPersistence that hands out one in-memory store."""

    def __init__(self, store: InMemoryEvaluationStore):
        self.store = store
        self.healthy = True

    @asynccontextmanager
    async def acquire(self):
        if not self.healthy:
            raise StorageError("PostgreSQL acquire failed")
        yield self.store

    async def health_check(self) -> bool:
        return self.healthy


@pytest.fixture
def store():
    """Store seeded with a few active operators and one inactive one."""
    return InMemoryEvaluationStore()


@pytest.fixture
def persistence(store):
    return FakePersistence(store)


@pytest.fixture
def resolver():
    return CompensationBandResolver.statutory()


@pytest.fixture
def engine(resolver):
    return EligibilityEngine(resolver)


@pytest.fixture
def metrics():
    return MetricsCollector("eligibility")


@pytest.fixture
def orchestrator(engine, metrics):
    return EvaluationOrchestrator(engine, metrics=metrics)


@pytest.fixture
def store_factory():
    """Build stores with custom operators or seated fares."""
    return InMemoryEvaluationStore
