"""
Eligibility Service package for Delay Repay claims.

This package decides whether a delayed rail journey qualifies for
statutory Delay Repay compensation and how much is owed. It provides:

- app.main: API surface for evaluation, retrieval and restriction checks.
- app.rules: Band resolution, restrictions, sleeper capping, apportionment.
- app.orchestrator: Idempotent evaluation with the transactional outbox.
- app.persistence: PostgreSQL storage for reference data and evaluations.
- app.kafka / app.handlers: JourneyDelayConfirmed event consumption.

Guidelines:
- One evaluation per journey_id; a stored evaluation is never recomputed.
- Every evaluation is written together with its outbox event.
- All money is integer pence; division floors.
"""
