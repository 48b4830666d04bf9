"""
PostgreSQL persistence layer for the Eligibility Service.
"""

import asyncio
import json
import re
from contextlib import asynccontextmanager, contextmanager
from datetime import date
from typing import Any, Dict, List, Optional

import asyncpg

from shared.errors import StorageError
from shared.logging import get_logger
from ..ports import EvaluationConflictError
from ..rules.models import (
    CompensationBand, EligibilityEvaluation, OperatorRulepack, OutboxEvent,
    Scheme, SeatedFareEquivalent, SegmentEligibility
)

_SCHEMA_NAME = re.compile(r"^[a-z_][a-z0-9_]*$")

SEED_OPERATORS = (
    ("CC", "c2c", Scheme.DR15),
    ("TL", "Thameslink", Scheme.DR15),
    ("GN", "Great Northern", Scheme.DR15),
    ("SE", "Southeastern", Scheme.DR15),
    ("SN", "Southern", Scheme.DR15),
    ("SW", "South Western Railway", Scheme.DR15),
    ("GX", "Gatwick Express", Scheme.DR15),
    ("GR", "LNER", Scheme.DR15),
    ("AW", "Transport for Wales", Scheme.DR30),
    ("CH", "Chiltern Railways", Scheme.DR30),
    ("CS", "Caledonian Sleeper", Scheme.DR30),
    ("EM", "East Midlands Railway", Scheme.DR30),
    ("GC", "Grand Central", Scheme.DR30),
    ("GW", "Great Western Railway", Scheme.DR30),
    ("HT", "Hull Trains", Scheme.DR30),
    ("HX", "Heathrow Express", Scheme.DR30),
    ("LM", "West Midlands Trains", Scheme.DR30),
    ("NT", "Northern Trains", Scheme.DR30),
    ("SR", "ScotRail", Scheme.DR30),
    ("TP", "TransPennine Express", Scheme.DR30),
    ("VT", "Avanti West Coast", Scheme.DR30),
    ("XC", "CrossCountry", Scheme.DR30),
    ("XR", "Elizabeth line", Scheme.DR30),
)

_STORAGE_FAILURES = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)


@contextmanager
def _storage_errors(operation: str):
    """Surface driver and connectivity failures as StorageError."""
    try:
        yield
    except _STORAGE_FAILURES as e:
        raise StorageError(
            f"PostgreSQL {operation} failed",
            details={"operation": operation, "error": str(e)}
        ) from e


async def _init_connection(conn: asyncpg.Connection):
    await conn.set_type_codec("jsonb", encoder=json.dumps, decoder=json.loads, schema="pg_catalog")


class PostgreSQLPersistence:
    """Connection pool, schema management and reference data seeding."""

    def __init__(self, dsn: str, schema: str = "eligibility_engine",
                 min_size: int = 2, max_size: int = 10, command_timeout: float = 30.0):
        if not _SCHEMA_NAME.match(schema):
            raise ValueError(f"Invalid schema name: {schema}")
        self.dsn = dsn
        self.schema = schema
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("eligibility.persistence.postgres")
        self.pool: Optional[asyncpg.Pool] = None

    async def start(self):
        """Start the persistence layer."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=self.command_timeout,
                init=_init_connection
            )
            await self._create_tables()
            await self._seed_reference_data()
            self.logger.info("PostgreSQL persistence started", schema=self.schema)

        except _STORAGE_FAILURES as e:
            self.logger.error("Failed to start PostgreSQL persistence", error=str(e))
            raise StorageError("PostgreSQL start failed", details={"error": str(e)}) from e

    async def stop(self):
        """Stop the persistence layer."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL persistence stopped")

    async def health_check(self) -> bool:
        if self.pool is None:
            return False
        try:
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            return True
        except _STORAGE_FAILURES as e:
            self.logger.warning("PostgreSQL health check failed", error=str(e))
            return False

    @asynccontextmanager
    async def acquire(self):
        """Yield a store bound to one pooled connection."""
        if self.pool is None:
            raise StorageError("PostgreSQL persistence is not started")
        with _storage_errors("acquire"):
            async with self.pool.acquire() as conn:
                yield PostgreSQLEvaluationStore(conn, self.schema)

    async def load_compensation_bands(self) -> List[CompensationBand]:
        async with self.acquire() as store:
            return await store.load_compensation_bands()

    async def _create_tables(self):
        """Create the schema, tables and indexes."""
        s = self.schema
        async with self.pool.acquire() as conn:
            await conn.execute(f"CREATE SCHEMA IF NOT EXISTS {s}")

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {s}.toc_rulepacks (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    toc_code VARCHAR(10) NOT NULL UNIQUE,
                    toc_name VARCHAR(100) NOT NULL,
                    scheme VARCHAR(10) NOT NULL CHECK (scheme IN ('DR15', 'DR30')),
                    allows_online_claims BOOLEAN NOT NULL DEFAULT TRUE,
                    max_claim_days INTEGER NOT NULL DEFAULT 28,
                    active BOOLEAN NOT NULL DEFAULT TRUE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {s}.compensation_bands (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    scheme_type VARCHAR(10) NOT NULL CHECK (scheme_type IN ('DR15', 'DR30')),
                    delay_threshold_minutes INTEGER NOT NULL CHECK (delay_threshold_minutes >= 0),
                    compensation_percentage INTEGER NOT NULL
                        CHECK (compensation_percentage BETWEEN 0 AND 100),
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    CONSTRAINT uq_compensation_bands_scheme_threshold
                        UNIQUE (scheme_type, delay_threshold_minutes)
                );
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {s}.seated_fare_equivalents (
                    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                    route_code VARCHAR(50) NOT NULL,
                    sleeper_class VARCHAR(50) NOT NULL,
                    seated_equivalent_pence INTEGER NOT NULL,
                    effective_from DATE NOT NULL,
                    effective_to DATE,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {s}.eligibility_evaluations (
                    id UUID PRIMARY KEY,
                    journey_id VARCHAR(64) NOT NULL UNIQUE,
                    toc_code VARCHAR(10) NOT NULL,
                    scheme VARCHAR(10) CHECK (scheme IN ('DR15', 'DR30')),
                    delay_minutes INTEGER NOT NULL,
                    eligible BOOLEAN NOT NULL,
                    compensation_percentage INTEGER NOT NULL,
                    compensation_pence INTEGER NOT NULL,
                    ticket_fare_pence INTEGER NOT NULL,
                    reasons JSONB NOT NULL DEFAULT '[]',
                    applied_rules JSONB NOT NULL DEFAULT '[]',
                    segment_breakdown JSONB,
                    evaluation_timestamp TIMESTAMP WITH TIME ZONE NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
                );
            """)

            await conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {s}.outbox (
                    id UUID PRIMARY KEY,
                    aggregate_type VARCHAR(100) NOT NULL,
                    aggregate_id VARCHAR(64) NOT NULL,
                    event_type VARCHAR(100) NOT NULL,
                    payload JSONB NOT NULL,
                    created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                    published_at TIMESTAMP WITH TIME ZONE
                );
            """)

            # Create indexes
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_toc_rulepacks_active ON {s}.toc_rulepacks(active);
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_seated_fare_equivalents_route
                ON {s}.seated_fare_equivalents(route_code, sleeper_class, effective_from DESC);
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_eligibility_evaluations_created_at
                ON {s}.eligibility_evaluations(created_at);
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_outbox_unpublished
                ON {s}.outbox(created_at) WHERE published_at IS NULL;
            """)
            await conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_outbox_aggregate
                ON {s}.outbox(aggregate_type, aggregate_id);
            """)

    async def _seed_reference_data(self):
        """Insert statutory bands and the operator list; existing rows are left alone."""
        s = self.schema
        bands = [band for scheme in Scheme for band in scheme.statutory_bands]
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(f"""
                    INSERT INTO {s}.compensation_bands
                        (scheme_type, delay_threshold_minutes, compensation_percentage)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (scheme_type, delay_threshold_minutes) DO NOTHING
                """, [(b.scheme.value, b.threshold_minutes, b.percentage) for b in bands])

                await conn.executemany(f"""
                    INSERT INTO {s}.toc_rulepacks (toc_code, toc_name, scheme)
                    VALUES ($1, $2, $3)
                    ON CONFLICT (toc_code) DO NOTHING
                """, [(code, name, scheme.value) for code, name, scheme in SEED_OPERATORS])

        self.logger.info("Reference data seeded", bands=len(bands), operators=len(SEED_OPERATORS))


class PostgreSQLEvaluationStore:
    """Store bound to a single connection; one instance per request."""

    def __init__(self, conn: asyncpg.Connection, schema: str):
        self.conn = conn
        self.schema = schema

    async def get_operator(self, toc_code: str) -> Optional[OperatorRulepack]:
        with _storage_errors("get_operator"):
            row = await self.conn.fetchrow(f"""
                SELECT toc_code, toc_name, scheme, active, allows_online_claims, max_claim_days
                FROM {self.schema}.toc_rulepacks WHERE toc_code = $1
            """, toc_code)

        if not row:
            return None

        return OperatorRulepack(
            toc_code=row["toc_code"],
            toc_name=row["toc_name"],
            scheme=Scheme(row["scheme"]),
            active=row["active"],
            allows_online_claims=row["allows_online_claims"],
            max_claim_days=row["max_claim_days"],
        )

    async def find_seated_fare(self, route_code: str, sleeper_class: str,
                               journey_date: date) -> Optional[SeatedFareEquivalent]:
        with _storage_errors("find_seated_fare"):
            row = await self.conn.fetchrow(f"""
                SELECT route_code, sleeper_class, seated_equivalent_pence, effective_from, effective_to
                FROM {self.schema}.seated_fare_equivalents
                WHERE route_code = $1 AND sleeper_class = $2 AND effective_from <= $3
                ORDER BY effective_from DESC
                LIMIT 1
            """, route_code, sleeper_class, journey_date)

        if not row:
            return None

        return SeatedFareEquivalent(
            route_code=row["route_code"],
            sleeper_class=row["sleeper_class"],
            seated_equivalent_pence=row["seated_equivalent_pence"],
            effective_from=row["effective_from"],
            effective_to=row["effective_to"],
        )

    async def load_compensation_bands(self) -> List[CompensationBand]:
        with _storage_errors("load_compensation_bands"):
            rows = await self.conn.fetch(f"""
                SELECT scheme_type, delay_threshold_minutes, compensation_percentage
                FROM {self.schema}.compensation_bands
                ORDER BY scheme_type, delay_threshold_minutes
            """)

        return [
            CompensationBand(
                scheme=Scheme(row["scheme_type"]),
                threshold_minutes=row["delay_threshold_minutes"],
                percentage=row["compensation_percentage"],
            )
            for row in rows
        ]

    async def find_evaluation(self, journey_id: str) -> Optional[EligibilityEvaluation]:
        with _storage_errors("find_evaluation"):
            row = await self.conn.fetchrow(f"""
                SELECT * FROM {self.schema}.eligibility_evaluations WHERE journey_id = $1
            """, journey_id)

        if not row:
            return None
        return self._row_to_evaluation(row)

    @asynccontextmanager
    async def transaction(self):
        """Commit every write made through the yielded writer, or none of them."""
        with _storage_errors("transaction"):
            async with self.conn.transaction():
                yield _TransactionWriter(self.conn, self.schema)

    def _row_to_evaluation(self, row: Dict[str, Any]) -> EligibilityEvaluation:
        breakdown = row["segment_breakdown"]
        return EligibilityEvaluation(
            evaluation_id=str(row["id"]),
            journey_id=row["journey_id"],
            toc_code=row["toc_code"],
            scheme=Scheme(row["scheme"]) if row["scheme"] else None,
            delay_minutes=row["delay_minutes"],
            eligible=row["eligible"],
            compensation_percentage=row["compensation_percentage"],
            compensation_pence=row["compensation_pence"],
            ticket_fare_pence=row["ticket_fare_pence"],
            reasons=list(row["reasons"] or []),
            applied_rules=list(row["applied_rules"] or []),
            segment_breakdown=(
                [SegmentEligibility.from_dict(item) for item in breakdown]
                if breakdown is not None else None
            ),
            evaluation_timestamp=row["evaluation_timestamp"],
        )


class _TransactionWriter:
    """Writes issued inside an open transaction."""

    def __init__(self, conn: asyncpg.Connection, schema: str):
        self.conn = conn
        self.schema = schema

    async def insert_evaluation(self, evaluation: EligibilityEvaluation) -> None:
        try:
            await self.conn.execute(f"""
                INSERT INTO {self.schema}.eligibility_evaluations (
                    id, journey_id, toc_code, scheme, delay_minutes, eligible,
                    compensation_percentage, compensation_pence, ticket_fare_pence,
                    reasons, applied_rules, segment_breakdown, evaluation_timestamp
                ) VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13)
            """,
                evaluation.evaluation_id, evaluation.journey_id, evaluation.toc_code,
                evaluation.scheme.value if evaluation.scheme else None,
                evaluation.delay_minutes, evaluation.eligible,
                evaluation.compensation_percentage, evaluation.compensation_pence,
                evaluation.ticket_fare_pence, evaluation.reasons, evaluation.applied_rules,
                evaluation.segment_breakdown_dicts(), evaluation.evaluation_timestamp
            )
        except asyncpg.UniqueViolationError as e:
            raise EvaluationConflictError(evaluation.journey_id) from e

    async def insert_outbox_event(self, event: OutboxEvent) -> None:
        await self.conn.execute(f"""
            INSERT INTO {self.schema}.outbox (
                id, aggregate_type, aggregate_id, event_type, payload, created_at, published_at
            ) VALUES ($1, $2, $3, $4, $5, $6, $7)
        """,
            event.event_id, event.aggregate_type, event.aggregate_id, event.event_type,
            event.payload, event.created_at, event.published_at
        )
