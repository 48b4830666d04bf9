"""
Rule data models for the Eligibility Service.
"""

from typing import Dict, Any, Optional, List, Tuple
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, model_validator


class Scheme(str, Enum):
    """Delay Repay compensation schemes."""
    DR15 = "DR15"
    DR30 = "DR30"

    @property
    def threshold_minutes(self) -> int:
        """Minimum delay that qualifies under this scheme."""
        return _SCHEME_THRESHOLDS[self]

    @property
    def statutory_bands(self) -> Tuple["CompensationBand", ...]:
        """Consumer Rights Act band table for this scheme."""
        return tuple(
            CompensationBand(scheme=self, threshold_minutes=threshold, percentage=percentage)
            for threshold, percentage in _STATUTORY_BANDS[self]
        )


_SCHEME_THRESHOLDS = {
    Scheme.DR15: 15,
    Scheme.DR30: 30,
}

_STATUTORY_BANDS = {
    Scheme.DR15: ((15, 25), (30, 50), (60, 50), (120, 100)),
    Scheme.DR30: ((30, 50), (60, 50), (120, 100)),
}

# Peak windows, weekends and bank holidays are all in UK local time.
NETWORK_TIMEZONE = ZoneInfo("Europe/London")


def network_local_time(moment: datetime) -> datetime:
    """Express an aware timestamp in UK local time; naive values are already local."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(NETWORK_TIMEZONE)


@dataclass(frozen=True)
class CompensationBand:
    """Refund rate for delays at or above threshold_minutes."""
    scheme: Scheme
    threshold_minutes: int
    percentage: int

    @property
    def rule_id(self) -> str:
        return f"{self.scheme.value}_{self.threshold_minutes}MIN_{self.percentage}PCT"


@dataclass(frozen=True)
class OperatorRulepack:
    """Scheme assignment for a train operating company."""
    toc_code: str
    scheme: Scheme
    toc_name: str = ""
    active: bool = True
    allows_online_claims: bool = True
    max_claim_days: int = 28


@dataclass(frozen=True)
class SeatedFareEquivalent:
    """Seated fare used to cap sleeper compensation on a route."""
    route_code: str
    sleeper_class: str
    seated_equivalent_pence: int
    effective_from: date
    effective_to: Optional[date] = None

    def has_ended_before(self, journey_date: date) -> bool:
        """A null effective_to means the fare is still current."""
        return self.effective_to is not None and self.effective_to < journey_date


class JourneySegment(BaseModel):
    """One operator's leg of a split journey."""
    toc_code: str = Field(..., min_length=1, description="Operating TOC for this leg")
    fare_portion_pence: int = Field(..., ge=0, description="Share of the total fare")
    segment_order: Optional[int] = Field(None, description="Position in the journey")


class EvaluationRequest(BaseModel):
    """Request model for an eligibility evaluation."""
    journey_id: str = Field(..., min_length=1, max_length=64, description="Idempotency key")
    toc_code: str = Field(..., min_length=1, max_length=5, description="Operator code")
    scheduled_departure: Optional[datetime] = Field(None, description="Scheduled departure")
    scheduled_arrival: Optional[datetime] = Field(None, description="Scheduled arrival")
    actual_arrival: Optional[datetime] = Field(None, description="Actual arrival")
    delay_minutes: Optional[int] = Field(None, description="Explicit delay, overrides arrival times")
    ticket_fare_pence: int = Field(..., ge=0, description="Fare in pence")
    ticket_class: Optional[str] = Field(None, description="Ticket class")
    ticket_type: Optional[str] = Field(None, description="Ticket type")
    ticket_restrictions: List[str] = Field(default_factory=list, description="Restriction codes")
    is_sleeper: bool = Field(False, description="Sleeper ticket")
    route_code: Optional[str] = Field(None, description="Sleeper route")
    sleeper_class: Optional[str] = Field(None, description="Sleeper berth class")
    journey_date: Optional[date] = Field(None, description="Travel date for fare lookups")
    journey_segments: List[JourneySegment] = Field(default_factory=list, description="Multi-TOC legs")

    @model_validator(mode="after")
    def _check_delay_source(self) -> "EvaluationRequest":
        if self.delay_minutes is None and (self.scheduled_arrival is None or self.actual_arrival is None):
            raise ValueError("delay_minutes or (scheduled_arrival and actual_arrival) is required")
        return self

    @model_validator(mode="after")
    def _default_segment_order(self) -> "EvaluationRequest":
        for index, segment in enumerate(self.journey_segments):
            if segment.segment_order is None:
                segment.segment_order = index
        return self

    def travel_date(self) -> Optional[date]:
        if self.journey_date is not None:
            return self.journey_date
        for moment in (self.scheduled_departure, self.scheduled_arrival):
            if moment is not None:
                return network_local_time(moment).date()
        return None


class JourneyDelayConfirmedPayload(BaseModel):
    """Payload of a JourneyDelayConfirmed event."""
    journey_id: str = Field(..., min_length=1, max_length=64)
    toc_code: str = Field(..., min_length=1)
    delay_minutes: int
    ticket_fare_pence: int = Field(..., ge=0)
    scheduled_departure: Optional[datetime] = None
    scheduled_arrival: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    ticket_class: Optional[str] = None
    ticket_type: Optional[str] = None
    ticket_restrictions: List[str] = Field(default_factory=list)
    is_sleeper: bool = False
    route_code: Optional[str] = None
    sleeper_class: Optional[str] = None
    journey_segments: List[JourneySegment] = Field(default_factory=list)

    def to_request(self) -> EvaluationRequest:
        return EvaluationRequest(**self.model_dump())


class JourneyDelayConfirmedEvent(BaseModel):
    """Envelope consumed from the delay confirmation topic."""
    event_type: str = Field("JourneyDelayConfirmed")
    event_id: str
    timestamp: Optional[datetime] = None
    correlation_id: Optional[str] = None
    payload: JourneyDelayConfirmedPayload


@dataclass
class SegmentEligibility:
    """Outcome for a single segment of an apportioned journey."""
    toc_code: str
    segment_order: int
    fare_portion_pence: int
    eligible: bool
    compensation_percentage: int
    compensation_pence: int
    scheme: Optional[Scheme] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "toc_code": self.toc_code,
            "segment_order": self.segment_order,
            "fare_portion_pence": self.fare_portion_pence,
            "eligible": self.eligible,
            "compensation_percentage": self.compensation_percentage,
            "compensation_pence": self.compensation_pence,
            "scheme": self.scheme.value if self.scheme else None,
            "notes": self.notes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SegmentEligibility":
        return cls(
            toc_code=data["toc_code"],
            segment_order=data["segment_order"],
            fare_portion_pence=data["fare_portion_pence"],
            eligible=data["eligible"],
            compensation_percentage=data["compensation_percentage"],
            compensation_pence=data["compensation_pence"],
            scheme=Scheme(data["scheme"]) if data.get("scheme") else None,
            notes=data.get("notes"),
        )


@dataclass
class ApportionmentResult:
    """Per-segment outcomes of a multi-TOC journey."""
    journey_id: str
    segment_eligibilities: List[SegmentEligibility]
    total_compensation_pence: int


@dataclass
class CappedResult:
    """Outcome of sleeper fare capping."""
    capped_compensation_pence: int
    cap_applied: bool
    original_compensation_pence: int
    seated_equivalent_pence: Optional[int] = None
    notes: Optional[str] = None


class RestrictionValidationRequest(BaseModel):
    """Request model for restriction validation."""
    restriction_codes: List[str] = Field(default_factory=list, description="Ticket restriction codes")
    journey_date: str = Field(..., description="Travel date, YYYY-MM-DD")
    departure_time: str = Field(..., description="Departure time, HH:MM")


class RestrictionValidationResult(BaseModel):
    """Response model for restriction validation."""
    valid: bool
    restrictions_checked: List[str] = Field(default_factory=list)
    blocking_restriction: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class EvaluationResponse(BaseModel):
    """Response model for evaluation and retrieval."""
    journey_id: str
    eligible: bool
    scheme: Optional[Scheme]
    delay_minutes: int
    compensation_percentage: int
    compensation_pence: int
    ticket_fare_pence: int
    reasons: List[str]
    applied_rules: List[str]
    segment_breakdown: Optional[List[Dict[str, Any]]] = None
    evaluation_timestamp: datetime


@dataclass
class EligibilityEvaluation:
    """Persisted decision for one journey. Never mutated once stored."""
    evaluation_id: str
    journey_id: str
    toc_code: str
    scheme: Optional[Scheme]
    delay_minutes: int
    eligible: bool
    compensation_percentage: int
    compensation_pence: int
    ticket_fare_pence: int
    reasons: List[str] = field(default_factory=list)
    applied_rules: List[str] = field(default_factory=list)
    segment_breakdown: Optional[List[SegmentEligibility]] = None
    evaluation_timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def segment_breakdown_dicts(self) -> Optional[List[Dict[str, Any]]]:
        if self.segment_breakdown is None:
            return None
        return [segment.to_dict() for segment in self.segment_breakdown]

    def to_response(self) -> EvaluationResponse:
        return EvaluationResponse(
            journey_id=self.journey_id,
            eligible=self.eligible,
            scheme=self.scheme,
            delay_minutes=self.delay_minutes,
            compensation_percentage=self.compensation_percentage,
            compensation_pence=self.compensation_pence,
            ticket_fare_pence=self.ticket_fare_pence,
            reasons=list(self.reasons),
            applied_rules=list(self.applied_rules),
            segment_breakdown=self.segment_breakdown_dicts(),
            evaluation_timestamp=self.evaluation_timestamp,
        )

    def outbox_payload(self, correlation_id: Optional[str] = None) -> Dict[str, Any]:
        payload = {
            "evaluation_id": self.evaluation_id,
            "journey_id": self.journey_id,
            "toc_code": self.toc_code,
            "scheme": self.scheme.value if self.scheme else None,
            "delay_minutes": self.delay_minutes,
            "ticket_fare_pence": self.ticket_fare_pence,
            "eligible": self.eligible,
            "compensation_percentage": self.compensation_percentage,
            "compensation_pence": self.compensation_pence,
            "reasons": list(self.reasons),
            "applied_rules": list(self.applied_rules),
            "evaluation_timestamp": self.evaluation_timestamp.isoformat(),
            "correlation_id": correlation_id,
        }
        if self.segment_breakdown is not None:
            payload["segment_breakdown"] = self.segment_breakdown_dicts()
        return payload


@dataclass
class OutboxEvent:
    """Pending event written in the same transaction as its evaluation."""
    event_id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    payload: Dict[str, Any]
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    published_at: Optional[datetime] = None
