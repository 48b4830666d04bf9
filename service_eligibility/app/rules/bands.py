"""
Compensation band resolution.
"""

from typing import Dict, Iterable, List, Optional

from shared.errors import ReferenceDataError, ValidationError
from shared.logging import get_logger
from .models import CompensationBand, Scheme


class CompensationBandResolver:
    """Maps (scheme, delay) to the band with the highest threshold not above the delay.

    Bands are validated once at construction; a duplicate threshold within a
    scheme is rejected here so that evaluation never has to break ties.
    """

    def __init__(self, bands: Iterable[CompensationBand]):
        self.logger = get_logger("eligibility.rules.bands")
        self._bands: Dict[Scheme, List[CompensationBand]] = {scheme: [] for scheme in Scheme}

        for band in bands:
            existing = self._bands[band.scheme]
            if any(b.threshold_minutes == band.threshold_minutes for b in existing):
                raise ReferenceDataError(
                    f"Duplicate compensation band for {band.scheme.value} at {band.threshold_minutes} minutes",
                    details={"scheme": band.scheme.value, "threshold_minutes": band.threshold_minutes}
                )
            if band.threshold_minutes < 0 or not 0 <= band.percentage <= 100:
                raise ReferenceDataError(
                    "Compensation band out of range",
                    details={
                        "scheme": band.scheme.value,
                        "threshold_minutes": band.threshold_minutes,
                        "percentage": band.percentage,
                    }
                )
            existing.append(band)

        for scheme_bands in self._bands.values():
            scheme_bands.sort(key=lambda b: b.threshold_minutes)

        self.logger.debug(
            "Compensation bands loaded",
            bands={scheme.value: len(b) for scheme, b in self._bands.items()}
        )

    @classmethod
    def statutory(cls) -> "CompensationBandResolver":
        """Resolver over the Consumer Rights Act tables for every scheme."""
        return cls(band for scheme in Scheme for band in scheme.statutory_bands)

    def bands_for(self, scheme: Scheme) -> List[CompensationBand]:
        return list(self._bands[scheme])

    def resolve(self, scheme: Scheme, delay_minutes: int) -> Optional[CompensationBand]:
        """Return the applicable band, or None when the delay is below every threshold."""
        if delay_minutes < 0:
            raise ValidationError(
                "Delay minutes must be non-negative",
                details={"delay_minutes": delay_minutes}
            )

        matched = None
        for band in self._bands[scheme]:
            if band.threshold_minutes > delay_minutes:
                break
            matched = band
        return matched
