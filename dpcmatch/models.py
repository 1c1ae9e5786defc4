"""
Record, verdict and lookup-result types shared across DPCMatch.
"""

import enum
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .geo.distance import Coordinate, coordinate_or_none


class MatchTier(str, enum.Enum):
    """Discrete match classes, strongest first."""
    EXACT_WEBSITE = "exact_website"
    EXACT_ADDRESS = "exact_address"
    NAME_LOCATION = "name_location"
    FUZZY = "fuzzy"
    NONE = "none"


DEFAULT_TIER_CONFIDENCE: Dict[MatchTier, int] = {
    MatchTier.EXACT_WEBSITE: 100,
    MatchTier.EXACT_ADDRESS: 95,
    MatchTier.NAME_LOCATION: 85,
    MatchTier.FUZZY: 70,
    MatchTier.NONE: 0,
}


@dataclass(frozen=True)
class ProviderIdentity:
    """
    Matchable fields of one scraped provider record.

    ``monthly_fee`` is None when the fee is unknown. A literal 0.0 is a
    known free membership and is never treated as missing here.
    """
    provider_id: str
    raw_name: str
    raw_address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = ""
    raw_practice_name: Optional[str] = None
    raw_website: Optional[str] = None
    monthly_fee: Optional[float] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    source: str = ""

    @property
    def coordinate(self) -> Optional[Coordinate]:
        return coordinate_or_none(self.latitude, self.longitude)

    @property
    def has_known_fee(self) -> bool:
        return self.monthly_fee is not None


@dataclass(frozen=True)
class NormalizedKey:
    """Canonical comparison keys derived from a ProviderIdentity."""
    name: str
    practice_name: str
    website: str
    address: str


@dataclass(frozen=True)
class MatchVerdict:
    """Best match found for one source record."""
    source_id: str
    target_id: Optional[str]
    tier: MatchTier
    confidence: int
    distance_miles: Optional[float] = None
    donor_fee: Optional[float] = None
    name_similarity: float = 0.0

    @classmethod
    def no_match(cls, source_id: str) -> "MatchVerdict":
        return cls(source_id=source_id, target_id=None, tier=MatchTier.NONE, confidence=0)

    @property
    def is_match(self) -> bool:
        return self.tier is not MatchTier.NONE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "target_id": self.target_id,
            "tier": self.tier.value,
            "confidence": self.confidence,
            "distance_miles": self.distance_miles,
            "donor_fee": self.donor_fee,
            "name_similarity": self.name_similarity,
        }


@dataclass(frozen=True)
class FeeUpdate:
    """An accepted fee propagation, handed to the persistence writer."""
    provider_id: str
    monthly_fee: float
    donor_id: str
    tier: MatchTier
    confidence: int

    def to_dict(self) -> Dict[str, Any]:
        record = asdict(self)
        record["tier"] = self.tier.value
        return record


@dataclass(frozen=True)
class GeoCoordinates:
    """Forward (ZIP -> coordinate) resolution result."""
    latitude: float
    longitude: float
    city: str = ""
    state: str = ""
    state_abbrev: str = ""
    country: str = ""
    cached: bool = False

    def to_coordinate(self) -> Optional[Coordinate]:
        return coordinate_or_none(self.latitude, self.longitude)


@dataclass(frozen=True)
class ReverseGeoResult:
    """Reverse (coordinate -> place) resolution result."""
    city: str
    state: str
    state_abbrev: str
    zip_code: str
    county: Optional[str] = None
    street: Optional[str] = None
    cached: bool = False
