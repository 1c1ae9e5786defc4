"""
Tiered match classification for DPCMatch.

Compares a source provider against candidate providers and keeps the single
best verdict. Tiers are checked strongest first:

    exact_website  (100)  identical normalized website
    exact_address  (95)   identical normalized street, city, state and ZIP
    name_location  (85)   name similarity > 0.8, same city and state
    fuzzy          (70)   name similarity > 0.6, same state, within 10 miles
                          (or distance unknown)
    none           (0)
"""

import functools
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

from ..geo.distance import haversine_miles
from ..models import DEFAULT_TIER_CONFIDENCE, MatchTier, MatchVerdict, NormalizedKey, ProviderIdentity
from ..normalize.identity_normalizer import IdentityNormalizer
from .similarity import best_cross_similarity

logger = logging.getLogger(__name__)

PERFECT_CONFIDENCE = 100

PreparedCandidate = Tuple[ProviderIdentity, NormalizedKey]


@dataclass(frozen=True)
class MatchingPolicy:
    """Thresholds and tier confidences used by the classifier."""
    tier_confidence: Dict[MatchTier, int] = field(default_factory=lambda: dict(DEFAULT_TIER_CONFIDENCE))
    name_location_similarity: float = 0.8
    fuzzy_similarity: float = 0.6
    fuzzy_max_distance_miles: float = 10.0
    require_street_for_address: bool = False

    def __post_init__(self):
        for tier, confidence in self.tier_confidence.items():
            if not 0 <= confidence <= PERFECT_CONFIDENCE:
                raise ValueError(f"Confidence for {tier.value} must be between 0 and 100, got {confidence}")
        for name in ("name_location_similarity", "fuzzy_similarity"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be between 0 and 1, got {value}")
        if self.fuzzy_max_distance_miles < 0:
            raise ValueError(f"fuzzy_max_distance_miles must be non-negative, got {self.fuzzy_max_distance_miles}")

    @classmethod
    def from_config(cls, matching_config: Optional[Dict]) -> "MatchingPolicy":
        """
        Build a policy from the ``matching`` config section.

        Args:
            matching_config: Section with tier_confidence and threshold overrides

        Returns:
            MatchingPolicy with defaults for anything not overridden
        """
        matching_config = matching_config or {}

        tier_confidence = dict(DEFAULT_TIER_CONFIDENCE)
        for tier_name, confidence in (matching_config.get("tier_confidence") or {}).items():
            tier_confidence[MatchTier(tier_name)] = int(confidence)

        return cls(
            tier_confidence=tier_confidence,
            name_location_similarity=float(matching_config.get("name_location_similarity", 0.8)),
            fuzzy_similarity=float(matching_config.get("fuzzy_similarity", 0.6)),
            fuzzy_max_distance_miles=float(matching_config.get("fuzzy_max_distance_miles", 10.0)),
            require_street_for_address=bool(matching_config.get("require_street_for_address", False)),
        )

    def confidence(self, tier: MatchTier) -> int:
        return self.tier_confidence.get(tier, DEFAULT_TIER_CONFIDENCE[tier])


def _same_text(a: str, b: str) -> bool:
    """Case- and whitespace-insensitive equality; two blank values never count as the same place."""
    a = (a or "").strip().lower()
    b = (b or "").strip().lower()
    return bool(a) and a == b


def _until_perfect(verdicts: Iterable[MatchVerdict]) -> Iterator[MatchVerdict]:
    for verdict in verdicts:
        yield verdict
        if verdict.confidence >= PERFECT_CONFIDENCE:
            return


def _better(best: MatchVerdict, challenger: MatchVerdict) -> MatchVerdict:
    # Ties keep the earlier candidate
    return challenger if challenger.confidence > best.confidence else best


class MatchClassifier:
    """
    Classifies provider pairs into match tiers.

    Stateless apart from its policy and normalizer; safe to share across
    threads.
    """

    def __init__(self, config: Optional[Dict] = None,
                 policy: Optional[MatchingPolicy] = None,
                 normalizer: Optional[IdentityNormalizer] = None):
        """
        Initialize match classifier with configuration.

        Args:
            config: Full DPCMatch configuration (``matching`` and ``normalization`` sections)
            policy: Explicit policy, overrides the ``matching`` section
            normalizer: Explicit normalizer, overrides the ``normalization`` section
        """
        self.config = config or {}
        self.policy = policy or MatchingPolicy.from_config(self.config.get("matching"))
        self.normalizer = normalizer or IdentityNormalizer(self.config.get("normalization"))

        logger.info(f"Initialized MatchClassifier (name/location > {self.policy.name_location_similarity}, "
                    f"fuzzy > {self.policy.fuzzy_similarity} within {self.policy.fuzzy_max_distance_miles} mi)")

    def prepare(self, candidates: Iterable[ProviderIdentity]) -> List[PreparedCandidate]:
        """Pair each candidate with its normalized keys so they are computed once."""
        return [(candidate, self.normalizer.normalize_identity(candidate)) for candidate in candidates]

    def _has_street(self, identity: ProviderIdentity) -> bool:
        return bool(self.normalizer.normalize_address(identity.raw_address))

    def _tier(self, source: ProviderIdentity, source_key: NormalizedKey,
              candidate: ProviderIdentity, candidate_key: NormalizedKey,
              name_similarity: float, distance: Optional[float]) -> MatchTier:
        policy = self.policy

        if source_key.website and source_key.website == candidate_key.website:
            return MatchTier.EXACT_WEBSITE

        if source_key.address and source_key.address == candidate_key.address:
            if not policy.require_street_for_address or (
                    self._has_street(source) and self._has_street(candidate)):
                return MatchTier.EXACT_ADDRESS

        same_state = _same_text(source.state, candidate.state)

        if (name_similarity > policy.name_location_similarity
                and _same_text(source.city, candidate.city) and same_state):
            return MatchTier.NAME_LOCATION

        if (name_similarity > policy.fuzzy_similarity and same_state
                and (distance is None or distance < policy.fuzzy_max_distance_miles)):
            return MatchTier.FUZZY

        return MatchTier.NONE

    def _compare_prepared(self, source: ProviderIdentity, source_key: NormalizedKey,
                          candidate: ProviderIdentity, candidate_key: NormalizedKey) -> MatchVerdict:
        source_point = source.coordinate
        candidate_point = candidate.coordinate
        distance = None
        if source_point is not None and candidate_point is not None:
            distance = haversine_miles(source_point, candidate_point)

        name_similarity = best_cross_similarity(
            (source_key.name, source_key.practice_name),
            (candidate_key.name, candidate_key.practice_name),
        )

        tier = self._tier(source, source_key, candidate, candidate_key, name_similarity, distance)
        if tier is MatchTier.NONE:
            return MatchVerdict(
                source_id=source.provider_id,
                target_id=None,
                tier=MatchTier.NONE,
                confidence=0,
                distance_miles=distance,
                name_similarity=name_similarity,
            )

        fee = candidate.monthly_fee
        return MatchVerdict(
            source_id=source.provider_id,
            target_id=candidate.provider_id,
            tier=tier,
            confidence=self.policy.confidence(tier),
            distance_miles=distance,
            donor_fee=fee if fee is not None and fee > 0 else None,
            name_similarity=name_similarity,
        )

    def compare(self, source: ProviderIdentity, candidate: ProviderIdentity) -> MatchVerdict:
        """
        Classify a single source/candidate pair.

        Args:
            source: Record that may receive data
            candidate: Record that may donate data

        Returns:
            MatchVerdict for the pair (tier none when nothing matches)
        """
        return self._compare_prepared(
            source, self.normalizer.normalize_identity(source),
            candidate, self.normalizer.normalize_identity(candidate),
        )

    def classify_prepared(self, source: ProviderIdentity, prepared: Sequence[PreparedCandidate],
                          exclude_self: bool = False) -> MatchVerdict:
        """
        Find the best verdict for a source against pre-normalized candidates.

        Candidates are visited in order and evaluation stops at the first
        perfect-confidence verdict. A later candidate replaces the current
        best only with strictly higher confidence.

        Args:
            source: Record to classify
            prepared: Output of ``prepare``
            exclude_self: Skip the candidate that is the same object as ``source``

        Returns:
            Best MatchVerdict, or a tier-none verdict with no target
        """
        source_key = self.normalizer.normalize_identity(source)

        verdicts = (
            self._compare_prepared(source, source_key, candidate, candidate_key)
            for candidate, candidate_key in prepared
            if not (exclude_self and candidate is source)
        )

        return functools.reduce(_better, _until_perfect(verdicts), MatchVerdict.no_match(source.provider_id))

    def classify(self, source: ProviderIdentity, candidates: Iterable[ProviderIdentity],
                 exclude_self: bool = False) -> MatchVerdict:
        """
        Find the best verdict for a source among candidates.

        Args:
            source: Record to classify
            candidates: Records to compare against, in priority order
            exclude_self: Skip the candidate that is the same object as ``source``

        Returns:
            Best MatchVerdict, or a tier-none verdict with no target
        """
        return self.classify_prepared(source, self.prepare(candidates), exclude_self=exclude_self)
