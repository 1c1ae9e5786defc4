"""
Reconciliation driver for DPCMatch.

Runs the match classifier for every source provider against the candidate
set, turns confident verdicts into fee propagations and produces the run
summary and coverage report.
"""

import logging
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import Any, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from ..models import FeeUpdate, MatchTier, MatchVerdict, ProviderIdentity
from .classifier import MatchClassifier

logger = logging.getLogger(__name__)

DEFAULT_CONFIDENCE_THRESHOLD = 85

VERDICT_COLUMNS = [
    "source_id", "target_id", "tier", "confidence",
    "distance_miles", "donor_fee", "name_similarity",
]


def _check_threshold(confidence_threshold: int) -> None:
    if not 0 <= confidence_threshold <= 100:
        raise ValueError(f"confidence_threshold must be between 0 and 100, got {confidence_threshold}")


def verdicts_to_dataframe(verdicts: Iterable[MatchVerdict]) -> pd.DataFrame:
    """
    Convert verdicts to a DataFrame for CSV output.

    Args:
        verdicts: Match verdicts

    Returns:
        DataFrame with one row per verdict
    """
    return pd.DataFrame([verdict.to_dict() for verdict in verdicts], columns=VERDICT_COLUMNS)


def coverage_report(sources: Iterable[ProviderIdentity]) -> Dict[str, int]:
    """
    Count fee and website coverage across source providers.

    Args:
        sources: Source provider records

    Returns:
        Dictionary with total, with_fees, without_fees and with_website counts
    """
    sources = list(sources)
    with_fees = sum(1 for source in sources if source.monthly_fee is not None and source.monthly_fee > 0)
    with_website = sum(1 for source in sources if (source.raw_website or "").strip())

    return {
        "total": len(sources),
        "with_fees": with_fees,
        "without_fees": len(sources) - with_fees,
        "with_website": with_website,
    }


class ReconciliationDriver:
    """
    Matches source providers against candidates and plans fee propagation.

    When a geocoder is given, records without usable coordinates are placed
    at their ZIP centroid before classification. The input records are never
    modified.
    """

    def __init__(self, classifier: MatchClassifier, geocoder: Optional[Any] = None, max_workers: int = 1):
        """
        Initialize reconciliation driver.

        Args:
            classifier: Match classifier
            geocoder: Optional GeocodingService used to fill missing coordinates
            max_workers: Threads used to classify sources (1 runs inline)
        """
        if max_workers < 1:
            raise ValueError(f"max_workers must be at least 1, got {max_workers}")

        self.classifier = classifier
        self.geocoder = geocoder
        self.max_workers = max_workers

        logger.info(f"Initialized ReconciliationDriver (workers={max_workers}, "
                    f"geocoding={'on' if geocoder is not None else 'off'})")

    def _with_coordinates(self, records: List[ProviderIdentity]) -> List[ProviderIdentity]:
        if self.geocoder is None:
            return records

        missing = [record for record in records if record.coordinate is None and record.zip_code]
        if not missing:
            return records

        resolved = self.geocoder.batch_geocode(record.zip_code for record in missing)

        filled = 0
        located = []
        for record in records:
            geo = resolved.get(str(record.zip_code)) if record.coordinate is None and record.zip_code else None
            if geo is not None:
                record = replace(record, latitude=geo.latitude, longitude=geo.longitude)
                filled += 1
            located.append(record)

        logger.info(f"Filled coordinates for {filled}/{len(missing)} records from ZIP centroids")
        return located

    def _log_verdict(self, position: int, total: int, verdict: MatchVerdict, confidence_threshold: int) -> None:
        progress = f"[{position}/{total}]"
        if verdict.confidence >= confidence_threshold and verdict.is_match:
            logger.info(f"{progress} MATCH: {verdict.source_id} -> {verdict.target_id} "
                        f"({verdict.confidence}% {verdict.tier.value})")
        elif verdict.confidence > 0:
            logger.info(f"{progress} LOW CONFIDENCE: {verdict.source_id} -> {verdict.target_id} "
                        f"({verdict.confidence}% {verdict.tier.value})")
        else:
            logger.debug(f"{progress} NO MATCH: {verdict.source_id}")

    def reconcile_all(self, sources: Iterable[ProviderIdentity], candidates: Iterable[ProviderIdentity],
                      confidence_threshold: int = DEFAULT_CONFIDENCE_THRESHOLD) -> List[MatchVerdict]:
        """
        Classify every source provider against the candidate set.

        Args:
            sources: Records that may receive fees
            candidates: Records that may donate fees, in priority order
            confidence_threshold: Minimum confidence counted as a match (0-100)

        Returns:
            One verdict per source, in input order
        """
        _check_threshold(confidence_threshold)

        sources = self._with_coordinates(list(sources))
        candidates = self._with_coordinates(list(candidates))

        logger.info(f"Matching {len(sources)} source providers against {len(candidates)} candidates "
                    f"(threshold {confidence_threshold}%)")

        prepared = self.classifier.prepare(candidates)

        def classify(source: ProviderIdentity) -> MatchVerdict:
            return self.classifier.classify_prepared(source, prepared)

        if self.max_workers > 1 and len(sources) > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="reconcile") as executor:
                verdicts = list(executor.map(classify, sources))
        else:
            verdicts = [classify(source) for source in sources]

        for position, verdict in enumerate(verdicts, start=1):
            self._log_verdict(position, len(verdicts), verdict, confidence_threshold)

        return verdicts

    def plan_fee_propagation(self, sources: Iterable[ProviderIdentity], verdicts: Sequence[MatchVerdict],
                             confidence_threshold: int = DEFAULT_CONFIDENCE_THRESHOLD) -> List[FeeUpdate]:
        """
        Select the verdicts whose donor fee should be copied onto the source.

        A fee propagates when the verdict meets the threshold, the matched
        candidate has a positive fee and the source fee is unknown. Known
        fees, including a literal 0.0, are never overwritten.

        Args:
            sources: Source records the verdicts were produced for
            verdicts: Verdicts from ``reconcile_all``
            confidence_threshold: Minimum confidence for propagation (0-100)

        Returns:
            Fee updates in verdict order
        """
        _check_threshold(confidence_threshold)

        by_id = {source.provider_id: source for source in sources}
        updates = []

        for verdict in verdicts:
            if verdict.confidence < confidence_threshold or not verdict.is_match:
                continue
            if verdict.donor_fee is None:
                continue

            source = by_id.get(verdict.source_id)
            if source is None:
                logger.warning(f"No source record for verdict {verdict.source_id}")
                continue
            if source.has_known_fee:
                continue

            updates.append(FeeUpdate(
                provider_id=source.provider_id,
                monthly_fee=verdict.donor_fee,
                donor_id=verdict.target_id,
                tier=verdict.tier,
                confidence=verdict.confidence,
            ))

        logger.info(f"Planned {len(updates)} fee propagations")
        return updates

    def summarize(self, verdicts: Sequence[MatchVerdict],
                  confidence_threshold: int = DEFAULT_CONFIDENCE_THRESHOLD,
                  fee_updates: Optional[Sequence[FeeUpdate]] = None) -> Dict[str, Any]:
        """
        Summarize a reconciliation run.

        Args:
            verdicts: Verdicts from ``reconcile_all``
            confidence_threshold: Threshold the run used
            fee_updates: Planned or applied fee updates, if any

        Returns:
            Dictionary with matched, low_confidence, no_match, unmatched,
            per-tier counts and the number of fees propagated
        """
        _check_threshold(confidence_threshold)

        matched = sum(1 for v in verdicts if v.is_match and v.confidence >= confidence_threshold)
        low_confidence = sum(1 for v in verdicts if v.confidence > 0 and not
                             (v.is_match and v.confidence >= confidence_threshold))
        no_match = len(verdicts) - matched - low_confidence

        tier_counts = Counter(v.tier.value for v in verdicts)

        return {
            "total": len(verdicts),
            "threshold": confidence_threshold,
            "matched": matched,
            "low_confidence": low_confidence,
            "no_match": no_match,
            "unmatched": low_confidence + no_match,
            "by_tier": {tier.value: tier_counts.get(tier.value, 0) for tier in MatchTier},
            "fees_inherited": len(fee_updates) if fee_updates is not None else 0,
        }
