"""
Unit tests for the reconciliation driver.
"""

import pytest

from dpcmatch.match.classifier import MatchClassifier
from dpcmatch.match.reconciler import ReconciliationDriver, coverage_report, verdicts_to_dataframe
from dpcmatch.models import FeeUpdate, GeoCoordinates, MatchTier, ProviderIdentity


def _provider(provider_id, name, **fields):
    return ProviderIdentity(provider_id=provider_id, raw_name=name, **fields)


class FakeGeocoder:
    def __init__(self, results):
        self.results = results
        self.requested = []

    def batch_geocode(self, zip_codes):
        zip_codes = list(zip_codes)
        self.requested.extend(zip_codes)
        return {zip_code: self.results.get(zip_code) for zip_code in zip_codes}


class TestReconcileAll:
    """Test cases for matching a batch of sources."""

    def setup_method(self):
        """Setup test fixtures."""
        self.classifier = MatchClassifier()
        self.sources = [
            _provider("dpca-1", "Dr. Jane Smith MD", raw_website="https://www.janesmithdpc.com/",
                      city="Austin", state="TX"),
            _provider("dpca-2", "Bobby Lou", city="Austin", state="TX", zip_code="78702"),
            _provider("dpca-3", "Dr. Martin MD", city="Austin", state="TX", zip_code="78702"),
            _provider("dpca-4", "Jane Smith", city="Austin", state="TX", zip_code="78702"),
        ]
        self.candidates = [
            _provider("frontier-1", "Jane Smith Family Medicine", raw_website="janesmithdpc.com",
                      city="Austin", state="TX", zip_code="78701", monthly_fee=85.0),
            _provider("frontier-2", "Marvel Family Medicine", city="Round Rock", state="TX", monthly_fee=60.0),
        ]

    def test_one_verdict_per_source_in_order(self):
        driver = ReconciliationDriver(self.classifier)

        verdicts = driver.reconcile_all(self.sources, self.candidates, 85)

        assert [v.source_id for v in verdicts] == ["dpca-1", "dpca-2", "dpca-3", "dpca-4"]
        assert [v.tier for v in verdicts] == [
            MatchTier.EXACT_WEBSITE, MatchTier.NONE, MatchTier.FUZZY, MatchTier.NAME_LOCATION,
        ]

    def test_repeatable(self):
        driver = ReconciliationDriver(self.classifier)
        first = driver.reconcile_all(self.sources, self.candidates)
        second = driver.reconcile_all(self.sources, self.candidates)
        assert first == second

    def test_thread_pool_preserves_order_and_results(self):
        serial = ReconciliationDriver(self.classifier).reconcile_all(self.sources * 5, self.candidates)
        parallel = ReconciliationDriver(self.classifier, max_workers=4).reconcile_all(
            self.sources * 5, self.candidates
        )
        assert parallel == serial

    @pytest.mark.parametrize("threshold", [-1, 101])
    def test_rejects_threshold_out_of_range(self, threshold):
        driver = ReconciliationDriver(self.classifier)
        with pytest.raises(ValueError):
            driver.reconcile_all(self.sources, self.candidates, threshold)

    def test_rejects_zero_workers(self):
        with pytest.raises(ValueError):
            ReconciliationDriver(self.classifier, max_workers=0)


class TestGeocodedCoordinates:
    """Test cases for filling coordinates from ZIP centroids."""

    def setup_method(self):
        """Setup test fixtures."""
        self.classifier = MatchClassifier()
        self.source = _provider("dpca-1", "Dr. Martin MD", state="TX", zip_code="78701")
        self.candidate = _provider("frontier-1", "Marvel Family Medicine", state="TX", zip_code="78664",
                                   monthly_fee=60.0)

    def test_without_geocoder_distance_is_unknown(self):
        verdict = ReconciliationDriver(self.classifier).reconcile_all([self.source], [self.candidate])[0]
        assert verdict.tier is MatchTier.FUZZY
        assert verdict.distance_miles is None

    def test_geocoded_distance_rules_out_far_candidate(self):
        geocoder = FakeGeocoder({
            "78701": GeoCoordinates(latitude=30.2672, longitude=-97.7431),
            "78664": GeoCoordinates(latitude=30.5672, longitude=-97.7431),
        })
        driver = ReconciliationDriver(self.classifier, geocoder=geocoder)

        verdict = driver.reconcile_all([self.source], [self.candidate])[0]

        assert verdict.tier is MatchTier.NONE
        assert self.source.latitude is None
        assert self.candidate.latitude is None

    def test_records_with_coordinates_are_not_geocoded(self):
        located = _provider("dpca-2", "Dr. Martin MD", state="TX", zip_code="78701",
                            latitude=30.2672, longitude=-97.7431)
        geocoder = FakeGeocoder({"78664": GeoCoordinates(latitude=30.3672, longitude=-97.7431)})
        driver = ReconciliationDriver(self.classifier, geocoder=geocoder)

        verdict = driver.reconcile_all([located], [self.candidate])[0]

        assert geocoder.requested == ["78664"]
        assert verdict.tier is MatchTier.FUZZY
        assert verdict.distance_miles == pytest.approx(6.91, abs=0.01)

    def test_unresolved_zip_keeps_record_coordinate_free(self):
        driver = ReconciliationDriver(self.classifier, geocoder=FakeGeocoder({}))
        verdict = driver.reconcile_all([self.source], [self.candidate])[0]
        assert verdict.tier is MatchTier.FUZZY


class TestFeePropagation:
    """Test cases for planning fee updates and summaries."""

    def setup_method(self):
        """Setup test fixtures."""
        self.driver = ReconciliationDriver(MatchClassifier())
        self.sources = [
            _provider("unknown-fee", "Jane Smith", raw_website="shared-1.example"),
            _provider("known-fee", "Jane Smith", raw_website="shared-2.example", monthly_fee=50.0),
            _provider("free", "Jane Smith", raw_website="shared-3.example", monthly_fee=0.0),
            _provider("low-confidence", "Jane Smith", city="Austin", state="TX"),
            _provider("no-donor-fee", "Jane Smith", raw_website="shared-4.example"),
            _provider("no-match", "Bobby Lou", city="Boston", state="MA"),
        ]
        self.candidates = [
            _provider("c1", "A", raw_website="shared-1.example", monthly_fee=85.0),
            _provider("c2", "B", raw_website="shared-2.example", monthly_fee=90.0),
            _provider("c3", "C", raw_website="shared-3.example", monthly_fee=70.0),
            _provider("c4", "Jane Smith", city="Dallas", state="TX", monthly_fee=65.0),
            _provider("c5", "D", raw_website="shared-4.example"),
        ]
        self.verdicts = self.driver.reconcile_all(self.sources, self.candidates, 85)

    def test_only_unknown_fees_receive_donor_fee(self):
        updates = self.driver.plan_fee_propagation(self.sources, self.verdicts, 85)

        assert updates == [
            FeeUpdate(provider_id="unknown-fee", monthly_fee=85.0, donor_id="c1",
                      tier=MatchTier.EXACT_WEBSITE, confidence=100),
        ]

    def test_lower_threshold_admits_fuzzy_match(self):
        updates = self.driver.plan_fee_propagation(self.sources, self.verdicts, 70)
        assert [update.provider_id for update in updates] == ["unknown-fee", "low-confidence"]

    def test_summary(self):
        updates = self.driver.plan_fee_propagation(self.sources, self.verdicts, 85)
        summary = self.driver.summarize(self.verdicts, 85, updates)

        assert summary["total"] == 6
        assert summary["matched"] == 4
        assert summary["low_confidence"] == 1
        assert summary["no_match"] == 1
        assert summary["unmatched"] == 2
        assert summary["fees_inherited"] == 1
        assert summary["by_tier"]["exact_website"] == 4
        assert summary["by_tier"]["fuzzy"] == 1
        assert summary["by_tier"]["none"] == 1

    def test_verdicts_to_dataframe(self):
        df = verdicts_to_dataframe(self.verdicts)

        assert len(df) == 6
        assert list(df.columns) == ["source_id", "target_id", "tier", "confidence",
                                    "distance_miles", "donor_fee", "name_similarity"]
        assert df.loc[0, "tier"] == "exact_website"

    def test_coverage_report(self):
        report = coverage_report(self.sources)
        assert report == {"total": 6, "with_fees": 1, "without_fees": 5, "with_website": 4}
