"""
Unit tests for provider file loading.
"""

import json
import logging

import pandas as pd
import pytest

from dpcmatch.ingestion.provider_loader import (
    ProviderDataError,
    load_providers,
    providers_from_dataframe,
    read_provider_file,
)


class TestProvidersFromDataFrame:
    """Test cases for DataFrame conversion."""

    def setup_method(self):
        """Setup test fixtures."""
        self.df = pd.DataFrame([
            {"id": "dpca-1", "name": "Dr. Jane Smith MD", "url": "https://www.janesmithdpc.com/",
             "street": "123 Main St", "city": "Austin", "state": "TX", "zip": "01234",
             "fee": "$85", "lat": "30.2672", "lng": "-97.7431"},
            {"id": "dpca-2", "name": "Bobby Lou", "url": None, "street": None, "city": "Austin",
             "state": "TX", "zip": None, "fee": 0, "lat": None, "lng": None},
            {"id": "dpca-3", "name": "Martin", "url": "", "street": "", "city": "Austin",
             "state": "TX", "zip": "78701", "fee": "call us", "lat": "999", "lng": "0"},
            {"id": None, "name": "No Id", "url": None, "street": None, "city": "Austin",
             "state": "TX", "zip": None, "fee": None, "lat": None, "lng": None},
            {"id": "dpca-1", "name": "Duplicate", "url": None, "street": None, "city": "Austin",
             "state": "TX", "zip": None, "fee": None, "lat": None, "lng": None},
        ])

    def test_maps_aliases_and_coerces_fields(self):
        providers = providers_from_dataframe(self.df, source="dpca")

        assert [p.provider_id for p in providers] == ["dpca-1", "dpca-2", "dpca-3"]

        first = providers[0]
        assert first.raw_website == "https://www.janesmithdpc.com/"
        assert first.raw_address == "123 Main St"
        assert first.zip_code == "01234"
        assert first.monthly_fee == 85.0
        assert first.coordinate is not None
        assert first.source == "dpca"

    def test_missing_values_become_unknown(self):
        providers = providers_from_dataframe(self.df)

        second = providers[1]
        assert second.raw_website is None
        assert second.monthly_fee is None
        assert second.coordinate is None

        third = providers[2]
        assert third.monthly_fee is None
        assert third.coordinate is None

    def test_zero_fee_kept_when_flag_off(self):
        providers = providers_from_dataframe(self.df, zero_fee_means_unknown=False)
        assert providers[1].monthly_fee == 0.0
        assert providers[1].has_known_fee

    def test_missing_required_columns(self):
        with pytest.raises(ProviderDataError, match="state"):
            providers_from_dataframe(self.df.drop(columns=["state"]))

    def test_value_problems_are_logged_not_fatal(self, caplog):
        with caplog.at_level(logging.WARNING, logger="dpcmatch.ingestion.schema_validator"):
            providers = providers_from_dataframe(self.df)

        assert len(providers) == 3
        assert "Failed expectation: expect_column_values_to_be_between for column: latitude" in caplog.text
        assert "Failed expectation: expect_column_values_to_be_unique for column: provider_id" in caplog.text

    def test_numeric_zip_is_zero_padded(self):
        df = pd.DataFrame([{"provider_id": "p1", "name": "A", "city": "Boston", "state": "MA",
                            "zip_code": 2108}])
        assert providers_from_dataframe(df)[0].zip_code == "02108"


class TestLoadProviders:
    """Test cases for reading provider files."""

    def setup_method(self):
        """Setup test fixtures."""
        self.rows = [
            {"provider_id": "p1", "name": "Jane Smith", "city": "Austin", "state": "TX",
             "zip_code": "01234", "monthly_fee": 85},
            {"provider_id": "p2", "name": "Bobby Lou", "city": "Dallas", "state": "TX",
             "zip_code": "75201", "monthly_fee": None},
        ]

    def test_csv(self, tmp_path):
        path = tmp_path / "frontier.csv"
        pd.DataFrame(self.rows).to_csv(path, index=False)

        providers = load_providers(str(path))

        assert [p.provider_id for p in providers] == ["p1", "p2"]
        assert providers[0].zip_code == "01234"
        assert providers[0].monthly_fee == 85.0
        assert providers[1].monthly_fee is None
        assert providers[0].source == "frontier"

    def test_json_records(self, tmp_path):
        path = tmp_path / "dpca.json"
        path.write_text(json.dumps(self.rows))

        providers = load_providers(str(path), source="alliance")

        assert len(providers) == 2
        assert providers[1].source == "alliance"
        assert providers[0].zip_code == "01234"

    def test_json_lines(self, tmp_path):
        path = tmp_path / "dpca.jsonl"
        path.write_text("\n".join(json.dumps(row) for row in self.rows))

        assert len(load_providers(str(path))) == 2

    def test_required_columns_from_config(self, tmp_path):
        path = tmp_path / "frontier.csv"
        pd.DataFrame(self.rows).to_csv(path, index=False)

        with pytest.raises(ProviderDataError):
            load_providers(str(path), config={"required_columns": ["provider_id", "website"]})

    def test_unsupported_format(self, tmp_path):
        path = tmp_path / "providers.xlsx"
        path.write_text("not really a spreadsheet")

        with pytest.raises(ProviderDataError):
            read_provider_file(str(path))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            read_provider_file(str(tmp_path / "missing.csv"))
