"""
Integration tests for the complete DPCMatch reconciliation pipeline.
"""

import json

import pandas as pd
import pytest

from dpcmatch.config import get_default_config
from dpcmatch.merge.fee_writer import SQLiteFeeWriter
from dpcmatch.pipeline.run_reconciliation import ReconciliationPipeline, main


class TestReconciliationPipeline:
    """Test cases for the reconciliation pipeline."""

    @pytest.fixture(autouse=True)
    def setup_files(self, tmp_path):
        """Setup test fixtures."""
        self.tmp_path = tmp_path

        self.sources_path = tmp_path / "dpca.csv"
        pd.DataFrame([
            {"provider_id": "dpca-1", "name": "Dr. Jane Smith MD", "website": "https://www.janesmithdpc.com/",
             "address": "", "city": "Austin", "state": "TX", "zip_code": "78701", "monthly_fee": 0},
            {"provider_id": "dpca-2", "name": "Hill Country Direct Care", "website": "",
             "address": "123 Main St.", "city": "Austin", "state": "TX", "zip_code": "78701", "monthly_fee": None},
            {"provider_id": "dpca-3", "name": "Dr. Martin MD", "website": "",
             "address": "", "city": "Austin", "state": "TX", "zip_code": "78702", "monthly_fee": None},
            {"provider_id": "dpca-4", "name": "Bobby Lou", "website": "",
             "address": "", "city": "Boston", "state": "MA", "zip_code": "02108", "monthly_fee": 120},
        ]).to_csv(self.sources_path, index=False)

        self.candidates_path = tmp_path / "frontier.csv"
        pd.DataFrame([
            {"provider_id": "frontier-1", "name": "Jane Smith Family Medicine", "website": "janesmithdpc.com",
             "address": "", "city": "Austin", "state": "TX", "zip_code": "78701", "monthly_fee": 85},
            {"provider_id": "frontier-2", "name": "Capital Partners", "website": "",
             "address": "123 Main Street", "city": "Austin", "state": "TX", "zip_code": "78701",
             "monthly_fee": 99},
            {"provider_id": "frontier-3", "name": "Marvel Family Medicine", "website": "",
             "address": "", "city": "Round Rock", "state": "TX", "zip_code": "78664", "monthly_fee": 60},
        ]).to_csv(self.candidates_path, index=False)

        self.pipeline = ReconciliationPipeline(config=get_default_config())

    def test_full_pipeline_execution(self):
        db_path = self.tmp_path / "dpcmatch.db"
        output_dir = self.tmp_path / "output"

        report = self.pipeline.run_pipeline(
            sources_path=str(self.sources_path),
            candidates_path=str(self.candidates_path),
            db_path=str(db_path),
            output_path=str(output_dir),
        )

        matching = report["matching"]
        assert matching["matched"] == 2
        assert matching["low_confidence"] == 1
        assert matching["no_match"] == 1
        assert matching["fees_planned"] == 2
        assert matching["fees_inherited"] == 2

        assert report["coverage"] == {"total": 4, "with_fees": 1, "without_fees": 3, "with_website": 1}
        assert set(report["pipeline_execution"]["stage_times"]) == {
            "data_loading", "provider_matching", "fee_propagation",
        }

        writer = SQLiteFeeWriter(str(db_path))
        assert writer.get_fee("dpca-1") == 85.0
        assert writer.get_fee("dpca-2") == 99.0
        assert writer.get_fee("dpca-3") is None
        assert writer.get_fee("dpca-4") == 120.0

        verdicts = pd.read_csv(output_dir / "match_verdicts.csv")
        assert list(verdicts["tier"]) == ["exact_website", "exact_address", "fuzzy", "none"]

        updates = pd.read_csv(output_dir / "fee_updates.csv")
        assert list(updates["provider_id"]) == ["dpca-1", "dpca-2"]

        with open(output_dir / "reconciliation_report.json") as f:
            assert json.load(f)["matching"]["matched"] == 2

    def test_dry_run_writes_nothing(self):
        db_path = self.tmp_path / "dpcmatch.db"

        report = self.pipeline.run_pipeline(
            sources_path=str(self.sources_path),
            candidates_path=str(self.candidates_path),
            dry_run=True,
            db_path=str(db_path),
        )

        assert report["dry_run"] is True
        assert report["matching"]["fees_planned"] == 2
        assert report["matching"]["fees_inherited"] == 0
        assert not db_path.exists()

    def test_lower_threshold_admits_fuzzy(self):
        report = self.pipeline.run_pipeline(
            sources_path=str(self.sources_path),
            candidates_path=str(self.candidates_path),
            threshold=70,
        )

        assert report["matching"]["matched"] == 3
        assert report["matching"]["fees_planned"] == 3
        assert report["matching"]["fees_inherited"] == 0

    def test_parallel_workers(self):
        report = self.pipeline.run_pipeline(
            sources_path=str(self.sources_path),
            candidates_path=str(self.candidates_path),
            workers=3,
        )
        assert report["matching"]["matched"] == 2

    def test_missing_input_raises(self):
        with pytest.raises(FileNotFoundError):
            self.pipeline.run_pipeline(
                sources_path=str(self.tmp_path / "missing.csv"),
                candidates_path=str(self.candidates_path),
            )

    def test_invalid_config_rejected(self):
        config = get_default_config()
        config["reconciliation"]["confidence_threshold"] = 150
        with pytest.raises(ValueError):
            ReconciliationPipeline(config=config)

    def test_cli_main(self, monkeypatch, capsys):
        monkeypatch.chdir(self.tmp_path)

        main([
            "--sources", str(self.sources_path),
            "--candidates", str(self.candidates_path),
            "--dry-run",
            "--report",
        ])

        out = capsys.readouterr().out
        assert "RECONCILIATION SUMMARY" in out
        assert "Matched (>=85%): 2" in out
        assert "With Website: 1" in out

    def test_cli_exits_on_failure(self, monkeypatch):
        monkeypatch.chdir(self.tmp_path)

        with pytest.raises(SystemExit) as excinfo:
            main(["--sources", "missing.csv", "--candidates", str(self.candidates_path)])

        assert excinfo.value.code == 1
