"""
Main pipeline orchestrator for DPCMatch.

Coordinates a reconciliation run from provider file loading through
matching, fee propagation and reporting.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import pandas as pd

from ..config import DEFAULT_CONFIG_PATH, get_default_config, load_config, validate_config
from ..geocoding.service import GeocodingService
from ..ingestion.provider_loader import load_providers
from ..match.classifier import MatchClassifier
from ..match.reconciler import ReconciliationDriver, coverage_report, verdicts_to_dataframe
from ..merge.fee_writer import DryRunFeeWriter, SQLiteFeeWriter
from ..models import FeeUpdate, MatchVerdict, ProviderIdentity

logger = logging.getLogger(__name__)


class ReconciliationPipeline:
    """
    Main pipeline orchestrator for DPCMatch.

    Loads source and candidate provider files, matches them, propagates fees
    and reports, timing each stage.
    """

    def __init__(self, config_path: str = DEFAULT_CONFIG_PATH, config: Optional[Dict] = None):
        """
        Initialize pipeline with configuration.

        Args:
            config_path: Path to configuration file
            config: Already-loaded configuration (skips reading config_path)
        """
        self.config_path = config_path
        self.config = config if config is not None else load_config(config_path)

        if not validate_config(self.config):
            raise ValueError(f"Invalid configuration: {config_path}")

        self.classifier = MatchClassifier(self.config)

        # Pipeline state
        self.pipeline_start_time = None
        self.stage_times: Dict[str, float] = {}
        self.stage_durations: Dict[str, float] = {}

        logger.info("Initialized DPCMatch reconciliation pipeline")

    def _start_stage_timer(self, stage_name: str):
        """Start timing for a pipeline stage."""
        self.stage_times[stage_name] = time.time()
        logger.info(f"Starting stage: {stage_name}")

    def _end_stage_timer(self, stage_name: str):
        """End timing for a pipeline stage."""
        if stage_name in self.stage_times:
            duration = time.time() - self.stage_times[stage_name]
            self.stage_durations[stage_name] = duration
            logger.info(f"Completed stage: {stage_name} in {duration:.2f} seconds")

    def load_inputs(self, sources_path: str, candidates_path: str) -> Dict[str, List[ProviderIdentity]]:
        """
        Load source and candidate provider files.

        Args:
            sources_path: Providers that may receive fees
            candidates_path: Providers that may donate fees

        Returns:
            Dictionary with ``sources`` and ``candidates`` record lists
        """
        self._start_stage_timer("data_loading")

        try:
            ingestion_config = self.config.get("ingestion", {})
            sources = load_providers(sources_path, config=ingestion_config)
            candidates = load_providers(candidates_path, config=ingestion_config)

            logger.info(f"Loaded {len(sources)} source providers and {len(candidates)} candidates")

            self._end_stage_timer("data_loading")
            return {"sources": sources, "candidates": candidates}

        except Exception as e:
            logger.error(f"Data loading failed: {e}")
            raise

    def match_providers(self, sources: List[ProviderIdentity], candidates: List[ProviderIdentity],
                        threshold: int, geocoder: Optional[GeocodingService] = None,
                        workers: int = 1) -> List[MatchVerdict]:
        """
        Match every source provider against the candidates.

        Args:
            sources: Source records
            candidates: Candidate records
            threshold: Confidence threshold
            geocoder: Optional geocoder for missing coordinates
            workers: Classification threads

        Returns:
            One verdict per source
        """
        self._start_stage_timer("provider_matching")

        try:
            self.driver = ReconciliationDriver(self.classifier, geocoder=geocoder, max_workers=workers)
            verdicts = self.driver.reconcile_all(sources, candidates, threshold)

            self._end_stage_timer("provider_matching")
            return verdicts

        except Exception as e:
            logger.error(f"Provider matching failed: {e}")
            raise

    def propagate_fees(self, sources: List[ProviderIdentity], verdicts: List[MatchVerdict],
                       threshold: int, dry_run: bool = False,
                       db_path: Optional[str] = None) -> Dict[str, Any]:
        """
        Plan fee propagation and hand it to the configured writer.

        Args:
            sources: Source records
            verdicts: Verdicts for the sources
            threshold: Confidence threshold
            dry_run: Log updates instead of writing them
            db_path: SQLite database to write to

        Returns:
            Dictionary with the planned ``updates`` and the number ``written``
        """
        self._start_stage_timer("fee_propagation")

        try:
            updates = self.driver.plan_fee_propagation(sources, verdicts, threshold)

            written = 0
            if dry_run:
                DryRunFeeWriter().apply(updates)
            elif db_path:
                writer = SQLiteFeeWriter(
                    db_path,
                    zero_fee_means_unknown=self.config.get("ingestion", {}).get("zero_fee_means_unknown", True),
                )
                writer.register_providers(sources)
                written = writer.apply(updates)
            else:
                logger.info("No fee database given, fee updates are only reported")

            self._end_stage_timer("fee_propagation")
            return {"updates": updates, "written": written}

        except Exception as e:
            logger.error(f"Fee propagation failed: {e}")
            raise

    def generate_report(self, sources: List[ProviderIdentity], verdicts: List[MatchVerdict],
                        updates: List[FeeUpdate], written: int, threshold: int,
                        dry_run: bool) -> Dict[str, Any]:
        """
        Build the run report.

        Returns:
            Dictionary with matching summary, coverage and execution timing
        """
        self._start_stage_timer("report_generation")

        summary = self.driver.summarize(verdicts, threshold, updates)
        summary["fees_planned"] = len(updates)
        summary["fees_inherited"] = written

        report = {
            "matching": summary,
            "coverage": coverage_report(sources),
            "dry_run": dry_run,
            "pipeline_execution": {
                "stage_times": dict(self.stage_durations),
                "total_duration": time.time() - self.pipeline_start_time if self.pipeline_start_time else 0,
            },
        }

        self._end_stage_timer("report_generation")
        return report

    def run_pipeline(self, sources_path: str, candidates_path: str,
                     threshold: Optional[int] = None,
                     dry_run: bool = False,
                     db_path: Optional[str] = None,
                     output_path: Optional[str] = None,
                     geocode: bool = False,
                     workers: Optional[int] = None) -> Dict[str, Any]:
        """
        Run a complete reconciliation.

        Args:
            sources_path: Providers that may receive fees
            candidates_path: Providers that may donate fees
            threshold: Confidence threshold (defaults to config)
            dry_run: Log fee updates instead of writing them
            db_path: SQLite database receiving fee updates
            output_path: Directory for CSV and JSON results (optional)
            geocode: Fill missing coordinates from ZIP centroids
            workers: Classification threads (defaults to config)

        Returns:
            Pipeline execution report
        """
        reconciliation_config = self.config.get("reconciliation", {})
        threshold = threshold if threshold is not None else reconciliation_config.get("confidence_threshold", 85)
        workers = workers if workers is not None else reconciliation_config.get("max_workers", 1)

        self.pipeline_start_time = time.time()
        logger.info(f"Starting DPCMatch reconciliation: {sources_path} against {candidates_path} "
                    f"(threshold {threshold}%, dry run: {dry_run})")

        geocoder = GeocodingService.from_config(self.config) if geocode else None

        try:
            inputs = self.load_inputs(sources_path, candidates_path)
            sources = inputs["sources"]

            verdicts = self.match_providers(sources, inputs["candidates"], threshold, geocoder, workers)
            propagation = self.propagate_fees(sources, verdicts, threshold, dry_run, db_path)

            report = self.generate_report(sources, verdicts, propagation["updates"],
                                          propagation["written"], threshold, dry_run)

            if output_path:
                self._save_results(verdicts, propagation["updates"], report, output_path)

            total_duration = time.time() - self.pipeline_start_time
            logger.info(f"Pipeline completed successfully in {total_duration:.2f} seconds")

            return report

        except Exception as e:
            logger.error(f"Pipeline failed: {e}")
            raise
        finally:
            if geocoder is not None:
                geocoder.close()

    def _save_results(self, verdicts: List[MatchVerdict], updates: List[FeeUpdate],
                      report: Dict[str, Any], output_path: str):
        """Save pipeline results to specified path."""
        output_dir = Path(output_path)
        output_dir.mkdir(parents=True, exist_ok=True)

        verdicts_to_dataframe(verdicts).to_csv(output_dir / "match_verdicts.csv", index=False)
        pd.DataFrame([update.to_dict() for update in updates],
                     columns=["provider_id", "monthly_fee", "donor_id", "tier", "confidence"]
                     ).to_csv(output_dir / "fee_updates.csv", index=False)

        with open(output_dir / "reconciliation_report.json", "w") as f:
            json.dump(report, f, indent=2)

        logger.info(f"Results saved to {output_path}")


def print_summary(report: Dict[str, Any], show_coverage: bool = False):
    """Print the run summary to stdout."""
    matching = report["matching"]

    print("\n" + "=" * 50)
    print("RECONCILIATION SUMMARY")
    print("=" * 50)
    print(f"Matched (>={matching['threshold']}%): {matching['matched']:,}")
    print(f"Low Confidence: {matching['low_confidence']:,}")
    print(f"No Match: {matching['no_match']:,}")
    print(f"Fees Planned: {matching['fees_planned']:,}")
    print(f"Fees Inherited: {matching['fees_inherited']:,}" + (" (dry run)" if report["dry_run"] else ""))
    for tier, count in matching["by_tier"].items():
        print(f"  {tier}: {count:,}")

    if show_coverage:
        coverage = report["coverage"]
        print("-" * 50)
        print(f"Total Sources: {coverage['total']:,}")
        print(f"With Fees: {coverage['with_fees']:,}")
        print(f"Without Fees: {coverage['without_fees']:,}")
        print(f"With Website: {coverage['with_website']:,}")

    print(f"Total Duration: {report['pipeline_execution']['total_duration']:.2f} seconds")
    print("=" * 50)


def main(argv: Optional[List[str]] = None):
    """Main entry point for DPCMatch reconciliation."""
    defaults = get_default_config()

    parser = argparse.ArgumentParser(description="DPCMatch Provider Reconciliation Pipeline")
    parser.add_argument("--sources", required=True, help="Providers that may receive fees")
    parser.add_argument("--candidates", required=True, help="Providers that may donate fees")
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH, help="Configuration file path")
    parser.add_argument("--threshold", type=int,
                        help=f"Confidence threshold 0-100 (default "
                             f"{defaults['reconciliation']['confidence_threshold']})")
    parser.add_argument("--dry-run", action="store_true", help="Log fee updates without writing them")
    parser.add_argument("--report", action="store_true", help="Print fee and website coverage")
    parser.add_argument("--db", help="SQLite database receiving fee updates")
    parser.add_argument("--output", help="Output directory path")
    parser.add_argument("--geocode", action="store_true", help="Fill missing coordinates from ZIP centroids")
    parser.add_argument("--workers", type=int, help="Classification threads")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING", "ERROR"])

    args = parser.parse_args(argv)

    # Ensure log directory exists
    Path("logs").mkdir(exist_ok=True)

    # Setup logging
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler("logs/dpcmatch.log")
        ]
    )

    try:
        pipeline = ReconciliationPipeline(args.config)
        report = pipeline.run_pipeline(
            sources_path=args.sources,
            candidates_path=args.candidates,
            threshold=args.threshold,
            dry_run=args.dry_run,
            db_path=args.db,
            output_path=args.output,
            geocode=args.geocode,
            workers=args.workers,
        )

        print_summary(report, show_coverage=args.report)

    except Exception as e:
        logger.error(f"Reconciliation failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
