"""
Schema validation using Great Expectations for DPCMatch.

Checks provider exports for required columns, non-null unique ids and
plausible fee and coordinate values before they are turned into records.
Only missing columns are fatal; value problems are reported and left to the
loader's coercion.
"""

import itertools
import logging
from typing import Any, Dict, List, Optional, Sequence

import great_expectations as gx
import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_REQUIRED_COLUMNS = ["provider_id", "name", "city", "state"]

VALUE_RANGES = {
    "monthly_fee": (0, None),
    "latitude": (-90, 90),
    "longitude": (-180, 180),
}

COLUMN_TO_EXIST = "expect_column_to_exist"


def _numeric_column(series: pd.Series) -> pd.Series:
    cleaned = series.map(lambda value: value.replace("$", "").replace(",", "").strip()
                         if isinstance(value, str) else value)
    return pd.to_numeric(cleaned, errors="coerce").astype(float)


class ProviderSchemaValidator:
    """
    Validates provider DataFrames with an ephemeral Great Expectations context.

    One context and pandas data source are created per validator; every
    ``validate_data`` call builds a suite for the columns actually present.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize validator with configuration.

        Args:
            config: ``ingestion`` config section (``required_columns``)
        """
        self.config = config or {}
        self.required_columns = list(self.config.get("required_columns", DEFAULT_REQUIRED_COLUMNS))

        self.context = gx.get_context(mode="ephemeral")
        data_source = self.context.data_sources.add_pandas("provider_data")
        data_asset = data_source.add_dataframe_asset(name="provider_rows")
        self.batch_definition = data_asset.add_batch_definition_whole_dataframe("provider_batch")
        self._suite_numbers = itertools.count(1)

        logger.info(f"Initialized ProviderSchemaValidator (required columns: {self.required_columns})")

    def create_expectations(self, columns: Sequence[str]) -> gx.ExpectationSuite:
        """
        Create expectation suite for provider data validation.

        Value expectations are only added for columns that exist, so a
        missing column fails exactly one expectation.

        Args:
            columns: Columns of the DataFrame about to be validated

        Returns:
            ExpectationSuite with validation rules
        """
        suite_name = f"provider_data_validation_{next(self._suite_numbers)}"
        suite = self.context.suites.add(gx.ExpectationSuite(name=suite_name))
        present = set(columns)

        for column in self.required_columns:
            suite.add_expectation(gx.expectations.ExpectColumnToExist(column=column))

        if "provider_id" in present:
            suite.add_expectation(gx.expectations.ExpectColumnValuesToNotBeNull(column="provider_id"))
            suite.add_expectation(gx.expectations.ExpectColumnValuesToBeUnique(column="provider_id"))

        for column, (min_value, max_value) in VALUE_RANGES.items():
            if column in present:
                suite.add_expectation(gx.expectations.ExpectColumnValuesToBeBetween(
                    column=column, min_value=min_value, max_value=max_value,
                ))

        logger.debug(f"Created expectation suite '{suite_name}' with {len(suite.expectations)} expectations")
        return suite

    def validate_data(self, df: pd.DataFrame):
        """
        Validate DataFrame against a fresh expectation suite.

        Fee and coordinate columns are checked on a numeric copy; values that
        do not parse are treated as missing.

        Args:
            df: Provider rows with canonical column names

        Returns:
            ExpectationSuiteValidationResult
        """
        prepared = df.copy()
        for column in VALUE_RANGES:
            if column in prepared.columns:
                prepared[column] = _numeric_column(prepared[column])

        suite = self.create_expectations(list(prepared.columns))
        batch = self.batch_definition.get_batch(batch_parameters={"dataframe": prepared})
        result = batch.validate(suite)

        for expectation_result in result.results:
            if not expectation_result.success:
                config = expectation_result.expectation_config
                logger.warning(f"Failed expectation: {config.type} "
                               f"for column: {config.kwargs.get('column', 'N/A')}")

        return result

    def get_validation_summary(self, result) -> Dict[str, Any]:
        """
        Extract validation summary from a suite validation result.

        Args:
            result: Result from ``validate_data``

        Returns:
            Dictionary with validation summary
        """
        details: List[Dict[str, Any]] = []
        for expectation_result in result.results:
            if expectation_result.success:
                continue
            config = expectation_result.expectation_config
            details.append({
                "expectation_type": config.type,
                "column": config.kwargs.get("column", "N/A"),
                "unexpected_count": (expectation_result.result or {}).get("unexpected_count"),
            })

        total = len(result.results)
        summary = {
            "success": not details,
            "total_expectations": total,
            "successful_expectations": total - len(details),
            "failed_expectations": len(details),
            "failed_expectations_details": details,
            "success_rate": (total - len(details)) / total if total else 0.0,
        }

        logger.info(f"Validation summary: {summary['successful_expectations']}/{total} passed "
                    f"({summary['success_rate']:.2%} success rate)")
        return summary

    def missing_columns(self, summary: Dict[str, Any]) -> List[str]:
        failed = {detail["column"] for detail in summary["failed_expectations_details"]
                  if detail["expectation_type"] == COLUMN_TO_EXIST}
        return [column for column in self.required_columns if column in failed]


def validate_provider_data(df: pd.DataFrame, config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Convenience function to validate provider data.

    Args:
        df: Provider DataFrame with canonical column names
        config: ``ingestion`` config section

    Returns:
        Validation summary, with the missing required columns under ``missing_columns``
    """
    validator = ProviderSchemaValidator(config)
    summary = validator.get_validation_summary(validator.validate_data(df))
    summary["missing_columns"] = validator.missing_columns(summary)

    if summary["success"]:
        logger.info("All validation expectations passed")
    return summary
