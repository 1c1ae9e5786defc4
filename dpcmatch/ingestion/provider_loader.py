"""
Provider file loading for DPCMatch.

Reads scraped provider exports (CSV, JSON, JSON lines or Parquet) into
ProviderIdentity records, mapping common column aliases and coercing fees
and coordinates to the explicit "unknown" representation.
"""

import logging
import math
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

import pandas as pd

from ..models import ProviderIdentity
from .schema_validator import DEFAULT_REQUIRED_COLUMNS, validate_provider_data

logger = logging.getLogger(__name__)

COLUMN_ALIASES: Dict[str, List[str]] = {
    "provider_id": ["id", "providerId", "provider id"],
    "name": ["provider_name", "providerName", "doctor_name"],
    "practice_name": ["practice", "practiceName", "clinic_name"],
    "website": ["url", "website_url", "homepage"],
    "address": ["street", "address_line1", "street_address"],
    "zip_code": ["zip", "zipcode", "postal_code", "postcode"],
    "monthly_fee": ["fee", "monthlyFee", "price", "monthly_price"],
    "latitude": ["lat"],
    "longitude": ["lng", "lon", "long"],
}

_TEXT_COLUMNS = ["provider_id", "zip_code", "zip", "zipcode", "postal_code", "postcode", "id"]


class ProviderDataError(ValueError):
    """Raised when a provider file cannot be interpreted."""


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    try:
        return bool(pd.isna(value))
    except (TypeError, ValueError):
        return False


def _text(value: Any) -> str:
    return "" if _is_missing(value) else str(value).strip()


def _zip_text(value: Any) -> str:
    if _is_missing(value):
        return ""
    if isinstance(value, str):
        return value.strip()
    # Numeric ZIPs lose their leading zeros on the way in
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value).strip()
    if number.is_integer():
        return f"{int(number):05d}"
    return str(value).strip()


def _number(value: Any) -> Optional[float]:
    if _is_missing(value):
        return None
    try:
        number = float(str(value).replace("$", "").replace(",", "").strip())
    except ValueError:
        return None
    return number if math.isfinite(number) else None


def _fee(value: Any, provider_id: str, zero_fee_means_unknown: bool) -> Optional[float]:
    fee = _number(value)
    if fee is None:
        if not _is_missing(value):
            logger.warning(f"Ignoring malformed fee {value!r} for provider {provider_id}")
        return None
    if fee < 0:
        logger.warning(f"Ignoring negative fee {fee} for provider {provider_id}")
        return None
    if fee == 0 and zero_fee_means_unknown:
        return None
    return fee


def _apply_aliases(df: pd.DataFrame) -> pd.DataFrame:
    renames = {}
    for canonical, aliases in COLUMN_ALIASES.items():
        if canonical in df.columns:
            continue
        for alias in aliases:
            if alias in df.columns:
                renames[alias] = canonical
                break
    return df.rename(columns=renames) if renames else df


def providers_from_dataframe(df: pd.DataFrame, source: str = "",
                             zero_fee_means_unknown: bool = True,
                             required_columns: Optional[Sequence[str]] = None) -> List[ProviderIdentity]:
    """
    Convert a DataFrame of provider rows to ProviderIdentity records.

    Args:
        df: Provider rows
        source: Directory label stored on every record
        zero_fee_means_unknown: Map a fee of 0 to unknown
        required_columns: Columns that must be present after alias mapping
            (checked by the Great Expectations suite along with id, fee and
            coordinate quality, which is only logged)

    Returns:
        Provider records in row order; rows without an id are skipped and
        repeated ids keep their first row

    Raises:
        ProviderDataError: If required columns are missing
    """
    df = _apply_aliases(df)
    required = list(required_columns) if required_columns is not None else DEFAULT_REQUIRED_COLUMNS

    summary = validate_provider_data(df, {"required_columns": required})
    if summary["missing_columns"]:
        raise ProviderDataError(f"Missing required columns: {summary['missing_columns']}")

    records = []
    seen = set()
    skipped = 0

    for row in df.to_dict(orient="records"):
        provider_id = _text(row.get("provider_id"))
        if not provider_id:
            skipped += 1
            continue
        if provider_id in seen:
            logger.warning(f"Duplicate provider id {provider_id}, keeping first occurrence")
            continue
        seen.add(provider_id)

        records.append(ProviderIdentity(
            provider_id=provider_id,
            raw_name=_text(row.get("name")),
            raw_address=_text(row.get("address")),
            city=_text(row.get("city")),
            state=_text(row.get("state")),
            zip_code=_zip_text(row.get("zip_code")),
            raw_practice_name=_text(row.get("practice_name")) or None,
            raw_website=_text(row.get("website")) or None,
            monthly_fee=_fee(row.get("monthly_fee"), provider_id, zero_fee_means_unknown),
            latitude=_number(row.get("latitude")),
            longitude=_number(row.get("longitude")),
            source=source,
        ))

    if skipped:
        logger.warning(f"Skipped {skipped} rows without a provider id")

    logger.info(f"Converted {len(records)} provider records from {source or 'DataFrame'}")
    return records


def read_provider_file(path: str) -> pd.DataFrame:
    """
    Read a provider export into a DataFrame.

    Args:
        path: .csv, .json, .jsonl or .parquet file

    Returns:
        Raw DataFrame

    Raises:
        ProviderDataError: If the format is unsupported or the file cannot be parsed
        FileNotFoundError: If the file does not exist
    """
    file_path = Path(path)
    if not file_path.exists():
        raise FileNotFoundError(f"Provider file not found: {path}")

    suffix = file_path.suffix.lower()
    try:
        if suffix == ".csv":
            text_dtypes = {col: str for col in _TEXT_COLUMNS}
            df = pd.read_csv(file_path, dtype=text_dtypes)
        elif suffix == ".jsonl":
            df = pd.read_json(file_path, lines=True, dtype=False)
        elif suffix == ".json":
            df = pd.read_json(file_path, dtype=False)
        elif suffix == ".parquet":
            df = pd.read_parquet(file_path)
        else:
            raise ProviderDataError(f"Unsupported file format: {suffix or path}")
    except ProviderDataError:
        raise
    except ValueError as e:
        raise ProviderDataError(f"Failed to parse provider file {path}: {e}") from e

    logger.info(f"Loaded {suffix.lstrip('.').upper()} {path} with {len(df)} rows")
    return df


def load_providers(path: str, source: Optional[str] = None, config: Optional[Dict] = None) -> List[ProviderIdentity]:
    """
    Load provider records from a file.

    Args:
        path: Provider export path
        source: Directory label (defaults to the file name without extension)
        config: ``ingestion`` config section

    Returns:
        Provider records
    """
    config = config or {}
    df = read_provider_file(path)

    return providers_from_dataframe(
        df,
        source=source if source is not None else Path(path).stem,
        zero_fee_means_unknown=config.get("zero_fee_means_unknown", True),
        required_columns=config.get("required_columns", DEFAULT_REQUIRED_COLUMNS),
    )
