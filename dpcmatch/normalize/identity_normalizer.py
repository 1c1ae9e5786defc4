"""
Identity normalization for DPCMatch.

Turns raw provider names, websites and addresses into canonical comparison
keys. Credentials, directory boilerplate ("Direct Primary Care", "Clinic")
and street-type suffixes are stripped on whole-word boundaries so that they
never eat into a proper name.
"""

import logging
import re
from typing import Any, Callable, Dict, Iterable, Optional

import pandas as pd

from ..config import get_default_config
from ..models import NormalizedKey, ProviderIdentity

logger = logging.getLogger(__name__)


def _as_text(value: Any) -> str:
    """Coerce a raw field to text; None, NaN and non-scalars become ''."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (int, float)) and not pd.isna(value):
        return str(value)
    return ""


def _word_pattern(words: Iterable[str]) -> Optional[re.Pattern]:
    """Compile a whole-word alternation; multi-word phrases tolerate runs of whitespace."""
    alternatives = []
    for word in sorted({w.strip().lower() for w in words if w and w.strip()}, key=len, reverse=True):
        alternatives.append(r"\s+".join(re.escape(part) for part in word.split()))

    if not alternatives:
        return None
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


def _until_stable(step: Callable[[str], str], value: str) -> str:
    """
    Apply a normalization step until it stops changing the value.

    Stripping punctuation can expose a new strippable phrase
    ("family-medicine" -> "family medicine"), so a single pass is not
    idempotent on its own. Every pass either shortens the text or turns
    punctuation into spaces, so the loop terminates.
    """
    current = step(value)
    while True:
        following = step(current)
        if following == current:
            return current
        current = following


class IdentityNormalizer:
    """
    Normalizes provider identity fields for matching.

    Word lists default to the ones in the default configuration and can be
    overridden through the ``normalization`` config section.
    """

    def __init__(self, config: Optional[Dict] = None):
        """
        Initialize identity normalizer with configuration.

        Args:
            config: ``normalization`` section of the DPCMatch configuration
        """
        defaults = get_default_config()["normalization"]
        self.config = config or {}
        self.credentials = self.config.get("credentials", defaults["credentials"])
        self.generic_words = self.config.get("generic_words", defaults["generic_words"])
        self.street_types = self.config.get("street_types", defaults["street_types"])

        # Compile regex patterns for efficiency
        self.credential_pattern = _word_pattern(self.credentials)
        self.generic_pattern = _word_pattern(self.generic_words)
        self.street_type_pattern = _word_pattern(self.street_types)
        self.name_punctuation_pattern = re.compile(r"[.,\-'’]")
        self.address_punctuation_pattern = re.compile(r"[.,#]")
        self.scheme_pattern = re.compile(r"^(?:https?://)+")
        self.www_pattern = re.compile(r"^(?:www\.)+")
        self.whitespace_pattern = re.compile(r"\s+")

        logger.debug("Initialized IdentityNormalizer")

    def _collapse(self, text: str) -> str:
        return self.whitespace_pattern.sub(" ", text).strip()

    def _name_step(self, name: str) -> str:
        name = name.lower().strip()
        if self.credential_pattern:
            name = self.credential_pattern.sub(" ", name)
        if self.generic_pattern:
            name = self.generic_pattern.sub(" ", name)
        name = self.name_punctuation_pattern.sub(" ", name)
        return self._collapse(name)

    def _website_step(self, url: str) -> str:
        url = url.lower().strip()
        url = self.scheme_pattern.sub("", url)
        url = self.www_pattern.sub("", url)
        if url.endswith("/"):
            url = url[:-1]
        return url.strip()

    def _address_step(self, address: str) -> str:
        address = address.lower()
        address = self.address_punctuation_pattern.sub("", address)
        if self.street_type_pattern:
            address = self.street_type_pattern.sub(" ", address)
        return self._collapse(address)

    def normalize_name(self, name: Any) -> str:
        """
        Normalize a provider or practice name.

        Args:
            name: Raw name, e.g. "Dr. Jane Smith MD"

        Returns:
            Normalized name, e.g. "jane smith"
        """
        text = _as_text(name)
        if not text.strip():
            return ""
        return _until_stable(self._name_step, text)

    def normalize_website(self, url: Any) -> str:
        """
        Normalize a website URL to a bare host/path.

        Args:
            url: Raw URL, e.g. "https://www.janesmithdpc.com/"

        Returns:
            Normalized website, e.g. "janesmithdpc.com"
        """
        text = _as_text(url)
        if not text.strip():
            return ""
        return _until_stable(self._website_step, text)

    def normalize_address(self, street: Any, city: Any = "", state: Any = "", zip_code: Any = "") -> str:
        """
        Normalize a full street address.

        Args:
            street: Street line
            city: City name
            state: State name or abbreviation
            zip_code: ZIP code

        Returns:
            Single normalized address string, empty if every part is empty
        """
        parts = [_as_text(part).strip() for part in (street, city, state, zip_code)]
        joined = " ".join(part for part in parts if part)
        if not joined:
            return ""
        return _until_stable(self._address_step, joined)

    def normalize_identity(self, identity: ProviderIdentity) -> NormalizedKey:
        """
        Derive all comparison keys for one provider record.

        Args:
            identity: Provider record

        Returns:
            NormalizedKey for the record
        """
        return NormalizedKey(
            name=self.normalize_name(identity.raw_name),
            practice_name=self.normalize_name(identity.raw_practice_name),
            website=self.normalize_website(identity.raw_website),
            address=self.normalize_address(
                identity.raw_address, identity.city, identity.state, identity.zip_code
            ),
        )

    def normalize_dataframe(self, df: pd.DataFrame,
                            name_column: str = "name",
                            practice_name_column: str = "practice_name",
                            website_column: str = "website",
                            address_columns: tuple = ("address", "city", "state", "zip_code")) -> pd.DataFrame:
        """
        Normalize identity columns in a DataFrame.

        Args:
            df: Input DataFrame
            name_column: Column with provider names
            practice_name_column: Column with practice names
            website_column: Column with websites
            address_columns: Street, city, state and ZIP columns

        Returns:
            Copy of the DataFrame with ``*_norm`` columns added
        """
        result_df = df.copy()

        if name_column in df.columns:
            result_df[f"{name_column}_norm"] = df[name_column].apply(self.normalize_name)

        if practice_name_column in df.columns:
            result_df[f"{practice_name_column}_norm"] = df[practice_name_column].apply(self.normalize_name)

        if website_column in df.columns:
            result_df[f"{website_column}_norm"] = df[website_column].apply(self.normalize_website)

        present = [col for col in address_columns if col in df.columns]
        if present:
            result_df["address_norm"] = df.apply(
                lambda row: self.normalize_address(*(row.get(col, "") for col in address_columns)),
                axis=1,
            )

        logger.info(f"Normalized identity fields for {len(result_df)} records")
        return result_df


_default_normalizer = IdentityNormalizer()


def normalize_name(name: Any) -> str:
    """Normalize a name with the default word lists."""
    return _default_normalizer.normalize_name(name)


def normalize_website(url: Any) -> str:
    """Normalize a website with the default rules."""
    return _default_normalizer.normalize_website(url)


def normalize_address(street: Any, city: Any = "", state: Any = "", zip_code: Any = "") -> str:
    """Normalize an address with the default street-type list."""
    return _default_normalizer.normalize_address(street, city, state, zip_code)


def normalize_identity(identity: ProviderIdentity) -> NormalizedKey:
    """Derive comparison keys with the default normalizer."""
    return _default_normalizer.normalize_identity(identity)
