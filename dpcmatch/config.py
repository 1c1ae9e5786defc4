"""
Configuration utilities for DPCMatch.

Provides configuration loading, merging and validation for the normalizer,
matcher, geocoding cache and reconciliation pipeline.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config/dpcmatch.yaml"

_DAY_SECONDS = 24 * 60 * 60


def get_default_config() -> Dict[str, Any]:
    """
    Get default DPCMatch configuration.

    Returns:
        Default configuration dictionary
    """
    return {
        "normalization": {
            "credentials": ["md", "do", "phd", "faafp", "facp", "facep", "np", "pa-c", "dnp", "mph", "mba"],
            "generic_words": [
                "dpc", "direct primary care", "primary care", "family medicine", "internal medicine",
                "dr", "doctor", "physician", "practice", "clinic", "medical", "health",
                "healthcare", "wellness",
            ],
            "street_types": [
                "street", "st", "avenue", "ave", "road", "rd", "drive", "dr", "boulevard", "blvd",
                "lane", "ln", "court", "ct", "way", "place", "pl",
            ],
        },
        "matching": {
            "tier_confidence": {
                "exact_website": 100,
                "exact_address": 95,
                "name_location": 85,
                "fuzzy": 70,
            },
            "name_location_similarity": 0.8,
            "fuzzy_similarity": 0.6,
            "fuzzy_max_distance_miles": 10.0,
            "require_street_for_address": False,
        },
        "reconciliation": {
            "confidence_threshold": 85,
            "max_workers": 1,
        },
        "geocoding": {
            "forward_ttl_seconds": 90 * _DAY_SECONDS,
            "reverse_ttl_seconds": _DAY_SECONDS,
            "max_daily_requests": 10000,
            "timeout_seconds": 5.0,
            "batch_delay_seconds": 0.05,
            "zippopotam_url": "https://api.zippopotam.us/us",
            "nominatim_url": "https://nominatim.openstreetmap.org/reverse",
            "user_agent": "DPCMatch/1.0 (provider reconciliation)",
        },
        "ingestion": {
            "required_columns": ["provider_id", "name", "city", "state"],
            "zero_fee_means_unknown": True,
        },
    }


def merge_configs(base_config: Dict[str, Any], override_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge two configuration dictionaries.

    Args:
        base_config: Base configuration
        override_config: Override configuration

    Returns:
        Merged configuration
    """
    merged = copy.deepcopy(base_config)

    for key, value in override_config.items():
        if key in merged and isinstance(merged[key], dict) and isinstance(value, dict):
            merged[key] = merge_configs(merged[key], value)
        else:
            merged[key] = value

    return merged


def load_config(config_path: str = DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """
    Load DPCMatch configuration from YAML file.

    Values in the file override the defaults; missing sections keep their
    default values.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary
    """
    config_file = Path(config_path)
    if not config_file.exists():
        logger.warning(f"Configuration file {config_path} not found, using defaults")
        return get_default_config()

    try:
        with open(config_file, "r") as f:
            raw = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to load configuration from {config_path}: {e}")
        return get_default_config()

    if not isinstance(raw, dict):
        logger.error(f"Configuration file {config_path} does not contain a mapping, using defaults")
        return get_default_config()

    logger.info(f"Loaded configuration from {config_path}")
    return merge_configs(get_default_config(), raw)


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate DPCMatch configuration.

    Args:
        config: Configuration dictionary

    Returns:
        True if configuration is valid, False otherwise
    """
    required_sections = ["normalization", "matching", "reconciliation", "geocoding"]

    for section in required_sections:
        if section not in config:
            logger.error(f"Missing required configuration section: {section}")
            return False

    normalization = config.get("normalization", {})
    for key in ("credentials", "generic_words", "street_types"):
        if not isinstance(normalization.get(key, []), list):
            logger.error(f"normalization.{key} must be a list")
            return False

    matching = config.get("matching", {})
    for key in ("name_location_similarity", "fuzzy_similarity"):
        value = matching.get(key, 0.0)
        if not isinstance(value, (int, float)) or not 0 <= value <= 1:
            logger.error(f"matching.{key} must be a number between 0 and 1")
            return False

    max_distance = matching.get("fuzzy_max_distance_miles", 10.0)
    if not isinstance(max_distance, (int, float)) or max_distance < 0:
        logger.error("matching.fuzzy_max_distance_miles must be a non-negative number")
        return False

    for tier, confidence in matching.get("tier_confidence", {}).items():
        if not isinstance(confidence, int) or not 0 <= confidence <= 100:
            logger.error(f"matching.tier_confidence.{tier} must be an integer between 0 and 100")
            return False

    threshold = config.get("reconciliation", {}).get("confidence_threshold", 85)
    if not isinstance(threshold, int) or not 0 <= threshold <= 100:
        logger.error("reconciliation.confidence_threshold must be an integer between 0 and 100")
        return False

    geocoding = config.get("geocoding", {})
    for key in ("forward_ttl_seconds", "reverse_ttl_seconds", "timeout_seconds"):
        value = geocoding.get(key, 1)
        if not isinstance(value, (int, float)) or value <= 0:
            logger.error(f"geocoding.{key} must be a positive number")
            return False

    max_daily = geocoding.get("max_daily_requests", 0)
    if not isinstance(max_daily, int) or max_daily < 0:
        logger.error("geocoding.max_daily_requests must be a non-negative integer")
        return False

    logger.info("Configuration validation passed")
    return True


def save_config(config: Dict[str, Any], config_path: str) -> bool:
    """
    Save configuration to YAML file.

    Args:
        config: Configuration dictionary
        config_path: Path to save configuration

    Returns:
        True if successful, False otherwise
    """
    try:
        config_file = Path(config_path)
        config_file.parent.mkdir(parents=True, exist_ok=True)

        with open(config_file, "w") as f:
            yaml.dump(config, f, default_flow_style=False, indent=2)

        logger.info(f"Saved configuration to {config_path}")
        return True

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Failed to save configuration to {config_path}: {e}")
        return False
