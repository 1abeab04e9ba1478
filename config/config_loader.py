"""
config_loader.py
-----------------
Singleton config loader. Reads config.yaml once and caches it.
All modules access configuration through this — never hardcoded values.
"""

import os
import yaml
from typing import Any, Dict


_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Load and cache the YAML configuration file.

    Args:
        config_path: Path to config.yaml. Defaults to config/ relative to this file.

    Returns:
        Full config dictionary.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    if config_path is None:
        config_path = os.path.join(os.path.dirname(__file__), "config.yaml")

    if not os.path.exists(config_path):
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with open(config_path, "r") as f:
        _CONFIG_CACHE = yaml.safe_load(f)

    return _CONFIG_CACHE


def get_section(name: str) -> Dict[str, Any]:
    """
    Returns a top-level config block by name.

    Raises:
        KeyError: If the block is not in the config.
    """
    config = load_config()
    if name not in config:
        raise KeyError(
            f"No config section '{name}'. "
            f"Available: {list(config.keys())}"
        )
    return config[name]


def get_normalizer_config() -> Dict[str, Any]:
    """Returns the merchant_normalization block."""
    return get_section("merchant_normalization")


def get_pattern_detection_config() -> Dict[str, Any]:
    """Returns the pattern_detection block."""
    return get_section("pattern_detection")


def get_classification_config() -> Dict[str, Any]:
    """Returns the expense-type classification thresholds."""
    return get_section("classification")


def get_priority_keywords() -> Dict[str, list[str]]:
    """Returns priority tier → keyword list."""
    return get_section("priority_keywords")


def get_confidence_scoring_config() -> Dict[str, Any]:
    return get_section("confidence_scoring")


def get_prediction_config() -> Dict[str, Any]:
    return get_section("prediction")


def get_anomaly_config() -> Dict[str, Any]:
    return get_section("anomaly_detection")


def get_cash_reservation_config() -> Dict[str, Any]:
    return get_section("cash_reservation")


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
