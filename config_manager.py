"""
Configuration management module for the budget engine.

This module handles loading and saving configuration values, including
the debounce interval and the alert thresholds used for budget progress.
"""

import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Tuple
import yaml

from exceptions import ConfigError

logger = logging.getLogger(__name__)

# Default configuration values
DEFAULT_CONFIG = {
    'database': {
        'data_dir': 'data',
        'path': 'budgets.db',
    },
    'logging': {
        'level': 'INFO',
        'format': '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        'file': None,
    },
    'budgets': {
        'category_type': 'expense',
        'debounce_ms': 500,
    },
    'alerts': {
        'warning_pct': 75.0,
        'critical_pct': 90.0,
    },
}

CONFIG_FILE = 'config.yaml'


def _merge_defaults(config: Dict[str, Any], defaults: Dict[str, Any]) -> Dict[str, Any]:
    """Fill missing keys (section by section) from the defaults."""
    for key, value in defaults.items():
        if key not in config or config[key] is None:
            config[key] = copy.deepcopy(value)
        elif isinstance(value, dict) and isinstance(config[key], dict):
            _merge_defaults(config[key], value)
    return config


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    """
    Load configuration from a YAML file.

    Args:
        path: Config file path (defaults to config.yaml in the working directory)

    Returns:
        Configuration dictionary with defaults for missing values
    """
    config_path = Path(path or CONFIG_FILE)
    try:
        if config_path.exists():
            with open(config_path, 'r') as f:
                config = yaml.safe_load(f) or {}
        else:
            config = {}

        if not isinstance(config, dict):
            logger.warning(f"Configuration in {config_path} is not a mapping; using defaults")
            config = {}

        config = _merge_defaults(config, DEFAULT_CONFIG)
        logger.info("Configuration loaded successfully")
        return config

    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error loading configuration: {e}", exc_info=True)
        return copy.deepcopy(DEFAULT_CONFIG)


def get_alert_thresholds(config: Optional[Dict[str, Any]] = None) -> Tuple[float, float]:
    """
    Get the (warning, critical) percentage thresholds.

    Raises:
        ConfigError: If thresholds are non-numeric or out of order
    """
    alerts = (config or {}).get('alerts') or DEFAULT_CONFIG['alerts']
    try:
        warning = float(alerts.get('warning_pct', DEFAULT_CONFIG['alerts']['warning_pct']))
        critical = float(alerts.get('critical_pct', DEFAULT_CONFIG['alerts']['critical_pct']))
    except (TypeError, ValueError) as e:
        raise ConfigError("Alert thresholds must be numeric", details={"alerts": alerts}, original_error=e)

    if not 0 <= warning <= critical <= 100:
        raise ConfigError(
            "Alert thresholds must satisfy 0 <= warning <= critical <= 100",
            details={"warning_pct": warning, "critical_pct": critical}
        )
    return warning, critical


def get_debounce_seconds(config: Optional[Dict[str, Any]] = None) -> float:
    """
    Get the debounce quiet interval in seconds.

    Raises:
        ConfigError: If the configured interval is not a positive number
    """
    budgets = (config or {}).get('budgets') or {}
    raw = budgets.get('debounce_ms', DEFAULT_CONFIG['budgets']['debounce_ms'])
    try:
        debounce_ms = float(raw)
    except (TypeError, ValueError) as e:
        raise ConfigError("debounce_ms must be numeric", details={"debounce_ms": raw}, original_error=e)
    if debounce_ms <= 0:
        raise ConfigError("debounce_ms must be positive", details={"debounce_ms": debounce_ms})
    return debounce_ms / 1000.0


def get_budget_category_type(config: Optional[Dict[str, Any]] = None) -> str:
    """Get the category type budgets are tracked against (expense by default)."""
    budgets = (config or {}).get('budgets') or {}
    category_type = str(budgets.get('category_type') or DEFAULT_CONFIG['budgets']['category_type']).strip().lower()
    if category_type not in ('expense', 'income'):
        raise ConfigError("category_type must be 'expense' or 'income'", details={"category_type": category_type})
    return category_type
