import copy
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

logger = logging.getLogger(__name__)

# Base paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = BASE_DIR / 'data'

CONFIG = {
    # File paths
    'DATA_DIR': DATA_DIR,
    'DATABASE_DIR': DATA_DIR / 'databases',
    'GRAPH_DATA_FILE': DATA_DIR / 'graph_data.json',
    'FLOOR_PLAN_FILE': DATA_DIR / 'floor_plan_progress.json',

    # Distance settings
    'WALKING_SPEED_FEET_PER_SECOND': 3.5,
    'DEFAULT_DISTANCE': 100,  # Used when neither a path nor coordinates exist
    'COORDINATE_SCALE': 1.6,  # Floor plan units to feet

    # Placement optimization
    'MIN_HISTORY_ENTRIES': 3,
    'MIN_PERCENT_IMPROVEMENT': 5,
    'STORAGE_PATTERNS': ['STOR', 'storage'],

    # Utilization analysis
    'UTILIZATION_THRESHOLD': 80,
    'UTILIZATION_STEP': 10,  # Percent over threshold per additional unit
    'PEAK_HOUR_RATIO': 0.8,
    'DEVICE_TRIGGERS': {
        'USAGE_RATIO': 0.8,
        'ROOMS_PER_DAY': 12,
        'DISTANCE_PER_DAY': 250
    },

    # Maintenance thresholds (usage hours before service is due)
    'MAINTENANCE_THRESHOLDS': {
        'Ventilator': 500,
        'Ultrasound': 300,
        'Defibrillator': 200,
        'IV-Pump': 1000,
        'Monitor': 800,
        'default': 500
    },
    'MAINTENANCE_WARNING_RATIO': 0.8,

    # Location normalization
    'UNKNOWN_LOCATION': 'UNKNOWN LOCATION',
    'LOCATION_ALIASES': {
        'Emergency Department, POD 4 West Nurses Station': 'K2415',
        'Emergency Department, POD 5 West Nurses Station': 'K2513',
        'Emergency Department, POD 5 East Nurses Station': 'K2511',
        'Emergency Department, ED POD 2 Nurses Station': 'K2216',
        'Emergency Department, ED POD 3 Nurses Station': 'K2316'
    },

    # Accepted input column names, in lookup order
    'FIELD_SYNONYMS': {
        'device': ['device', 'Device'],
        'location': ['location', 'Location'],
        'status': ['status', 'Status'],
        'in': ['in', 'In', 'timeIn'],
        'out': ['out', 'Out', 'timeOut']
    }
}


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Merge overrides into base, descending into nested dicts."""
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config(config_file: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """
    Load configuration overrides from a YAML file on top of the defaults.

    Args:
        config_file: Path to a YAML file. If None or missing, defaults are used.

    Returns:
        Dict[str, Any]: A new configuration dictionary
    """
    config = copy.deepcopy(CONFIG)
    if config_file is None:
        return config

    config_path = Path(config_file)
    if not config_path.exists():
        logger.warning(f"Config file {config_path} not found, using defaults")
        return config

    try:
        with open(config_path, 'r') as f:
            overrides = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        logger.error(f"Error loading config file: {e}")
        raise

    for key in ('DATA_DIR', 'DATABASE_DIR', 'GRAPH_DATA_FILE', 'FLOOR_PLAN_FILE'):
        if key in overrides and overrides[key] is not None:
            overrides[key] = Path(overrides[key])

    logger.info(f"Loaded configuration overrides from {config_path}")
    return _deep_merge(config, overrides)
