"""
Equipment Tracker Package

A package for turning hospital equipment location events into movement
history, and for recommending storage placement, purchases and maintenance.
"""

__version__ = "0.1.0"

from .graph import LocationGraph, DistanceOracle, load_graph, load_floor_plan
from .normalizer import LocationNormalizer, UnknownLocations
from .store import Collection, Database
from .movements import MovementBuilder, ImportResult
from .placement import Equipment, PlacementOptimizer
from .utilization import UtilizationAnalyzer, summarize_usage
from .maintenance import MaintenancePredictor
from .recommendations import RecommendationOrchestrator, DeviceNotFoundError
from .tracker import EquipmentTracker

__all__ = [
    'LocationGraph',
    'DistanceOracle',
    'load_graph',
    'load_floor_plan',
    'LocationNormalizer',
    'UnknownLocations',
    'Collection',
    'Database',
    'MovementBuilder',
    'ImportResult',
    'Equipment',
    'PlacementOptimizer',
    'UtilizationAnalyzer',
    'summarize_usage',
    'MaintenancePredictor',
    'RecommendationOrchestrator',
    'DeviceNotFoundError',
    'EquipmentTracker'
]
