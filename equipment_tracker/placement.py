"""
Storage placement optimization.

For each device, find the storage room that minimizes the frequency-weighted
walking distance to the rooms where the device is used, and estimate the
staff time saved by storing it there instead of its current home.
"""

import logging
from collections import Counter
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd

from .config import CONFIG
from .graph import DistanceOracle
from .movements import hours_between, is_available, is_in_use, is_storage_room

logger = logging.getLogger(__name__)


class Equipment:
    """A device and its usage history as (room, status, time_in, time_out) entries."""

    def __init__(self, device_id: str):
        self.device_id = device_id
        self.usage_history: List[Tuple[str, Optional[str], Any, Any]] = []
        self.total_usage_hours = 0.0

    def add_usage(self, room: str, status: Optional[str], time_in: Any, time_out: Any):
        self.usage_history.append((room, status, time_in, time_out))
        if is_in_use(status):
            self.total_usage_hours += hours_between(time_in, time_out)

    @classmethod
    def from_movements(cls, device_id: str, movements: Iterable[Dict[str, Any]]) -> 'Equipment':
        """
        Rebuild the room sequence a device went through from its movements.

        Each movement contributes its origin room with the status observed
        there; the destination of the last movement closes the route.
        """
        equipment = cls(device_id)
        ordered = sorted(movements, key=lambda m: pd.to_datetime(m.get('time_in'), errors='coerce'))
        for movement in ordered:
            equipment.add_usage(movement['from_location'], movement.get('status'),
                                movement.get('time_in'), movement.get('time_out'))
        if ordered:
            last = ordered[-1]
            equipment.add_usage(last['to_location'], None, last.get('time_out'), None)
        return equipment

    def get_storage_location(self) -> Optional[str]:
        """Most frequent room the device sat available in; ties go to the first seen."""
        counts = Counter(room for room, status, _, _ in self.usage_history if is_available(status))
        if not counts:
            return None
        return counts.most_common(1)[0][0]

    @property
    def route(self) -> List[str]:
        return [room for room, _, _, _ in self.usage_history]

    def time_span_days(self) -> float:
        times = pd.to_datetime(pd.Series([entry[2] for entry in self.usage_history], dtype=object),
                               errors='coerce').dropna()
        if len(times) < 2:
            return 0.0
        return (times.max() - times.min()).total_seconds() / 86400


class PlacementOptimizer:
    def __init__(self, oracle: DistanceOracle, config: Optional[Dict] = None):
        self.oracle = oracle
        self.config = config or CONFIG
        self.unknown_location = self.config['UNKNOWN_LOCATION']

    def _weighted_distance(self, location: str, usage_rooms: Counter) -> float:
        total = 0.0
        for room, count in usage_rooms.items():
            if room == location:
                continue
            total += self.oracle.distance(location, room) * count
        return total

    def _best_location(self, candidates: Sequence[str],
                       usage_rooms: Counter) -> Tuple[Optional[str], float]:
        best_location = None
        min_distance = float('inf')
        for location in candidates:
            total = self._weighted_distance(location, usage_rooms)
            if total < min_distance:
                min_distance = total
                best_location = location
        return best_location, min_distance

    def _route_distance(self, route: Sequence[str]) -> float:
        total = 0.0
        for a, b in zip(route, route[1:]):
            if a != b:
                total += self.oracle.distance(a, b)
        return total

    def calculate_distance_savings(self, equipment: Equipment,
                                   current_location: Optional[str],
                                   new_location: Optional[str]) -> Dict[str, float]:
        """
        Compare the device's actual route against the same route with every
        visit to the current storage room moved to the new one.
        """
        zero = {'saved': 0.0, 'percent_change': 0.0, 'hours_saved': 0.0, 'movements_per_month': 0.0}
        if not current_location or not new_location or current_location == new_location:
            return zero

        route = equipment.route
        modified_route = [new_location if room == current_location else room for room in route]

        original_distance = self._route_distance(route)
        modified_distance = self._route_distance(modified_route)
        saved = original_distance - modified_distance
        percent_change = saved / original_distance * 100 if original_distance > 0 else 0.0

        total_movements = sum(1 for a, b in zip(route, route[1:]) if a != b)
        movements_per_month = total_movements / max(equipment.time_span_days(), 1) * 30

        speed = self.config['WALKING_SPEED_FEET_PER_SECOND']
        hours_saved = saved / (speed * 3600) * movements_per_month

        return {
            'saved': saved,
            'percent_change': percent_change,
            'hours_saved': hours_saved,
            'movements_per_month': movements_per_month,
        }

    def _candidate_locations(self, storage_type_rooms: List[str], storage_rooms: Counter,
                             current_location: Optional[str]) -> List[str]:
        # A tier that only offers the current room has no alternative to suggest
        tiers = [storage_type_rooms, list(storage_rooms), list(self.oracle.graph.nodes)]
        for tier in tiers:
            if any(room != current_location for room in tier):
                return tier
        return [current_location] if current_location else []

    def optimize(self, equipment: Equipment) -> Optional[Dict[str, Any]]:
        """
        Find the optimal storage location for a device.

        Args:
            equipment: Device with its usage history

        Returns:
            Dict with current/optimal location and savings figures, or None
            when the history is too short to draw conclusions from.
        """
        history = equipment.usage_history
        if len(history) < self.config['MIN_HISTORY_ENTRIES']:
            logger.debug(f"Skipping {equipment.device_id}: not enough movement data")
            return None

        usage_rooms = Counter(room for room, status, _, _ in history
                              if is_in_use(status) and room != self.unknown_location)
        storage_rooms = Counter(room for room, status, _, _ in history
                                if is_available(status) and room != self.unknown_location)
        current_location = storage_rooms.most_common(1)[0][0] if storage_rooms else None

        result = {
            'current_location': current_location,
            'optimal_location': current_location,
            'best_overall_location': None,
            'best_storage_type_location': None,
            'distance_saved': 0,
            'percent_improvement': 0,
            'hours_saved': 0,
            'movements_per_month': 0,
            'min_distance': 0,
        }
        if not usage_rooms:
            return result

        storage_type_rooms = [room for room in self.oracle.graph.nodes
                              if is_storage_room(room, self.config['STORAGE_PATTERNS'])]
        candidates = self._candidate_locations(storage_type_rooms, storage_rooms, current_location)

        best_location, min_distance = self._best_location(candidates, usage_rooms)
        best_overall, _ = self._best_location(self.oracle.graph.nodes, usage_rooms)
        best_storage_type, _ = self._best_location(storage_type_rooms, usage_rooms)

        current_total = self._weighted_distance(current_location, usage_rooms) if current_location else 0
        result.update({
            'best_overall_location': best_overall,
            'best_storage_type_location': best_storage_type,
            'current_total_distance': round(current_total),
            'optimal_total_distance': round(current_total),
            'overall_total_distance': round(self._weighted_distance(best_overall, usage_rooms))
            if best_overall else 0,
            'storage_type_total_distance': round(self._weighted_distance(best_storage_type, usage_rooms))
            if best_storage_type else 0,
        })

        savings = self.calculate_distance_savings(equipment, current_location, best_location)
        if (savings['percent_change'] < self.config['MIN_PERCENT_IMPROVEMENT']
                or best_location == current_location):
            return result

        result.update({
            'optimal_location': best_location,
            'distance_saved': savings['saved'],
            'percent_improvement': savings['percent_change'],
            'hours_saved': savings['hours_saved'],
            'movements_per_month': savings['movements_per_month'],
            'min_distance': min_distance,
            'optimal_total_distance': round(min_distance),
        })
        return result
