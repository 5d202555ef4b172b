import logging
import math
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from .config import CONFIG
from .graph import LocationGraph
from .movements import device_type_of, hours_between, is_available, is_in_use
from .placement import Equipment
from .records import PURCHASE, make_recommendation

logger = logging.getLogger(__name__)


def additional_units_needed(utilization_rate: float, threshold: float = 80, step: float = 10) -> int:
    """Units to buy for a utilization rate above threshold; never less than one."""
    return max(1, math.ceil((utilization_rate - threshold) / step))


def summarize_usage(movements: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Count movements per device type and per destination room.

    Returns:
        Dict with 'device_types' and 'locations' lists, busiest first, and
        count-based 'utilization_rates' per device type.
    """
    type_counts: Dict[str, Dict[str, int]] = defaultdict(lambda: {'count': 0, 'in_use': 0})
    location_counts: Dict[str, int] = defaultdict(int)

    for movement in movements:
        stats = type_counts[device_type_of(movement.get('device_id', ''))]
        stats['count'] += 1
        if is_in_use(movement.get('status')):
            stats['in_use'] += 1
        location_counts[movement.get('to_location') or 'Unknown'] += 1

    utilization_rates = {
        device_type: stats['in_use'] / stats['count'] * 100 if stats['count'] else 0
        for device_type, stats in type_counts.items()
    }
    device_types = [
        {'name': name, 'count': stats['count'], 'usage': round(utilization_rates[name])}
        for name, stats in type_counts.items()
    ]
    locations = [{'name': name, 'value': count} for name, count in location_counts.items()]

    return {
        'device_types': sorted(device_types, key=lambda d: d['count'], reverse=True),
        'locations': sorted(locations, key=lambda l: l['value'], reverse=True),
        'utilization_rates': utilization_rates,
    }


class UtilizationAnalyzer:
    def __init__(self, graph: Optional[LocationGraph] = None, config: Optional[Dict] = None):
        self.graph = graph if graph is not None else LocationGraph()
        self.config = config or CONFIG

    def utilization_by_type(self, movements: Iterable[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Total and in-use hours, utilization rate and peak hours per device type."""
        stats: Dict[str, Dict[str, Any]] = {}

        for movement in movements:
            device_type = device_type_of(movement.get('device_id', ''))
            entry = stats.setdefault(device_type, {
                'devices': set(),
                'total_hours': 0.0,
                'in_use_hours': 0.0,
                'hourly_usage': [0] * 24,
            })
            entry['devices'].add(movement.get('device_id'))

            hours = round(hours_between(movement.get('time_in'), movement.get('time_out')), 2)
            if hours <= 0:
                continue
            entry['total_hours'] += hours
            if is_in_use(movement.get('status')):
                entry['in_use_hours'] += hours
            entry['hourly_usage'][pd.Timestamp(movement['time_in']).hour] += 1

        for entry in stats.values():
            entry['total_hours'] = round(entry['total_hours'], 2)
            entry['in_use_hours'] = round(entry['in_use_hours'], 2)
            entry['utilization_rate'] = (entry['in_use_hours'] / entry['total_hours'] * 100
                                         if entry['total_hours'] > 0 else 0)
            max_usage = max(entry['hourly_usage'])
            entry['peak_hours'] = [hour for hour, usage in enumerate(entry['hourly_usage'])
                                   if max_usage and usage > max_usage * self.config['PEAK_HOUR_RATIO']]
        return stats

    def analyze(self, movements: List[Dict[str, Any]],
                equipment: Optional[Iterable[Equipment]] = None) -> List[Dict[str, Any]]:
        """
        Recommend purchases for device types that are used beyond capacity.

        Type-level utilization is the primary trigger. When per-device
        histories are given, day-bucketed device metrics can also trigger a
        recommendation for a type that was not already flagged.
        """
        threshold = self.config['UTILIZATION_THRESHOLD']
        step = self.config['UTILIZATION_STEP']
        recommendations = []
        flagged_types = set()

        for device_type, stats in self.utilization_by_type(movements).items():
            rate = stats['utilization_rate']
            logger.info(f"{device_type}: Utilization rate: {rate:.2f}%, Devices: {len(stats['devices'])}")
            if rate <= threshold:
                continue

            units = additional_units_needed(rate, threshold, step)
            peak_text = ', '.join(f'{hour}:00' for hour in stats['peak_hours'])
            description = (f"{device_type} equipment is utilized at {round(rate)}% capacity. "
                           f"Consider purchasing {units} additional unit(s) to reduce wait times")
            description += f" during peak hours ({peak_text})." if peak_text else "."
            recommendations.append(make_recommendation(
                PURCHASE,
                f"Additional {device_type} Units Needed",
                description,
                "Improved patient care and reduced wait times",
                device_type=device_type,
                utilization_rate=rate,
                additional_units=units,
                peak_hours=stats['peak_hours'],
            ))
            flagged_types.add(device_type)

        for item in equipment or []:
            device_type = device_type_of(item.device_id)
            if device_type in flagged_types:
                continue
            try:
                check = self.analyze_device(item)
            except Exception as e:
                logger.error(f"Error analyzing utilization for {item.device_id}: {e}")
                continue
            if not check['needs_more']:
                continue

            metrics = check['metrics']
            rate = metrics['avg_usage_ratio'] * 100
            units = additional_units_needed(rate, threshold, step)
            recommendations.append(make_recommendation(
                PURCHASE,
                f"Additional {device_type} Units Needed",
                (f"{item.device_id} averages {rate:.0f}% daily usage across "
                 f"{metrics['avg_rooms_per_day']:.1f} rooms and {metrics['avg_distance_per_day']:.0f} ft per day. "
                 f"Consider purchasing {units} additional {device_type} unit(s)."),
                "Improved patient care and reduced wait times",
                device_id=item.device_id,
                device_type=device_type,
                utilization_rate=rate,
                additional_units=units,
                metrics=metrics,
            ))
            flagged_types.add(device_type)

        return recommendations

    def analyze_device(self, equipment: Equipment) -> Dict[str, Any]:
        """
        Day-bucketed usage metrics for one device.

        Returns:
            Dict with 'needs_more' and 'metrics' (avg_usage_ratio,
            avg_rooms_per_day, avg_distance_per_day).
        """
        usage_by_day: Dict[Any, Dict[str, Any]] = {}

        for room, status, time_in, time_out in equipment.usage_history:
            start = pd.to_datetime(time_in, errors='coerce')
            if pd.isna(start):
                continue
            day = usage_by_day.setdefault(start.date(), {
                'in_use': 0.0, 'available': 0.0, 'rooms': set(), 'path': []})
            day['rooms'].add(room)
            day['path'].append(room)

            minutes = hours_between(time_in, time_out) * 60
            if is_in_use(status):
                day['in_use'] += minutes
            elif is_available(status):
                day['available'] += minutes

        if not usage_by_day:
            return {'needs_more': False,
                    'metrics': {'avg_usage_ratio': 0.0, 'avg_rooms_per_day': 0.0, 'avg_distance_per_day': 0.0}}

        ratios = []
        total_rooms = 0
        total_distance = 0.0
        for day in usage_by_day.values():
            tracked = day['in_use'] + day['available']
            if tracked > 0:
                ratios.append(day['in_use'] / tracked)
            total_rooms += len(day['rooms'])
            for a, b in zip(day['path'], day['path'][1:]):
                weight = self.graph.edge_weight(a, b)
                if weight:
                    total_distance += weight

        days = len(usage_by_day)
        metrics = {
            'avg_usage_ratio': sum(ratios) / len(ratios) if ratios else 0.0,
            'avg_rooms_per_day': total_rooms / days,
            'avg_distance_per_day': total_distance / days,
        }
        triggers = self.config['DEVICE_TRIGGERS']
        needs_more = (metrics['avg_usage_ratio'] > triggers['USAGE_RATIO']
                      or metrics['avg_rooms_per_day'] > triggers['ROOMS_PER_DAY']
                      or metrics['avg_distance_per_day'] > triggers['DISTANCE_PER_DAY'])
        return {'needs_more': needs_more, 'metrics': metrics}
