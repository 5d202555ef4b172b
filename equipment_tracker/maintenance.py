import logging
from collections import defaultdict
from typing import Any, Dict, Iterable, List, Optional

from .config import CONFIG
from .movements import device_type_of, in_use_hours
from .records import MAINTENANCE, make_recommendation

logger = logging.getLogger(__name__)

URGENCY_LEVELS = {
    None: 0,
    'upcoming': 1,
    'urgent': 2,
}


def accumulate_usage_hours(movements: Iterable[Dict[str, Any]]) -> Dict[str, float]:
    """Total in-use hours per device across its movement history."""
    by_device: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
    for movement in movements:
        if movement.get('device_id'):
            by_device[movement['device_id']].append(movement)
    return {device_id: in_use_hours(device_movements) for device_id, device_movements in by_device.items()}


class MaintenancePredictor:
    def __init__(self, config: Optional[Dict] = None):
        self.config = config or CONFIG
        self.thresholds = dict(self.config['MAINTENANCE_THRESHOLDS'])
        self.warning_ratio = self.config['MAINTENANCE_WARNING_RATIO']

    def threshold_for(self, device_id: str) -> float:
        """
        Usage-hour threshold for a device.

        Matches the longest configured type the device id starts with, so
        multi-part types such as 'IV-Pump' resolve for 'IV-Pump-3'.
        """
        matches = [device_type for device_type in self.thresholds
                   if device_type != 'default'
                   and (device_id == device_type or device_id.startswith(device_type + '-'))]
        if matches:
            return self.thresholds[max(matches, key=len)]
        return self.thresholds.get(device_type_of(device_id), self.thresholds['default'])

    def classify(self, hours_used: float, threshold: float) -> Optional[str]:
        if hours_used >= threshold:
            return 'urgent'
        if hours_used >= threshold * self.warning_ratio:
            return 'upcoming'
        return None

    def predict(self, device: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """
        Recommend maintenance for a device approaching its usage threshold.

        Args:
            device: Device record with 'device_id' and 'total_usage_hours'

        Returns:
            A maintenance recommendation, or None if no service is due yet
        """
        device_id = device['device_id']
        hours_used = float(device.get('total_usage_hours') or 0)
        threshold = self.threshold_for(device_id)
        urgency = self.classify(hours_used, threshold)
        if urgency is None:
            return None

        timeframe = 'immediately' if urgency == 'urgent' else 'within the next month'
        label = 'Urgent' if urgency == 'urgent' else 'Scheduled'
        logger.info(f"{device_id}: {hours_used:.1f} of {threshold} hours, {urgency} maintenance")

        return make_recommendation(
            MAINTENANCE,
            f"{label} Maintenance for {device_id}",
            (f"Based on usage patterns ({round(hours_used)} hours of operation), "
             f"{device_id} requires {urgency} maintenance {timeframe}."),
            "Preventative maintenance reduces downtime and extends equipment lifespan",
            device_id=device_id,
            hours_used=round(hours_used),
            threshold=threshold,
            urgency=urgency,
            timeframe=timeframe,
        )
