"""
Recommendation orchestration.

Runs the placement, utilization and maintenance analyzers over the stored
movement history, replaces the stored recommendation set with the merged
result, and applies recommendations back onto device records.
"""

import logging
import threading
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .config import CONFIG
from .graph import DistanceOracle
from .maintenance import MaintenancePredictor, accumulate_usage_hours
from .movements import device_type_of
from .placement import Equipment, PlacementOptimizer
from .records import MAINTENANCE, PLACEMENT, PURCHASE, make_recommendation
from .store import Database
from .utilization import UtilizationAnalyzer

logger = logging.getLogger(__name__)

DEVICE_LOCK_POOL_SIZE = 64


class DeviceNotFoundError(LookupError):
    pass


class RecommendationOrchestrator:
    def __init__(self, db: Database, oracle: DistanceOracle, config: Optional[Dict] = None):
        self.db = db
        self.oracle = oracle
        self.config = config or CONFIG
        self.placement = PlacementOptimizer(oracle, self.config)
        self.utilization = UtilizationAnalyzer(oracle.graph, self.config)
        self.maintenance = MaintenancePredictor(self.config)
        self._generate_lock = threading.Lock()
        self._device_locks = [threading.Lock() for _ in range(DEVICE_LOCK_POOL_SIZE)]

    def _device_lock(self, device_id: str) -> threading.Lock:
        return self._device_locks[hash(device_id) % len(self._device_locks)]

    def _placement_recommendations(self, equipment: List[Equipment]) -> List[Dict[str, Any]]:
        recommendations = []
        for item in equipment:
            try:
                result = self.placement.optimize(item)
            except Exception as e:
                logger.error(f"Error optimizing placement for {item.device_id}: {e}")
                continue
            if not result or result['optimal_location'] == result['current_location']:
                continue

            device_type = device_type_of(item.device_id)
            percent = result['percent_improvement']
            recommendations.append(make_recommendation(
                PLACEMENT,
                f"Optimize {device_type} Placement",
                (f"Moving {item.device_id} from {result['current_location']} to "
                 f"{result['optimal_location']} would reduce staff walking distance "
                 f"by approximately {round(percent)}%."),
                f"~{result['hours_saved']:.1f} hours/month",
                device_id=item.device_id,
                current_location=result['current_location'],
                optimal_location=result['optimal_location'],
                distance_saved=round(result['distance_saved'], 1),
                hours_saved=result['hours_saved'],
                movements_per_month=result['movements_per_month'],
                percent_improvement=percent,
                best_overall_location=result['best_overall_location'],
                best_storage_type_location=result['best_storage_type_location'],
            ))
        return recommendations

    def _maintenance_recommendations(self, movements: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        recommendations = []
        for device_id, hours in accumulate_usage_hours(movements).items():
            try:
                recommendation = self.maintenance.predict({'device_id': device_id,
                                                           'total_usage_hours': hours})
            except Exception as e:
                logger.error(f"Error predicting maintenance for {device_id}: {e}")
                continue
            if recommendation:
                recommendations.append(recommendation)
        return recommendations

    def generate(self, movements: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        """
        Replace the stored recommendations with a freshly generated set.

        Args:
            movements: Movements to analyze; defaults to every stored movement

        Returns:
            Dict with 'success' and either 'recommendations' sorted by hours
            saved, or a 'message' explaining why nothing was generated
        """
        with self._generate_lock:
            if movements is None:
                movements = self.db.movements.find({})
            if self.db.devices.count({}) == 0 or not movements:
                return {'success': False, 'message': 'No data imported yet. Please import data first.'}

            by_device: Dict[str, List[Dict[str, Any]]] = defaultdict(list)
            for movement in movements:
                if movement.get('device_id'):
                    by_device[movement['device_id']].append(movement)
            logger.info(f"Found {len(by_device)} devices with movement data")

            equipment = []
            for device_id, device_movements in by_device.items():
                try:
                    equipment.append(Equipment.from_movements(device_id, device_movements))
                except Exception as e:
                    logger.error(f"Error building usage history for {device_id}: {e}")

            candidates = []
            candidates.extend(self._placement_recommendations(equipment))
            try:
                candidates.extend(self.utilization.analyze(movements, equipment))
            except Exception as e:
                logger.error(f"Error in utilization analysis: {e}")
            candidates.extend(self._maintenance_recommendations(movements))

            candidates.sort(key=lambda rec: rec.get('hours_saved', 0), reverse=True)
            with self.db.recommendations.batch():
                self.db.recommendations.remove_all({})
                recommendations = [self.db.recommendations.insert(rec) for rec in candidates]

            logger.info(f"Generated {len(recommendations)} recommendations")
            return {'success': True, 'recommendations': recommendations}

    def _implement(self, recommendation: Dict[str, Any]):
        rec_type = recommendation.get('type')
        device_id = recommendation.get('device_id')

        if rec_type == PLACEMENT:
            with self._device_lock(device_id):
                if self.db.devices.find_one({'device_id': device_id}) is None:
                    raise DeviceNotFoundError(f"Device {device_id} not found")
                self.db.devices.update({'device_id': device_id},
                                       {'current_location': recommendation['optimal_location']})
            logger.info(f"Updated {device_id} location to {recommendation['optimal_location']}")

        elif rec_type == PURCHASE:
            logger.info(f"Purchase recommendation for "
                        f"{recommendation.get('device_type') or 'equipment'} implemented")

        elif rec_type == MAINTENANCE:
            with self._device_lock(device_id):
                if self.db.devices.find_one({'device_id': device_id}) is None:
                    raise DeviceNotFoundError(f"Device {device_id} not found")
                self.db.devices.update({'device_id': device_id},
                                       {'last_maintenance': datetime.now().isoformat()})
            logger.info(f"Updated maintenance date for {device_id}")

        else:
            raise ValueError(f"Unknown recommendation type: {rec_type}")

    def apply(self, recommendation_id: str) -> Dict[str, Any]:
        """Implement one recommendation and remove it from the store."""
        recommendation = self.db.recommendations.find_one({'_id': recommendation_id})
        if recommendation is None:
            return {'success': False, 'message': 'Recommendation not found'}

        logger.info(f"Implementing recommendation: {recommendation['title']}")
        try:
            self._implement(recommendation)
        except (DeviceNotFoundError, ValueError) as e:
            logger.error(f"Error implementing recommendation {recommendation_id}: {e}")
            return {'success': False, 'message': str(e)}

        num_removed = self.db.recommendations.remove({'_id': recommendation_id})
        return {'success': True, 'num_removed': num_removed, 'implemented': recommendation['type']}

    def apply_all(self) -> Dict[str, Any]:
        """
        Implement every stored recommendation, then clear the set.

        A recommendation that fails is logged and skipped; the rest of the
        batch still runs.
        """
        recommendations = self.db.recommendations.find({})
        if not recommendations:
            return {'success': False, 'message': 'No recommendations found'}

        implemented_count = 0
        with self.db.batch():
            for recommendation in recommendations:
                try:
                    self._implement(recommendation)
                    implemented_count += 1
                except Exception as e:
                    logger.error(f"Error implementing recommendation {recommendation.get('_id')}: {e}")

            num_removed = self.db.recommendations.remove_all({})
        return {
            'success': True,
            'implemented_count': implemented_count,
            'num_removed': num_removed,
            'message': f"Successfully implemented {implemented_count} recommendations",
        }
