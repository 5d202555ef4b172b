import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import pandas as pd

from .config import CONFIG
from .graph import DistanceOracle, LocationGraph, load_floor_plan, load_graph
from .movements import MovementBuilder
from .recommendations import RecommendationOrchestrator
from .store import Database
from .utilization import summarize_usage

logger = logging.getLogger(__name__)


def read_event_csv(file_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Read a raw location event CSV into records.

    Lines with more fields than the header are collected as parse errors
    instead of failing the whole file.

    Returns:
        Dict with 'records' (list of dicts) and 'errors'
    """
    parse_errors = []

    def _collect_bad_line(fields: List[str]):
        parse_errors.append({'error': 'Invalid column count', 'content': ','.join(fields)})
        return None

    df = pd.read_csv(file_path, dtype=str, keep_default_na=False, skip_blank_lines=True,
                     engine='python', on_bad_lines=_collect_bad_line)
    df.columns = [str(col).strip() for col in df.columns]
    logger.info(f"Read {len(df)} rows from {file_path}")
    if parse_errors:
        logger.warning(f"Skipped {len(parse_errors)} malformed lines in {file_path}")
    return {'records': df.to_dict('records'), 'errors': parse_errors}


class EquipmentTracker:
    """Import, query and recommendation entry points over one dataset."""

    def __init__(self,
                 data_dir: Optional[Union[str, Path]] = None,
                 config: Optional[Dict] = None,
                 graph: Optional[LocationGraph] = None,
                 coordinates: Optional[Mapping[str, Sequence[float]]] = None):
        self.config = config or CONFIG
        self.db = Database(data_dir)
        self.graph = graph if graph is not None else load_graph(self.config['GRAPH_DATA_FILE'])
        self.coordinates = (dict(coordinates) if coordinates is not None
                            else load_floor_plan(self.config['FLOOR_PLAN_FILE']))
        self.oracle = DistanceOracle(self.graph, self.coordinates,
                                     self.config['DEFAULT_DISTANCE'],
                                     self.config['COORDINATE_SCALE'])
        self.builder = MovementBuilder(self.db, self.graph, coordinates=self.coordinates,
                                       config=self.config)
        self.orchestrator = RecommendationOrchestrator(self.db, self.oracle, self.config)

    def import_rows(self, records: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
        return self.builder.build(records).to_dict()

    def import_csv(self, file_path: Union[str, Path]) -> Dict[str, Any]:
        try:
            parsed = read_event_csv(file_path)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            logger.error(f"Error importing CSV data: {e}")
            return {
                'success': False,
                'error': str(e),
                'count': 0,
                'data': [],
                'duplicates': [],
                'errors': [{'error': str(e)}],
                'error_count': 1,
            }

        result = self.import_rows(parsed['records'])
        result['errors'] = parsed['errors'] + result['errors']
        result['error_count'] = len(result['errors'])
        return result

    def get_devices(self) -> List[Dict[str, Any]]:
        return self.db.devices.find({})

    def get_locations(self) -> List[Dict[str, Any]]:
        return self.db.locations.find({})

    def get_movements(self) -> List[Dict[str, Any]]:
        return sorted(self.db.movements.find({}), key=lambda m: pd.Timestamp(m['time_in']), reverse=True)

    def get_recommendations(self) -> List[Dict[str, Any]]:
        return sorted(self.db.recommendations.find({}), key=lambda r: r['created_at'], reverse=True)

    def get_usage_summary(self) -> Dict[str, Any]:
        return summarize_usage(self.db.movements.find({}))

    def generate_recommendations(self) -> Dict[str, Any]:
        return self.orchestrator.generate()

    def implement_recommendation(self, recommendation_id: str) -> Dict[str, Any]:
        return self.orchestrator.apply(recommendation_id)

    def implement_all_recommendations(self) -> Dict[str, Any]:
        return self.orchestrator.apply_all()

    def reset_database(self) -> Dict[str, Any]:
        removed = self.db.reset()
        logger.info("All databases cleared successfully")
        return {'success': True, 'removed': removed, 'message': 'All databases cleared successfully'}
