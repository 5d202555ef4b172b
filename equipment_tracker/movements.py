import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

import pandas as pd

from .config import CONFIG
from .graph import LocationGraph
from .normalizer import LocationNormalizer, UnknownLocations
from .store import Database

logger = logging.getLogger(__name__)

IN_USE = 'in use'
AVAILABLE = 'available'


def is_in_use(status: Optional[str]) -> bool:
    return IN_USE in str(status or '').lower()


def is_available(status: Optional[str]) -> bool:
    """Only a status of exactly 'available' marks a storage stay."""
    return str(status or '').strip().lower() == AVAILABLE


def device_type_of(device_id: str) -> str:
    """Device type is the part of the id before the first dash."""
    return str(device_id).split('-')[0] or 'Unknown'


def is_storage_room(room: str, patterns: Optional[Sequence[str]] = None) -> bool:
    """A room is a storage area when its name contains a storage pattern."""
    for pattern in patterns if patterns is not None else CONFIG['STORAGE_PATTERNS']:
        if pattern.isupper():
            if pattern in room:
                return True
        elif pattern.lower() in room.lower():
            return True
    return False


def get_field(record: Mapping[str, Any], name: str,
              synonyms: Optional[Mapping[str, Sequence[str]]] = None) -> str:
    """
    Look up a logical field in a raw record using its accepted column names.

    Exact column names are tried in order first, then a case-insensitive
    match. Empty and missing values resolve to ''.
    """
    synonyms = synonyms or CONFIG['FIELD_SYNONYMS']
    keys = synonyms.get(name, [name])

    for key in keys:
        value = record.get(key)
        if not _is_blank(value):
            return str(value).strip()

    folded = {key.lower() for key in keys}
    for key, value in record.items():
        if str(key).strip().lower() in folded and not _is_blank(value):
            return str(value).strip()
    return ''


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    try:
        if pd.isna(value):
            return True
    except (TypeError, ValueError):
        pass
    return str(value).strip() == ''


def parse_timestamp(value: str) -> Optional[pd.Timestamp]:
    timestamp = pd.to_datetime(value, errors='coerce')
    if pd.isna(timestamp):
        return None
    return timestamp


def hours_between(start: Any, end: Any) -> float:
    """Hours from start to end, 0 when either is invalid or end precedes start."""
    start_ts = parse_timestamp(start) if not isinstance(start, pd.Timestamp) else start
    end_ts = parse_timestamp(end) if not isinstance(end, pd.Timestamp) else end
    if start_ts is None or end_ts is None or end_ts <= start_ts:
        return 0.0
    return (end_ts - start_ts).total_seconds() / 3600


def in_use_hours(movements: Iterable[Mapping[str, Any]]) -> float:
    """In-use hours across movements, each movement rounded to two decimals."""
    total = 0.0
    for movement in movements:
        if is_in_use(movement.get('status')):
            total += round(hours_between(movement.get('time_in'), movement.get('time_out')), 2)
    return round(total, 2)


@dataclass
class ImportResult:
    movements: List[Dict[str, Any]] = field(default_factory=list)
    duplicates: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    unknown_locations: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.movements)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': True,
            'count': self.count,
            'data': self.movements,
            'duplicates': self.duplicates,
            'errors': self.errors,
            'error_count': len(self.errors),
            'unknown_locations': self.unknown_locations,
        }


@dataclass
class _Row:
    line: int
    record: Mapping[str, Any]
    location: str
    status: str
    time_in: pd.Timestamp
    time_out: pd.Timestamp
    room: str


class MovementBuilder:
    """
    Turns raw location events into per-device movement records.

    Rows are validated, grouped by device and sorted by arrival time.
    Each consecutive pair of rows in different rooms becomes a movement,
    unless the same movement is already stored.
    """

    def __init__(self,
                 db: Database,
                 graph: Optional[LocationGraph] = None,
                 normalizer: Optional[LocationNormalizer] = None,
                 coordinates: Optional[Mapping[str, Sequence[float]]] = None,
                 config: Optional[Dict] = None):
        self.db = db
        self.graph = graph if graph is not None else LocationGraph()
        self.config = config or CONFIG
        self.normalizer = normalizer or LocationNormalizer(
            self.config['LOCATION_ALIASES'], self.config['UNKNOWN_LOCATION'])
        self.coordinates = dict(coordinates or {})

    def build(self, records: Iterable[Mapping[str, Any]]) -> ImportResult:
        result = ImportResult()
        unknown = UnknownLocations()

        device_rows = self._group_rows(records, result, unknown)

        with self.db.batch():
            for device_id, rows in device_rows.items():
                try:
                    self._process_device(device_id, rows, result)
                except Exception as e:
                    logger.error(f"Error processing device {device_id}: {e}")
                    result.errors.append({
                        'device_id': device_id,
                        'error': f"Error processing device: {e}",
                    })

        result.unknown_locations = unknown.as_list()
        if result.unknown_locations:
            logger.info(f"Unknown location names: {result.unknown_locations}")
        logger.info(f"Imported {result.count} movements, {len(result.duplicates)} duplicates, "
                    f"{len(result.errors)} errors")
        return result

    def _group_rows(self, records: Iterable[Mapping[str, Any]], result: ImportResult,
                    unknown: UnknownLocations) -> Dict[str, List[_Row]]:
        synonyms = self.config['FIELD_SYNONYMS']
        device_rows: Dict[str, List[_Row]] = {}

        for index, record in enumerate(records):
            line = index + 2  # header row plus 1-based numbering
            try:
                device_id = get_field(record, 'device', synonyms)
                if not device_id:
                    result.errors.append({'line': line, 'error': 'Missing device ID', 'record': dict(record)})
                    continue

                location = get_field(record, 'location', synonyms)
                if not location:
                    result.errors.append({'line': line, 'error': 'Missing location', 'record': dict(record)})
                    continue

                status = get_field(record, 'status', synonyms)
                if not status:
                    result.errors.append({'line': line, 'error': 'Missing status', 'record': dict(record)})
                    continue

                raw_in = get_field(record, 'in', synonyms)
                raw_out = get_field(record, 'out', synonyms)
                if not raw_in or not raw_out:
                    result.errors.append({'line': line, 'error': 'Missing time in or time out',
                                          'record': dict(record)})
                    continue

                time_in = parse_timestamp(raw_in)
                time_out = parse_timestamp(raw_out)
                if time_in is None or time_out is None:
                    result.errors.append({'line': line, 'error': 'Invalid timestamp', 'record': dict(record)})
                    continue

                room = self.normalizer.normalize(device_id, location, unknown)
                device_rows.setdefault(device_id, []).append(
                    _Row(line, record, location, status, time_in, time_out, room))
            except Exception as e:
                result.errors.append({
                    'line': line,
                    'error': f"Error processing record: {e}",
                    'record': dict(record),
                })

        return device_rows

    def _process_device(self, device_id: str, rows: List[_Row], result: ImportResult):
        rows.sort(key=lambda row: row.time_in)
        device_type = device_type_of(device_id)

        for current, following in zip(rows, rows[1:]):
            time_in = current.time_in
            time_out = following.time_in

            if time_out < time_in:
                logger.debug(f"Skipping out-of-order movement for {device_id}: {time_out} before {time_in}")
                continue

            from_location, to_location = current.room, following.room
            if from_location == to_location:
                logger.debug(f"Skipping movement for {device_id} within {from_location}")
                continue

            unknown_locations = [room for room in (from_location, to_location)
                                 if not self.graph.has_node(room)]
            for room in (from_location, to_location):
                self._upsert_location(room)
            for room in unknown_locations:
                logger.warning(f"Location {room} is not in the graph data")

            key = {
                'device_id': device_id,
                'from_location': from_location,
                'to_location': to_location,
                'time_in': time_in.isoformat(),
                'time_out': time_out.isoformat(),
            }

            if self.db.movements.exists(key):
                logger.info(f"Duplicate movement found for {device_id} from {from_location} to {to_location}")
                result.duplicates.append(key)
                continue

            weight = self.graph.edge_weight(from_location, to_location)
            movement = dict(key)
            movement.update({
                'status': current.status,
                'distance_traveled': round(weight, 1) if weight is not None else 0,
                'created_at': datetime.now().isoformat(),
                'has_unknown_location': bool(unknown_locations),
                'unknown_locations': unknown_locations,
            })
            result.movements.append(self.db.movements.insert(movement))

        self._upsert_device(device_id, device_type, rows)

    def _upsert_device(self, device_id: str, device_type: str, rows: List[_Row]):
        """
        Refresh the device record after its movements are stored.

        ``total_usage_hours`` covers every stored movement of the device, so it
        agrees with the maintenance figures. The row counts and usage
        percentage describe the rows of the latest import only.
        """
        in_use_count = sum(1 for row in rows if is_in_use(row.status))
        usage_hours = in_use_hours(self.db.movements.find({'device_id': device_id}))
        latest = rows[-1]

        device = {
            'device_type': device_type,
            'status': latest.status,
            'current_location': latest.room,
            'in_use_count': in_use_count,
            'total_count': len(rows),
            'usage_percentage': round(in_use_count / len(rows) * 100),
            'total_usage_hours': round(usage_hours, 2),
        }
        if self.db.devices.find_one({'device_id': device_id}) is None:
            device['last_maintenance'] = None

        self.db.devices.upsert({'device_id': device_id}, device)
        logger.info(f"Updated device: {device_id} with usage: {device['usage_percentage']}%")

    def _upsert_location(self, room: str):
        coordinates = self.coordinates.get(room, [0, 0])
        self.db.locations.upsert({'location_id': room}, {
            'name': room,
            'coordinates': list(coordinates),
            'is_storage_type': is_storage_room(room, self.config['STORAGE_PATTERNS']),
            'is_known': self.graph.has_node(room),
        })
