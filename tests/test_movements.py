import pytest
import random
import sys
from pathlib import Path
from unittest.mock import patch

sys.path.append(str(Path(__file__).parent.parent))

from equipment_tracker.graph import LocationGraph
from equipment_tracker.movements import (
    MovementBuilder,
    device_type_of,
    get_field,
    hours_between,
    is_available,
    is_storage_room,
)
from equipment_tracker.maintenance import accumulate_usage_hours
from equipment_tracker.store import Collection, Database


@pytest.fixture
def graph():
    return LocationGraph(['K1001', 'K1002', 'K1003'],
                         [['K1001', 'K1002', 12.34], ['K1002', 'K1003', 5]])


@pytest.fixture
def db():
    return Database()


@pytest.fixture
def builder(db, graph):
    return MovementBuilder(db, graph)


@pytest.fixture
def pump_rows():
    return [
        {'device': 'Pump-1', 'location': 'K1001', 'status': 'Available',
         'in': '2024-01-01 08:00', 'out': '2024-01-01 09:00'},
        {'device': 'Pump-1', 'location': 'K1002', 'status': 'In Use',
         'in': '2024-01-01 09:00', 'out': '2024-01-01 11:00'},
        {'device': 'Pump-1', 'location': 'K1002', 'status': 'In Use',
         'in': '2024-01-01 11:00', 'out': '2024-01-01 12:00'},
        {'device': 'Pump-1', 'location': 'K1001', 'status': 'Available',
         'in': '2024-01-01 12:00', 'out': '2024-01-01 13:00'},
    ]


def test_helpers():
    assert device_type_of('Ventilator-12') == 'Ventilator'
    assert device_type_of('Pump') == 'Pump'
    assert is_storage_room('STOR-2')
    assert is_storage_room('Clean Storage K1001')
    assert not is_storage_room('stor-2')
    assert hours_between('2024-01-01 08:00', '2024-01-01 10:30') == 2.5
    assert hours_between('2024-01-01 10:00', '2024-01-01 08:00') == 0
    assert hours_between('not a date', '2024-01-01 08:00') == 0


def test_get_field_synonyms():
    assert get_field({'timeIn': '2024-01-01'}, 'in') == '2024-01-01'
    assert get_field({'DEVICE': ' Pump-1 '}, 'device') == 'Pump-1'
    assert get_field({'device': '', 'Device': 'Pump-2'}, 'device') == 'Pump-2'
    assert get_field({'status': None}, 'status') == ''


def test_build_movements(builder, db, pump_rows):
    result = builder.build(pump_rows)

    assert result.count == 2
    assert result.errors == []
    first, second = sorted(result.movements, key=lambda m: m['time_in'])

    assert first['from_location'] == 'K1001'
    assert first['to_location'] == 'K1002'
    assert first['status'] == 'Available'
    assert first['time_in'] == '2024-01-01T08:00:00'
    assert first['time_out'] == '2024-01-01T09:00:00'
    assert first['distance_traveled'] == 12.3
    assert first['has_unknown_location'] is False

    # Stay in K1002 across two rows is not a movement
    assert second['from_location'] == 'K1002'
    assert second['to_location'] == 'K1001'
    assert second['time_in'] == '2024-01-01T11:00:00'
    assert second['status'] == 'In Use'

    assert db.movements.count() == 2


def test_rows_are_sorted_before_pairing(builder, pump_rows):
    shuffled = list(pump_rows)
    random.Random(7).shuffle(shuffled)
    result = builder.build(shuffled)
    routes = sorted((m['time_in'], m['from_location'], m['to_location']) for m in result.movements)
    assert [(frm, to) for _, frm, to in routes] == [('K1001', 'K1002'), ('K1002', 'K1001')]


def test_movements_are_valid(builder, db, pump_rows):
    builder.build(pump_rows)
    for movement in db.movements.find({}):
        assert movement['from_location'] != movement['to_location']
        assert movement['time_out'] >= movement['time_in']


def test_device_record(builder, db, pump_rows):
    builder.build(pump_rows)
    device = db.devices.find_one({'device_id': 'Pump-1'})

    assert device['device_type'] == 'Pump'
    assert device['status'] == 'Available'
    assert device['current_location'] == 'K1001'
    assert device['in_use_count'] == 2
    assert device['total_count'] == 4
    assert device['usage_percentage'] == 50
    assert device['total_usage_hours'] == 1.0
    assert device['last_maintenance'] is None


def test_reimport_is_idempotent(builder, db, pump_rows):
    builder.build(pump_rows)
    db.devices.update({'device_id': 'Pump-1'}, {'last_maintenance': '2024-02-01T00:00:00'})

    result = builder.build(pump_rows)

    assert result.count == 0
    assert len(result.duplicates) == 2
    assert db.movements.count() == 2
    assert db.devices.count() == 1
    assert db.devices.find_one({'device_id': 'Pump-1'})['last_maintenance'] == '2024-02-01T00:00:00'


def test_row_errors_are_reported_with_line_numbers(builder):
    rows = [
        {'device': '', 'location': 'K1001', 'status': 'Available', 'in': '2024-01-01', 'out': '2024-01-01'},
        {'device': 'Pump-1', 'location': '', 'status': 'Available', 'in': '2024-01-01', 'out': '2024-01-01'},
        {'device': 'Pump-1', 'location': 'K1001', 'status': '', 'in': '2024-01-01', 'out': '2024-01-01'},
        {'device': 'Pump-1', 'location': 'K1001', 'status': 'Available', 'in': '', 'out': '2024-01-01'},
        {'device': 'Pump-1', 'location': 'K1001', 'status': 'Available', 'in': 'yesterday-ish', 'out': 'soon'},
    ]
    result = builder.build(rows)

    assert result.count == 0
    assert [(error['line'], error['error']) for error in result.errors] == [
        (2, 'Missing device ID'),
        (3, 'Missing location'),
        (4, 'Missing status'),
        (5, 'Missing time in or time out'),
        (6, 'Invalid timestamp'),
    ]


def test_alternate_column_names(builder):
    rows = [
        {'Device': 'Monitor-1', 'Location': 'K1002', 'Status': 'In Use',
         'timeIn': '2024-01-01 08:00', 'timeOut': '2024-01-01 09:00'},
        {'Device': 'Monitor-1', 'Location': 'K1003', 'Status': 'Available',
         'timeIn': '2024-01-01 09:00', 'timeOut': '2024-01-01 10:00'},
    ]
    result = builder.build(rows)
    assert result.count == 1
    assert result.movements[0]['distance_traveled'] == 5


def test_unknown_locations_are_tagged(builder, db):
    rows = [
        {'device': 'Pump-3', 'location': 'Cafeteria', 'status': 'Available',
         'in': '2024-01-01 08:00', 'out': '2024-01-01 09:00'},
        {'device': 'Pump-3', 'location': 'K5555', 'status': 'In Use',
         'in': '2024-01-01 09:00', 'out': '2024-01-01 10:00'},
        {'device': 'Pump-3', 'location': 'K1001', 'status': 'Available',
         'in': '2024-01-01 10:00', 'out': '2024-01-01 11:00'},
    ]
    result = builder.build(rows)

    assert result.unknown_locations == ['Cafeteria']
    first, second = sorted(result.movements, key=lambda m: m['time_in'])
    assert first['from_location'] == 'UNKNOWN LOCATION'
    assert first['has_unknown_location'] is True
    assert first['unknown_locations'] == ['UNKNOWN LOCATION', 'K5555']
    assert first['distance_traveled'] == 0
    assert second['unknown_locations'] == ['K5555']

    location = db.locations.find_one({'location_id': 'K5555'})
    assert location['is_known'] is False
    assert location['coordinates'] == [0, 0]
    assert db.locations.find_one({'location_id': 'K1001'})['is_known'] is True


def test_devices_are_processed_independently(builder, pump_rows):
    rows = pump_rows + [
        {'device': 'Monitor-2', 'location': 'K1003', 'status': 'In Use',
         'in': '2024-01-02 08:00', 'out': '2024-01-02 09:00'},
        {'device': 'Monitor-2', 'location': 'K1002', 'status': 'Available',
         'in': '2024-01-02 09:00', 'out': '2024-01-02 10:00'},
    ]
    result = builder.build(rows)
    assert result.count == 3
    assert {m['device_id'] for m in result.movements} == {'Pump-1', 'Monitor-2'}
    assert result.to_dict()['success'] is True
    assert result.to_dict()['error_count'] == 0


def test_available_status_is_exact():
    assert is_available('Available')
    assert is_available(' available ')
    assert not is_available('Unavailable')
    assert not is_available('Not Available')
    assert not is_available(None)


def test_device_hours_cover_all_imports(builder, db, pump_rows):
    builder.build(pump_rows)
    builder.build([
        {'device': 'Pump-1', 'location': 'K1002', 'status': 'In Use',
         'in': '2024-01-02 08:00', 'out': '2024-01-02 10:00'},
        {'device': 'Pump-1', 'location': 'K1001', 'status': 'Available',
         'in': '2024-01-02 10:00', 'out': '2024-01-02 11:00'},
    ])

    device = db.devices.find_one({'device_id': 'Pump-1'})
    assert device['total_usage_hours'] == 3.0
    assert device['total_usage_hours'] == accumulate_usage_hours(db.movements.find({}))['Pump-1']
    # Row counts describe the latest import
    assert device['total_count'] == 2


def test_import_writes_each_file_once(graph, pump_rows, tmp_path):
    db = Database(tmp_path)
    rows = pump_rows + [
        {'device': 'Monitor-2', 'location': 'K1003', 'status': 'In Use',
         'in': '2024-01-02 08:00', 'out': '2024-01-02 09:00'},
        {'device': 'Monitor-2', 'location': 'K1002', 'status': 'Available',
         'in': '2024-01-02 09:00', 'out': '2024-01-02 10:00'},
    ]

    with patch.object(Collection, '_write', autospec=True, side_effect=Collection._write) as mock_write:
        result = MovementBuilder(db, graph).build(rows)

    assert result.count == 3
    assert sorted(call.args[0].name for call in mock_write.call_args_list) == \
        ['devices', 'locations', 'movements']
    assert list(tmp_path.glob('*.tmp')) == []

    reopened = Database(tmp_path)
    assert reopened.movements.count() == 3
    assert reopened.devices.count() == 2
    assert reopened.movements.exists({
        'device_id': 'Monitor-2', 'from_location': 'K1003', 'to_location': 'K1002',
        'time_in': '2024-01-02T08:00:00', 'time_out': '2024-01-02T09:00:00',
    })
