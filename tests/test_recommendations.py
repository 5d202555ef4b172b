import pytest
import sys
import threading
from pathlib import Path
from unittest.mock import patch

sys.path.append(str(Path(__file__).parent.parent))

from equipment_tracker.config import CONFIG
from equipment_tracker.graph import DistanceOracle, LocationGraph
from equipment_tracker.movements import MovementBuilder
from equipment_tracker.recommendations import (
    DEVICE_LOCK_POOL_SIZE,
    DeviceNotFoundError,
    RecommendationOrchestrator,
)
from equipment_tracker.store import Collection, Database

PUMP_ROWS = [
    {'device': 'Pump-1', 'location': room, 'status': status,
     'in': f'2024-01-{day:02d} 08:00', 'out': f'2024-01-{day:02d} 09:00'}
    for day, (room, status) in enumerate([('K1001', 'Available'), ('K1002', 'In Use')] * 3, start=1)
]

MONITOR_ROWS = [
    {'device': 'Monitor-7', 'location': 'K1002', 'status': 'In Use',
     'in': '2024-01-01 08:00', 'out': '2024-02-05 08:00'},
    {'device': 'Monitor-7', 'location': 'K1003', 'status': 'Available',
     'in': '2024-02-05 08:00', 'out': '2024-02-05 09:00'},
    {'device': 'Monitor-7', 'location': 'K1002', 'status': 'Available',
     'in': '2024-02-06 08:00', 'out': '2024-02-06 09:00'},
]


@pytest.fixture
def graph():
    return LocationGraph(['K1001', 'K1002', 'K1003'],
                         [['K1001', 'K1002', 10], ['K1002', 'K1003', 5]])


@pytest.fixture
def db():
    return Database()


@pytest.fixture
def orchestrator(db, graph):
    return RecommendationOrchestrator(db, DistanceOracle(graph, {}), CONFIG)


@pytest.fixture
def loaded(db, graph, orchestrator):
    MovementBuilder(db, graph).build(PUMP_ROWS + MONITOR_ROWS)
    return orchestrator


def by_type(recommendations, rec_type):
    return [rec for rec in recommendations if rec['type'] == rec_type]


def test_generate_without_data(orchestrator):
    result = orchestrator.generate()
    assert result == {'success': False, 'message': 'No data imported yet. Please import data first.'}


def test_generate(loaded, db):
    result = loaded.generate()

    assert result['success'] is True
    recommendations = result['recommendations']
    assert len(recommendations) == 4
    assert db.recommendations.count() == 4

    placements = by_type(recommendations, 'placement')
    assert {rec['device_id'] for rec in placements} == {'Pump-1', 'Monitor-7'}
    pump = next(rec for rec in placements if rec['device_id'] == 'Pump-1')
    assert pump['current_location'] == 'K1001'
    assert pump['optimal_location'] == 'K1002'
    assert pump['distance_saved'] == 50
    assert pump['title'] == 'Optimize Pump Placement'
    assert pump['savings_text'].endswith('hours/month')

    purchases = by_type(recommendations, 'purchase')
    assert [rec['device_type'] for rec in purchases] == ['Monitor']
    assert purchases[0]['additional_units'] == 2

    maintenance = by_type(recommendations, 'maintenance')
    assert [(rec['device_id'], rec['urgency']) for rec in maintenance] == [('Monitor-7', 'urgent')]

    hours = [rec.get('hours_saved', 0) for rec in recommendations]
    assert hours == sorted(hours, reverse=True)
    assert recommendations[0]['device_id'] == 'Pump-1'


def test_generate_replaces_previous_set(loaded, db):
    first = {rec['_id'] for rec in loaded.generate()['recommendations']}
    second = {rec['_id'] for rec in loaded.generate()['recommendations']}
    assert db.recommendations.count() == 4
    assert not first & second


def test_concurrent_generate_does_not_interleave(loaded, db):
    threads = [threading.Thread(target=loaded.generate) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert db.recommendations.count() == 4


def test_placement_failure_skips_only_that_device(loaded):
    original = loaded.placement.optimize

    def flaky(equipment):
        if equipment.device_id == 'Monitor-7':
            raise RuntimeError("boom")
        return original(equipment)

    with patch.object(loaded.placement, 'optimize', side_effect=flaky):
        recommendations = loaded.generate()['recommendations']

    assert [rec['device_id'] for rec in by_type(recommendations, 'placement')] == ['Pump-1']
    assert len(recommendations) == 3


def test_apply_placement(loaded, db):
    recommendations = loaded.generate()['recommendations']
    pump = next(rec for rec in recommendations
                if rec['type'] == 'placement' and rec['device_id'] == 'Pump-1')

    result = loaded.apply(pump['_id'])

    assert result == {'success': True, 'num_removed': 1, 'implemented': 'placement'}
    assert db.devices.find_one({'device_id': 'Pump-1'})['current_location'] == 'K1002'
    assert db.recommendations.find_one({'_id': pump['_id']}) is None


def test_apply_maintenance(loaded, db):
    recommendations = loaded.generate()['recommendations']
    maintenance = by_type(recommendations, 'maintenance')[0]

    assert loaded.apply(maintenance['_id'])['success'] is True
    assert db.devices.find_one({'device_id': 'Monitor-7'})['last_maintenance'] is not None


def test_apply_missing_recommendation(loaded):
    assert loaded.apply('missing') == {'success': False, 'message': 'Recommendation not found'}


def test_apply_for_missing_device(loaded, db):
    recommendations = loaded.generate()['recommendations']
    maintenance = by_type(recommendations, 'maintenance')[0]
    db.devices.remove({'device_id': 'Monitor-7'})

    result = loaded.apply(maintenance['_id'])

    assert result['success'] is False
    assert db.recommendations.find_one({'_id': maintenance['_id']}) is not None
    with pytest.raises(DeviceNotFoundError):
        loaded._implement(maintenance)


def test_apply_all_partial_failure(loaded, db):
    loaded.generate()
    db.devices.remove({'device_id': 'Monitor-7'})

    result = loaded.apply_all()

    assert result['success'] is True
    assert result['implemented_count'] == 2
    assert result['num_removed'] == 4
    assert db.recommendations.count() == 0
    assert db.devices.find_one({'device_id': 'Pump-1'})['current_location'] == 'K1002'


def test_apply_all_without_recommendations(orchestrator):
    assert orchestrator.apply_all() == {'success': False, 'message': 'No recommendations found'}


def test_device_locks_come_from_a_fixed_pool(loaded):
    assert loaded._device_lock('Pump-1') is loaded._device_lock('Pump-1')

    for index in range(500):
        loaded._device_lock(f'Pump-{index}')
    loaded.generate()
    loaded.apply_all()

    assert len(loaded._device_locks) == DEVICE_LOCK_POOL_SIZE


def test_generate_writes_recommendations_once(graph, tmp_path):
    db = Database(tmp_path)
    MovementBuilder(db, graph).build(PUMP_ROWS + MONITOR_ROWS)
    orchestrator = RecommendationOrchestrator(db, DistanceOracle(graph, {}), CONFIG)

    with patch.object(Collection, '_write', autospec=True, side_effect=Collection._write) as mock_write:
        orchestrator.generate()

    assert [call.args[0].name for call in mock_write.call_args_list] == ['recommendations']
    assert Database(tmp_path).recommendations.count() == 4
