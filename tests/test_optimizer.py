import pytest
import threading
import time as time_module
from datetime import time

from induction_engine.evaluator import evaluate_fleet
from induction_engine.exceptions import OptimizationCancelled
from induction_engine.optimizer import InductionOptimizer, OptimizationConfig, objective_tier_bounds, trip_window
from induction_engine.schemas import ConstraintWeights, SolverStatus, TrainState, TripDemand

from conftest import PLANNING_DATE, make_train, make_trips


@pytest.fixture
def sample_evaluations(sample_fleet):
    return evaluate_fleet(sample_fleet, PLANNING_DATE)


@pytest.fixture
def optimizer():
    return InductionOptimizer(OptimizationConfig(max_solve_time_seconds=10, cleaning_bays=1))


def test_optimizer_initialization():
    optimizer = InductionOptimizer()
    assert optimizer.is_ready()
    assert optimizer.config.num_workers == 1
    assert optimizer.config.max_solve_time_seconds == 60.0


def test_optimization_with_sample_data(optimizer, sample_evaluations, sample_trips):
    result = optimizer.optimize(sample_evaluations, sample_trips, ConstraintWeights())

    assert result.status == SolverStatus.OPTIMAL
    assert not result.timed_out
    assert len(result.assignments) == 8
    assert result.unserviced_trip_ids == []
    # KM-001 and KM-002 carry the best composites and can cover every trip between them
    assert set(result.assignments.values()) == {"KM-001", "KM-002"}
    assert result.train_states["KM-003"] == TrainState.STANDBY
    assert result.objective_value > 0


def test_blocked_trains_never_assigned(optimizer, sample_evaluations):
    trips = make_trips(12, spacing_minutes=10)
    result = optimizer.optimize(sample_evaluations, trips, ConstraintWeights())

    assert "KM-004" not in result.assignments.values()
    assert "KM-005" not in result.assignments.values()
    assert result.train_states["KM-004"] == TrainState.MAINTENANCE_HOLD
    assert result.train_states["KM-005"] == TrainState.MAINTENANCE_HOLD


def test_trip_accounting(optimizer, sample_evaluations):
    trips = make_trips(12, spacing_minutes=10)
    result = optimizer.optimize(sample_evaluations, trips, ConstraintWeights())

    served = set(result.assignments)
    assert len(served) + len(result.unserviced_trip_ids) == len(trips)
    assert served.isdisjoint(result.unserviced_trip_ids)
    assert sum(len(ids) for ids in result.train_trips.values()) == len(served)


def test_assigned_trips_never_overlap(optimizer, sample_evaluations):
    trips = make_trips(12, spacing_minutes=20)
    windows = {trip.trip_id: trip_window(trip, 60) for trip in trips}
    result = optimizer.optimize(sample_evaluations, trips, ConstraintWeights())

    for train_id, trip_ids in result.train_trips.items():
        spans = sorted(windows[j] for j in trip_ids)
        for (_, end), (start, _) in zip(spans, spans[1:]):
            assert end <= start, f"{train_id} runs overlapping trips"


def test_in_service_matches_assigned_trips(optimizer, sample_evaluations, sample_trips):
    result = optimizer.optimize(sample_evaluations, sample_trips, ConstraintWeights())

    for train_id, state in result.train_states.items():
        assert (state == TrainState.IN_SERVICE) == bool(result.train_trips[train_id])
    assert result.trains_used == len(set(result.assignments.values()))


def test_final_mileage_adds_trip_distance(optimizer, sample_evaluations, sample_trips):
    result = optimizer.optimize(sample_evaluations, sample_trips, ConstraintWeights())

    assert result.final_mileage["KM-001"] == 940 + 25 * len(result.train_trips["KM-001"])
    assert result.final_mileage["KM-004"] == 950


def test_empty_fleet_is_optimal(optimizer, sample_trips):
    result = optimizer.optimize([], sample_trips, ConstraintWeights())

    assert result.status == SolverStatus.OPTIMAL
    assert result.assignments == {}
    assert result.unserviced_trip_ids == [t.trip_id for t in sample_trips]


def test_no_trips_is_optimal(optimizer, sample_evaluations):
    result = optimizer.optimize(sample_evaluations, [], ConstraintWeights())

    assert result.status == SolverStatus.OPTIMAL
    assert result.trains_used == 0
    assert result.train_states["KM-002"] == TrainState.CLEANING
    assert result.train_states["KM-001"] == TrainState.STANDBY


def test_all_blocked_leaves_trips_unserviced(optimizer, sample_trips):
    evaluations = evaluate_fleet([make_train("A", fc_signalling=False), make_train("B", open_job_cards=1)])
    result = optimizer.optimize(evaluations, sample_trips, ConstraintWeights())

    assert result.status == SolverStatus.OPTIMAL
    assert len(result.unserviced_trip_ids) == len(sample_trips)


def test_zero_time_limit_returns_incumbent(sample_evaluations, sample_trips):
    optimizer = InductionOptimizer(OptimizationConfig(max_solve_time_seconds=0))
    result = optimizer.optimize(sample_evaluations, sample_trips, ConstraintWeights())

    assert result.status == SolverStatus.FEASIBLE
    assert result.timed_out
    assert len(result.assignments) + len(result.unserviced_trip_ids) == len(sample_trips)
    assert "KM-004" not in result.assignments.values()


def test_min_service_trains_infeasible(sample_evaluations, sample_trips):
    optimizer = InductionOptimizer(OptimizationConfig(max_solve_time_seconds=10, min_service_trains=4))
    result = optimizer.optimize(sample_evaluations, sample_trips, ConstraintWeights())

    assert result.status == SolverStatus.INFEASIBLE
    assert result.assignments == {}
    assert len(result.unserviced_trip_ids) == len(sample_trips)


def test_cancelled_before_start(optimizer, sample_evaluations, sample_trips):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OptimizationCancelled):
        optimizer.optimize(sample_evaluations, sample_trips, ConstraintWeights(), cancel_event=cancel)


def test_cleaning_bays_capacity(sample_trips):
    fleet = [make_train(f"KM-{i:03d}", cleaning_due=True) for i in range(1, 5)]
    fleet.append(make_train("KM-010"))
    evaluations = evaluate_fleet(fleet)
    optimizer = InductionOptimizer(OptimizationConfig(max_solve_time_seconds=10, cleaning_bays=2))

    result = optimizer.optimize(evaluations, make_trips(1), ConstraintWeights())

    assert result.assignments == {"Trip_001": "KM-010"}
    cleaned = [t for t, state in result.train_states.items() if state == TrainState.CLEANING]
    assert len(cleaned) == 2


def test_tie_break_prefers_lower_train_id(optimizer):
    evaluations = evaluate_fleet([make_train("KM-B"), make_train("KM-A")])
    result = optimizer.optimize(evaluations, make_trips(1), ConstraintWeights())

    assert result.assignments == {"Trip_001": "KM-A"}


def test_results_are_deterministic(optimizer, sample_evaluations):
    trips = make_trips(12, spacing_minutes=15)
    first = optimizer.optimize(sample_evaluations, trips, ConstraintWeights())
    second = optimizer.optimize(sample_evaluations, trips, ConstraintWeights())

    assert first.assignments == second.assignments
    assert first.train_states == second.train_states


def test_disabled_readiness_gate_allows_blocked_trains(optimizer):
    evaluations = evaluate_fleet([make_train("A", fc_telecom=False), make_train("B", open_job_cards=2)])
    weights = ConstraintWeights.from_mapping({"service_readiness": 0})

    result = optimizer.optimize(evaluations, make_trips(2), weights)

    assert len(result.assignments) == 2
    assert TrainState.IN_SERVICE in result.train_states.values()


def test_trip_window_crossing_midnight():
    trip = TripDemand(trip_id="T1", departure_time=time(23, 30), arrival_time=time(0, 30), route="Aluva-Pettah")
    assert trip_window(trip, 60) == (1410, 1470)


def test_trip_window_default_duration():
    trip = TripDemand(trip_id="T1", departure_time=time(6, 0), route="Aluva-Pettah")
    assert trip_window(trip, 45) == (360, 405)


def large_instance(num_trains=80, num_trips=400):
    trains = [make_train(f"KM-{i:03d}", predicted_health_score=(i % 10) / 12, mileage_km=700 + (i * 37) % 500,
                         cleaning_due=i % 7 == 0, stabling_penalty=(i * 13) % 40)
              for i in range(1, num_trains + 1)]
    return evaluate_fleet(trains), make_trips(num_trips, start_hour=5, spacing_minutes=4)


def test_cancel_during_search_raises():
    evaluations, trips = large_instance()
    optimizer = InductionOptimizer(OptimizationConfig(max_solve_time_seconds=120))
    cancel = threading.Event()
    timer = threading.Timer(0.5, cancel.set)

    started = time_module.monotonic()
    timer.start()
    try:
        with pytest.raises(OptimizationCancelled):
            optimizer.optimize(evaluations, trips, ConstraintWeights(), cancel_event=cancel)
    finally:
        timer.cancel()

    assert cancel.is_set()
    assert time_module.monotonic() - started < 60


def test_objective_tiers_stay_ordered_and_bounded():
    cleaning_bound, quality_bound = objective_tier_bounds(
        num_trains=400, num_trips=1500, max_coefficient=10000 * 401 + 400, num_cleaning_candidates=40)

    # Every cleaning candidate at top rank still stays below one quality unit
    assert 40 * 400 < cleaning_bound
    assert 1500 * (10000 * 401 + 400) * cleaning_bound < quality_bound
    # Serviced-trip tier times every trip still fits CP-SAT's int64 objective
    assert quality_bound * 1500 < 2 ** 62


def test_cleaning_tier_scales_with_candidates_only():
    assert objective_tier_bounds(100, 10, 1000, 0)[0] == 1
    assert objective_tier_bounds(100, 10, 1000, 3)[0] == 301
