import pytest
from datetime import date, time

from induction_engine.config import EngineConfig
from induction_engine.loader import InMemorySnapshotLoader
from induction_engine.pipeline import InductionScheduler
from induction_engine.schemas import Train, TripDemand

PLANNING_DATE = date(2025, 1, 15)


def make_train(train_id, **overrides):
    values = dict(
        train_id=train_id,
        fc_rolling_stock=True,
        fc_signalling=True,
        fc_telecom=True,
        open_job_cards=0,
        predicted_health_score=0.1,
        mileage_km=950.0,
        cleaning_due=False,
        stabling_penalty=0.0,
        branding_shortfall_hours=0.0,
    )
    values.update(overrides)
    return Train(**values)


def make_trips(count, start_hour=6, spacing_minutes=30, duration_minutes=60, distance_km=25.0):
    trips = []
    for i in range(count):
        start = start_hour * 60 + i * spacing_minutes
        end = start + duration_minutes
        trips.append(TripDemand(
            trip_id=f"Trip_{i + 1:03d}",
            departure_time=time(start // 60 % 24, start % 60),
            arrival_time=time(end // 60 % 24, end % 60),
            route="Aluva-Pettah" if i % 2 == 0 else "Pettah-Aluva",
            distance_km=distance_km,
        ))
    return trips


@pytest.fixture
def planning_date():
    return PLANNING_DATE


@pytest.fixture
def sample_fleet():
    return [
        make_train("KM-001", predicted_health_score=0.05, mileage_km=940),
        make_train("KM-002", predicted_health_score=0.2, cleaning_due=True),
        make_train("KM-003", predicted_health_score=0.8, mileage_km=1200),
        make_train("KM-004", fc_telecom=False, branding_shortfall_hours=4),
        make_train("KM-005", open_job_cards=2, stabling_penalty=30),
    ]


@pytest.fixture
def sample_trips():
    return make_trips(8)


@pytest.fixture
def engine_config():
    return EngineConfig(max_solve_time_seconds=10, cleaning_bays=1)


@pytest.fixture
def scheduler(sample_fleet, sample_trips, engine_config):
    loader = InMemorySnapshotLoader()
    loader.add(PLANNING_DATE, sample_fleet, sample_trips)
    return InductionScheduler(loader, engine_config)
