from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing import List, Optional, Dict, Any, Mapping
from datetime import date, datetime, time
from enum import Enum

from .categories import CATEGORY_SPECS, CATEGORY_TABLE, ConstraintCategory, SOFT_CATEGORIES, resolve_weight_key
from .exceptions import InvalidWeights


class TrainState(str, Enum):
    IN_SERVICE = "IN_SERVICE"
    STANDBY = "STANDBY"
    CLEANING = "CLEANING"
    MAINTENANCE_HOLD = "MAINTENANCE_HOLD"

    @property
    def priority(self) -> int:
        return _STATE_PRIORITY[self]


_STATE_PRIORITY = {
    TrainState.IN_SERVICE: 0,
    TrainState.STANDBY: 1,
    TrainState.CLEANING: 2,
    TrainState.MAINTENANCE_HOLD: 3,
}


class SolverStatus(str, Enum):
    OPTIMAL = "OPTIMAL"
    FEASIBLE = "FEASIBLE"
    INFEASIBLE = "INFEASIBLE"


class ReportStatus(str, Enum):
    SATISFIED = "SATISFIED"
    ACTIVE = "ACTIVE"
    VIOLATED = "VIOLATED"


class AuditEventType(str, Enum):
    SCHEDULE_GENERATION_STARTED = "SCHEDULE_GENERATION_STARTED"
    SNAPSHOT_FALLBACK_USED = "SNAPSHOT_FALLBACK_USED"
    CONSTRAINTS_APPLIED = "CONSTRAINTS_APPLIED"
    OPTIMIZATION_COMPLETED = "OPTIMIZATION_COMPLETED"
    SOLVER_TIMEOUT = "SOLVER_TIMEOUT"
    SERVICE_GAPS_DETECTED = "SERVICE_GAPS_DETECTED"
    INDUCTION_LIST_GENERATED = "INDUCTION_LIST_GENERATED"


class Train(BaseModel):
    model_config = ConfigDict(frozen=True)

    train_id: str = Field(min_length=1)
    fc_rolling_stock: bool
    fc_signalling: bool
    fc_telecom: bool
    fc_rolling_stock_expiry: Optional[date] = None
    fc_signalling_expiry: Optional[date] = None
    fc_telecom_expiry: Optional[date] = None
    open_job_cards: int = Field(default=0, ge=0)
    predicted_health_score: float = Field(default=0.0, ge=0.0, le=1.0)  # higher = more failure-prone
    mileage_km: float = Field(default=0.0, ge=0.0)
    cleaning_due: bool = False
    stabling_penalty: float = Field(default=0.0, ge=0.0)
    branding_shortfall_hours: float = Field(default=0.0, ge=0.0)


class TripDemand(BaseModel):
    model_config = ConfigDict(frozen=True)

    trip_id: str = Field(min_length=1)
    departure_time: time
    route: str
    arrival_time: Optional[time] = None  # defaults to departure + configured trip duration
    distance_km: float = Field(default=0.0, ge=0.0)


class FleetSnapshot(BaseModel):
    model_config = ConfigDict(frozen=True)

    planning_date: date
    trains: List[Train] = Field(default_factory=list)
    trips: List[TripDemand] = Field(default_factory=list)
    source_date: Optional[date] = None  # set when re-dated from a prior day's snapshot
    cleaning_bays: Optional[int] = Field(default=None, ge=0)  # depot override of the configured bays

    @model_validator(mode="after")
    def check_unique_ids(self):
        for label, ids in (("train_id", [t.train_id for t in self.trains]),
                           ("trip_id", [t.trip_id for t in self.trips])):
            duplicates = sorted({i for i in ids if ids.count(i) > 1})
            if duplicates:
                raise ValueError(f"duplicate {label} values: {', '.join(duplicates)}")
        return self


def _weight_problems(values: Mapping[ConstraintCategory, float]) -> Dict[str, str]:
    problems = {}
    for spec in CATEGORY_TABLE:
        value = values[spec.category]
        if spec.hard:
            if value not in (0, spec.max_weight):
                problems[spec.category.value] = f"hard constraint weight must be 0 or {spec.max_weight:g}, got {value:g}"
        elif not spec.min_weight <= value <= spec.max_weight:
            problems[spec.category.value] = f"must be within [{spec.min_weight:g}, {spec.max_weight:g}], got {value:g}"
    return problems


class ConstraintWeights(BaseModel):
    model_config = ConfigDict(frozen=True)

    service_readiness: float = CATEGORY_SPECS[ConstraintCategory.SERVICE_READINESS].default_weight
    predictive_health: float = CATEGORY_SPECS[ConstraintCategory.PREDICTIVE_HEALTH].default_weight
    cleaning: float = CATEGORY_SPECS[ConstraintCategory.CLEANING].default_weight
    mileage: float = CATEGORY_SPECS[ConstraintCategory.MILEAGE].default_weight
    stabling: float = CATEGORY_SPECS[ConstraintCategory.STABLING].default_weight
    branding: float = CATEGORY_SPECS[ConstraintCategory.BRANDING].default_weight

    @model_validator(mode="after")
    def check_ranges(self):
        problems = _weight_problems({c: self.weight(c) for c in ConstraintCategory})
        if problems:
            raise ValueError(str(InvalidWeights(problems)))
        return self

    @classmethod
    def from_mapping(cls, overrides: Optional[Mapping[str, Any]] = None) -> "ConstraintWeights":
        """Build weights from caller overrides, rejecting rather than clamping bad values.

        Keys may be snake_case category names or the dashboard's camelCase
        keys; missing categories keep their defaults.
        """
        values = {spec.category: float(spec.default_weight) for spec in CATEGORY_TABLE}
        problems = {}
        for key, raw in (overrides or {}).items():
            try:
                category = resolve_weight_key(key)
            except KeyError:
                problems[key] = "unknown constraint category"
                continue
            if isinstance(raw, bool):
                problems[key] = "must be a number"
                continue
            try:
                values[category] = float(raw)
            except (TypeError, ValueError):
                problems[key] = "must be a number"
        problems.update(_weight_problems(values))
        if problems:
            raise InvalidWeights(problems)
        return cls(**{category.value: value for category, value in values.items()})

    def weight(self, category: ConstraintCategory) -> float:
        return getattr(self, category.value)

    @property
    def readiness_gate_enabled(self) -> bool:
        return self.service_readiness > 0

    @property
    def soft_total(self) -> float:
        return sum(self.weight(c) for c in SOFT_CATEGORIES)


class InductionEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    train_id: str = Field(alias="Train ID")
    status: str = Field(alias="Status")
    final_mileage: int = Field(alias="Final Mileage")
    health_score: float = Field(alias="Health Score")
    rank: int
    state: TrainState
    composite_score: float
    scores: Dict[str, int]
    hard_blocked: bool
    assigned_trips: List[str] = Field(default_factory=list)
    reasons: List[str]


class ScheduleSolution(BaseModel):
    planning_date: date
    solver_status: SolverStatus
    total_trains_used: int
    trips_serviced: int
    trips_unserviced: int
    unserviced_trip_ids: List[str] = Field(default_factory=list)
    induction_ranking: List[InductionEntry] = Field(default_factory=list)
    trip_assignments: Dict[str, str] = Field(default_factory=dict)
    objective_value: float = 0.0
    solve_time_seconds: float = 0.0
    timed_out: bool = False
    constraint_weights: ConstraintWeights = Field(default_factory=ConstraintWeights)


class ConstraintReport(BaseModel):
    name: str
    description: str
    trains_affected: int
    status: ReportStatus


class AuditEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    timestamp: datetime
    event: AuditEventType
    details: str


class ScheduleResult(BaseModel):
    planning_date: date
    snapshot_date: date
    solution: ScheduleSolution
    constraints_applied: List[ConstraintReport]
    audit_trail: List[AuditEvent]


class ScheduleRequest(BaseModel):
    planning_date: date
    constraint_weights: Optional[Dict[str, Any]] = None
    fleet: Optional[List[Train]] = None  # inline snapshot instead of the data directory
    trips: Optional[List[TripDemand]] = None
    time_limit_seconds: Optional[float] = Field(default=None, ge=0)
