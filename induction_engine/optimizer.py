from ortools.sat.python import cp_model
from typing import List, Dict, Optional, Tuple, Sequence
from datetime import datetime
import logging
import threading
from dataclasses import dataclass, field

from .config import EngineConfig
from .evaluator import TrainEvaluation
from .exceptions import OptimizationCancelled
from .model_constraints import InductionConstraintBuilder
from .schemas import ConstraintWeights, SolverStatus, TrainState, TripDemand

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
CANCEL_POLL_SECONDS = 0.1


@dataclass
class OptimizationConfig:
    max_solve_time_seconds: float = 60.0
    num_workers: int = 1
    random_seed: int = 0
    cleaning_bays: int = 2
    min_service_trains: int = 0
    trip_duration_minutes: int = 60
    log_search_progress: bool = False

    @classmethod
    def from_engine_config(cls, config: EngineConfig) -> "OptimizationConfig":
        return cls(
            max_solve_time_seconds=config.max_solve_time_seconds,
            num_workers=config.num_workers,
            random_seed=config.random_seed,
            cleaning_bays=config.cleaning_bays,
            min_service_trains=config.min_service_trains,
            trip_duration_minutes=config.trip_duration_minutes,
        )


@dataclass
class OptimizationOutcome:
    status: SolverStatus
    assignments: Dict[str, str] = field(default_factory=dict)  # trip_id -> train_id
    train_states: Dict[str, TrainState] = field(default_factory=dict)
    train_trips: Dict[str, List[str]] = field(default_factory=dict)
    final_mileage: Dict[str, int] = field(default_factory=dict)
    unserviced_trip_ids: List[str] = field(default_factory=list)
    objective_value: float = 0.0
    solve_time: float = 0.0
    timed_out: bool = False

    @property
    def trains_used(self) -> int:
        return sum(1 for state in self.train_states.values() if state == TrainState.IN_SERVICE)


@dataclass
class _Assignment:
    assignments: Dict[str, str]
    cleaned: List[str]


class _CancellationWatcher:
    """Stops a running CP-SAT search from another thread once the caller cancels"""

    def __init__(self, solver: cp_model.CpSolver, cancel_event: threading.Event):
        self.solver = solver
        self.cancel_event = cancel_event
        self.finished = threading.Event()
        self.thread = threading.Thread(target=self._watch, name="cp-sat-cancel", daemon=True)

    def _watch(self):
        while not self.cancel_event.is_set():
            if self.finished.wait(CANCEL_POLL_SECONDS):
                return
        logger.info("Cancellation requested; stopping search")
        # stop_search is a no-op until Solve has started, so keep asking until it returns
        while not self.finished.is_set():
            self.solver.stop_search()
            self.finished.wait(CANCEL_POLL_SECONDS)

    def __enter__(self):
        self.thread.start()
        return self

    def __exit__(self, *exc_info):
        self.finished.set()
        self.thread.join()


def trip_window(trip: TripDemand, default_duration_minutes: int) -> Tuple[int, int]:
    """Trip start/end in minutes from midnight; trips past midnight end on the next day"""
    start = trip.departure_time.hour * 60 + trip.departure_time.minute
    if trip.arrival_time is None:
        end = start + default_duration_minutes
    else:
        end = trip.arrival_time.hour * 60 + trip.arrival_time.minute
        if end < start:
            end += MINUTES_PER_DAY
    return start, max(end, start + 1)


def objective_tier_bounds(num_trains: int, num_trips: int, max_coefficient: int,
                          num_cleaning_candidates: int) -> Tuple[int, int]:
    """Multipliers that keep each objective tier above everything below it.

    The cleaning tier sums train ranks (at most num_trains each) over the
    cleaning candidates; the quality tier sums one coefficient per trip.
    """
    cleaning_bound = num_cleaning_candidates * num_trains + 1
    quality_bound = num_trips * max_coefficient * cleaning_bound + cleaning_bound
    return cleaning_bound, quality_bound


class InductionOptimizer:
    def __init__(self, config: OptimizationConfig = None):
        self.config = config or OptimizationConfig()
        self.variables = {}

    def is_ready(self) -> bool:
        return True

    def optimize(
        self,
        evaluations: Sequence[TrainEvaluation],
        trips: Sequence[TripDemand],
        weights: ConstraintWeights,
        cancel_event: Optional[threading.Event] = None,
    ) -> OptimizationOutcome:
        """
        Assign trips to eligible trains with CP-SAT: cover as many trips as
        possible, then prefer trains with the best weighted composite score.
        """
        start_time = datetime.now()
        logger.info(f"Starting optimization for {len(evaluations)} trains, {len(trips)} trips")

        if cancel_event is not None and cancel_event.is_set():
            raise OptimizationCancelled("Optimization cancelled before the search started")

        by_id = {e.train_id: e for e in evaluations}
        trip_ids = [trip.trip_id for trip in trips]
        windows = {trip.trip_id: trip_window(trip, self.config.trip_duration_minutes) for trip in trips}

        if weights.readiness_gate_enabled:
            eligible = sorted(e.train_id for e in evaluations if not e.hard_blocked)
        else:
            logger.warning("Service readiness gate disabled; hard-blocked trains are eligible for service")
            eligible = sorted(by_id)
        cleaning_candidates = [t for t in eligible if by_id[t].train.cleaning_due and not by_id[t].hard_blocked]

        bays = max(0, self.config.cleaning_bays)
        if not evaluations or not trips:
            # Nothing to cover: the only decision left is who takes the cleaning bays
            chosen = _Assignment(assignments={}, cleaned=cleaning_candidates[:bays])
            status, timed_out = SolverStatus.OPTIMAL, False
        elif len(eligible) < self.config.min_service_trains:
            logger.warning(f"Only {len(eligible)} service-ready trains; "
                           f"{self.config.min_service_trains} required")
            outcome = self._build_outcome(SolverStatus.INFEASIBLE, _Assignment({}, []), by_id, trips)
            outcome.solve_time = (datetime.now() - start_time).total_seconds()
            return outcome
        elif not eligible:
            logger.warning("No service-ready trains; every trip is unserviced")
            chosen = _Assignment(assignments={}, cleaned=[])
            status, timed_out = SolverStatus.OPTIMAL, False
        else:
            coefficients = self._objective_coefficients(eligible, weights, by_id)
            incumbent = self._greedy_assignment(eligible, trips, windows, coefficients, cleaning_candidates)

            if self.config.max_solve_time_seconds <= 0:
                logger.warning("Zero solve-time limit; returning greedy incumbent")
                chosen, status, timed_out = incumbent, SolverStatus.FEASIBLE, True
            else:
                model = self._create_model(eligible, trip_ids, windows, cleaning_candidates, coefficients)
                self._apply_hint(model, eligible, trip_ids, cleaning_candidates, incumbent)
                chosen, status, timed_out = self._solve_model(model, eligible, trip_ids,
                                                              cleaning_candidates, incumbent, cancel_event)

        outcome = self._build_outcome(status, chosen, by_id, trips)
        outcome.timed_out = timed_out
        outcome.objective_value = round(sum(by_id[t].composite(weights) for t in chosen.assignments.values()), 2)
        outcome.solve_time = (datetime.now() - start_time).total_seconds()

        logger.info(f"Optimization finished: {status.value}, {len(outcome.assignments)}/{len(trips)} trips "
                    f"on {outcome.trains_used} trains in {outcome.solve_time:.2f}s")
        return outcome

    def _objective_coefficients(self, eligible: List[str], weights: ConstraintWeights,
                                by_id: Dict[str, TrainEvaluation]) -> Dict[str, int]:
        # Composite in hundredths, then a train_id tie-break below one hundredth
        n = len(eligible)
        return {
            t: int(round(by_id[t].composite(weights) * 100)) * (n + 1) + (n - idx)
            for idx, t in enumerate(eligible)
        }

    def _create_model(self, eligible: List[str], trip_ids: List[str],
                      windows: Dict[str, Tuple[int, int]], cleaning_candidates: List[str],
                      coefficients: Dict[str, int]) -> cp_model.CpModel:
        """Create the constraint programming model"""
        model = cp_model.CpModel()

        # Decision Variables
        assign = {(t, j): model.NewBoolVar(f"assign_{t}_{j}") for t in eligible for j in trip_ids}
        trip_serviced = {j: model.NewBoolVar(f"serviced_{j}") for j in trip_ids}
        train_used = {t: model.NewBoolVar(f"used_{t}") for t in eligible}
        is_cleaned = {t: model.NewBoolVar(f"cleaned_{t}") for t in cleaning_candidates}
        self.variables = {"assign": assign, "serviced": trip_serviced, "used": train_used, "cleaned": is_cleaned}

        builder = InductionConstraintBuilder(model)
        builder.add_trip_coverage_constraints(eligible, trip_ids, assign, trip_serviced)
        builder.add_no_overlap_constraints(eligible, trip_ids, assign, windows)
        builder.add_train_usage_constraints(eligible, trip_ids, assign, train_used)
        builder.add_cleaning_capacity_constraints(cleaning_candidates, train_used, is_cleaned,
                                                  self.config.cleaning_bays)
        logger.debug(f"Model built with {len(assign)} assignment variables, {builder.constraint_count} constraints")

        self._set_objective(model, eligible, trip_ids, cleaning_candidates, coefficients)
        return model

    def _set_objective(self, model: cp_model.CpModel, eligible: List[str], trip_ids: List[str],
                       cleaning_candidates: List[str], coefficients: Dict[str, int]):
        """Lexicographic objective: trip coverage, then composite quality, then cleaning bays"""
        assign = self.variables["assign"]
        serviced = self.variables["serviced"]
        cleaned = self.variables["cleaned"]
        n = len(eligible)
        rank = {t: n - idx for idx, t in enumerate(eligible)}

        cleaning_bound, quality_bound = objective_tier_bounds(
            n, len(trip_ids), max(coefficients.values()), len(cleaning_candidates))

        objective_terms = []
        # 1. Maximize serviced trips
        objective_terms.append(quality_bound * sum(serviced[j] for j in trip_ids))
        # 2. Put trips on the best composite trains
        for t in eligible:
            for j in trip_ids:
                objective_terms.append(coefficients[t] * cleaning_bound * assign[(t, j)])
        # 3. Fill cleaning bays with due trains that are not in service
        for t in cleaning_candidates:
            objective_terms.append(rank[t] * cleaned[t])

        model.Maximize(sum(objective_terms))

    def _greedy_assignment(self, eligible: List[str], trips: Sequence[TripDemand],
                           windows: Dict[str, Tuple[int, int]], coefficients: Dict[str, int],
                           cleaning_candidates: List[str]) -> _Assignment:
        """Feasible starting point: earliest trips first, best available train each time"""
        preference = sorted(eligible, key=lambda t: -coefficients[t])
        busy: Dict[str, List[Tuple[int, int]]] = {t: [] for t in eligible}
        assignments = {}

        for trip in sorted(trips, key=lambda tr: (windows[tr.trip_id], tr.trip_id)):
            start, end = windows[trip.trip_id]
            for t in preference:
                if all(end <= s or start >= e for s, e in busy[t]):
                    busy[t].append((start, end))
                    assignments[trip.trip_id] = t
                    break

        used = set(assignments.values())
        cleaned = [t for t in cleaning_candidates if t not in used][:max(0, self.config.cleaning_bays)]
        logger.debug(f"Greedy incumbent covers {len(assignments)}/{len(trips)} trips")
        return _Assignment(assignments=assignments, cleaned=cleaned)

    def _apply_hint(self, model: cp_model.CpModel, eligible: List[str], trip_ids: List[str],
                    cleaning_candidates: List[str], incumbent: _Assignment):
        used = set(incumbent.assignments.values())
        for t in eligible:
            model.AddHint(self.variables["used"][t], int(t in used))
            for j in trip_ids:
                model.AddHint(self.variables["assign"][(t, j)], int(incumbent.assignments.get(j) == t))
        for j in trip_ids:
            model.AddHint(self.variables["serviced"][j], int(j in incumbent.assignments))
        for t in cleaning_candidates:
            model.AddHint(self.variables["cleaned"][t], int(t in incumbent.cleaned))

    def _solve_model(self, model: cp_model.CpModel, eligible: List[str], trip_ids: List[str],
                     cleaning_candidates: List[str], incumbent: _Assignment,
                     cancel_event: Optional[threading.Event]) -> Tuple[_Assignment, SolverStatus, bool]:
        """Solve the optimization model"""
        solver = cp_model.CpSolver()

        # Solver parameters
        solver.parameters.max_time_in_seconds = float(self.config.max_solve_time_seconds)
        solver.parameters.num_workers = max(1, self.config.num_workers)
        solver.parameters.random_seed = self.config.random_seed
        solver.parameters.log_search_progress = self.config.log_search_progress
        # SIGINT is handled by the caller through cancel_event
        solver.parameters.catch_sigint_signal = False

        if cancel_event is None:
            status = solver.Solve(model)
        else:
            with _CancellationWatcher(solver, cancel_event):
                status = solver.Solve(model)

        if cancel_event is not None and cancel_event.is_set():
            raise OptimizationCancelled("Optimization cancelled by caller")

        if status == cp_model.OPTIMAL:
            logger.info(f"Optimal solution found. Objective: {solver.ObjectiveValue()}")
            return self._extract_assignment(solver, eligible, trip_ids, cleaning_candidates), SolverStatus.OPTIMAL, False
        elif status == cp_model.FEASIBLE:
            logger.warning(f"Time limit reached; feasible solution found. Objective: {solver.ObjectiveValue()}")
            return self._extract_assignment(solver, eligible, trip_ids, cleaning_candidates), SolverStatus.FEASIBLE, True
        elif status == cp_model.UNKNOWN:
            logger.warning("Time limit reached before the solver reported a solution; using greedy incumbent")
            return incumbent, SolverStatus.FEASIBLE, True
        elif status == cp_model.INFEASIBLE:
            logger.error("Solver proved the induction model infeasible")
            return _Assignment({}, []), SolverStatus.INFEASIBLE, False
        else:
            raise RuntimeError(f"Solver failed with status: {solver.StatusName(status)}")

    def _extract_assignment(self, solver: cp_model.CpSolver, eligible: List[str], trip_ids: List[str],
                            cleaning_candidates: List[str]) -> _Assignment:
        assign = self.variables["assign"]
        assignments = {}
        for j in trip_ids:
            for t in eligible:
                if solver.BooleanValue(assign[(t, j)]):
                    assignments[j] = t
                    break
        cleaned = [t for t in cleaning_candidates if solver.BooleanValue(self.variables["cleaned"][t])]
        return _Assignment(assignments=assignments, cleaned=cleaned)

    def _build_outcome(self, status: SolverStatus, chosen: _Assignment,
                       by_id: Dict[str, TrainEvaluation], trips: Sequence[TripDemand]) -> OptimizationOutcome:
        train_trips: Dict[str, List[str]] = {t: [] for t in by_id}
        distance = {trip.trip_id: trip.distance_km for trip in trips}
        for trip in trips:
            t = chosen.assignments.get(trip.trip_id)
            if t is not None:
                train_trips[t].append(trip.trip_id)

        train_states = {}
        for t, evaluation in by_id.items():
            if train_trips[t]:
                train_states[t] = TrainState.IN_SERVICE
            elif evaluation.hard_blocked:
                train_states[t] = TrainState.MAINTENANCE_HOLD
            elif t in chosen.cleaned:
                train_states[t] = TrainState.CLEANING
            else:
                train_states[t] = TrainState.STANDBY

        final_mileage = {
            t: int(round(evaluation.train.mileage_km + sum(distance[j] for j in train_trips[t])))
            for t, evaluation in by_id.items()
        }

        return OptimizationOutcome(
            status=status,
            assignments=dict(chosen.assignments),
            train_states=train_states,
            train_trips=train_trips,
            final_mileage=final_mileage,
            unserviced_trip_ids=[trip.trip_id for trip in trips if trip.trip_id not in chosen.assignments],
        )
