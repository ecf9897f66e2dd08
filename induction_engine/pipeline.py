"""
Planning-run orchestration: weights -> snapshot -> evaluation -> optimization
-> ranking -> audit trail and constraint reports.

Each call is independent; the scheduler holds configuration only, so runs
with different weights can execute concurrently.
"""
from dataclasses import replace
from datetime import date
from typing import Any, Mapping, Optional
import logging
import threading

from .audit import AuditTrailBuilder
from .categories import CATEGORY_TABLE
from .config import EngineConfig
from .evaluator import evaluate_fleet
from .exceptions import DataUnavailable, InvalidWeights, OptimizationCancelled
from .loader import SnapshotLoader
from .metrics import record_rejected_run, record_schedule_run
from .optimizer import InductionOptimizer, OptimizationConfig
from .performance_monitor import PerformanceMonitor
from .ranker import build_induction_ranking
from .reports import build_constraint_reports
from .schemas import ConstraintWeights, ScheduleResult, ScheduleSolution

logger = logging.getLogger(__name__)


class InductionScheduler:
    def __init__(self, loader: SnapshotLoader, config: Optional[EngineConfig] = None,
                 monitor: Optional[PerformanceMonitor] = None):
        self.loader = loader
        self.config = config or EngineConfig()
        self.monitor = monitor

    def generate(
        self,
        planning_date: date,
        constraint_weights: Optional[Mapping[str, Any]] = None,
        fallback_days: int = 0,
        time_limit_seconds: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> ScheduleResult:
        """
        Produce the induction plan for one planning date.

        Raises InvalidWeights or DataUnavailable before any optimization, and
        OptimizationCancelled (with no partial result) once cancel_event is set;
        solver outcomes (including INFEASIBLE and timeouts) come back in the
        result.
        """
        try:
            weights = ConstraintWeights.from_mapping(constraint_weights)
        except InvalidWeights:
            record_rejected_run("invalid_weights")
            raise

        try:
            snapshot = self.loader.load_with_fallback(planning_date, fallback_days)
        except DataUnavailable:
            record_rejected_run("data_unavailable")
            raise

        audit = AuditTrailBuilder()
        audit.generation_started(planning_date, len(snapshot.trains), len(snapshot.trips))
        if snapshot.source_date is not None:
            audit.snapshot_fallback(planning_date, snapshot.source_date)

        targets = self.config.targets
        evaluations = evaluate_fleet(snapshot.trains, planning_date, targets, self.config.evaluation_workers)
        audit.constraints_applied(len(CATEGORY_TABLE), len(evaluations))

        opt_config = OptimizationConfig.from_engine_config(self.config)
        if time_limit_seconds is not None:
            opt_config = replace(opt_config, max_solve_time_seconds=time_limit_seconds)
        if snapshot.cleaning_bays is not None:
            opt_config = replace(opt_config, cleaning_bays=snapshot.cleaning_bays)

        try:
            outcome = InductionOptimizer(opt_config).optimize(evaluations, snapshot.trips, weights, cancel_event)
            if cancel_event is not None and cancel_event.is_set():
                raise OptimizationCancelled("Optimization cancelled by caller")
        except OptimizationCancelled:
            record_rejected_run("cancelled")
            logger.warning(f"Planning run for {planning_date} cancelled; no schedule produced")
            raise

        ranking = build_induction_ranking(evaluations, outcome, weights, targets)
        solution = ScheduleSolution(
            planning_date=planning_date,
            solver_status=outcome.status,
            total_trains_used=outcome.trains_used,
            trips_serviced=len(outcome.assignments),
            trips_unserviced=len(outcome.unserviced_trip_ids),
            unserviced_trip_ids=outcome.unserviced_trip_ids,
            induction_ranking=ranking,
            trip_assignments=outcome.assignments,
            objective_value=outcome.objective_value,
            solve_time_seconds=round(outcome.solve_time, 3),
            timed_out=outcome.timed_out,
            constraint_weights=weights,
        )

        audit.optimization_completed(solution)
        if outcome.timed_out:
            audit.solver_timeout(opt_config.max_solve_time_seconds, outcome.solve_time)
        audit.service_gaps_detected(solution.unserviced_trip_ids)
        audit.induction_list_generated(len(ranking))

        reports = build_constraint_reports(evaluations, outcome.train_states, targets,
                                           weights.readiness_gate_enabled)

        record_schedule_run(solution)
        if self.monitor is not None:
            self.monitor.record_run(len(snapshot.trains), len(snapshot.trips), solution)

        if solution.trips_unserviced:
            logger.warning(f"{solution.trips_unserviced} trips could not be serviced for {planning_date}")

        return ScheduleResult(
            planning_date=planning_date,
            snapshot_date=snapshot.source_date or planning_date,
            solution=solution,
            constraints_applied=reports,
            audit_trail=list(audit.events),
        )


def generate_schedule(loader: SnapshotLoader, planning_date: date,
                      constraint_weights: Optional[Mapping[str, Any]] = None,
                      config: Optional[EngineConfig] = None, **kwargs) -> ScheduleResult:
    return InductionScheduler(loader, config).generate(planning_date, constraint_weights, **kwargs)
