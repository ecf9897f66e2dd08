from datetime import date, datetime, timezone
from typing import Callable, List, Optional, Tuple
import logging

from .schemas import AuditEvent, AuditEventType, ScheduleSolution

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditTrailBuilder:
    """Append-only record of the pipeline stages of one planning run"""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._clock = clock or _utcnow
        self._events: List[AuditEvent] = []

    @property
    def events(self) -> Tuple[AuditEvent, ...]:
        return tuple(self._events)

    def append(self, event: AuditEventType, details: str) -> AuditEvent:
        record = AuditEvent(timestamp=self._clock(), event=event, details=details)
        self._events.append(record)
        logger.debug(f"Audit {event.value}: {details}")
        return record

    def generation_started(self, planning_date: date, fleet_size: int, trip_count: int) -> AuditEvent:
        return self.append(
            AuditEventType.SCHEDULE_GENERATION_STARTED,
            f"Planning date: {planning_date.isoformat()}, Fleet size: {fleet_size}, Trips: {trip_count}",
        )

    def snapshot_fallback(self, planning_date: date, source_date: date) -> AuditEvent:
        return self.append(
            AuditEventType.SNAPSHOT_FALLBACK_USED,
            f"No snapshot for {planning_date.isoformat()}; using snapshot from {source_date.isoformat()}",
        )

    def constraints_applied(self, category_count: int, train_count: int) -> AuditEvent:
        return self.append(
            AuditEventType.CONSTRAINTS_APPLIED,
            f"{category_count} constraint types evaluated for {train_count} trains",
        )

    def optimization_completed(self, solution: ScheduleSolution) -> AuditEvent:
        return self.append(
            AuditEventType.OPTIMIZATION_COMPLETED,
            f"Status: {solution.solver_status.value}, Trains used: {solution.total_trains_used}, "
            f"Trips serviced: {solution.trips_serviced}",
        )

    def solver_timeout(self, time_limit_seconds: float, solve_time_seconds: float) -> AuditEvent:
        return self.append(
            AuditEventType.SOLVER_TIMEOUT,
            f"Search stopped at the {time_limit_seconds:g}s limit after {solve_time_seconds:.2f}s; "
            f"best feasible plan returned",
        )

    def service_gaps_detected(self, unserviced_trip_ids: List[str]) -> Optional[AuditEvent]:
        if not unserviced_trip_ids:
            return None
        return self.append(
            AuditEventType.SERVICE_GAPS_DETECTED,
            f"{len(unserviced_trip_ids)} trips could not be serviced: {', '.join(unserviced_trip_ids)}",
        )

    def induction_list_generated(self, count: int) -> AuditEvent:
        return self.append(
            AuditEventType.INDUCTION_LIST_GENERATED,
            f"Ranked list of {count} trains with explanations",
        )
