from prometheus_client import Counter, Histogram, Gauge, generate_latest, CONTENT_TYPE_LATEST
from fastapi import Response

from .schemas import ScheduleSolution

# Metrics
REQUEST_COUNT = Counter('http_requests_total', 'Total HTTP requests', ['method', 'endpoint', 'status'])
REQUEST_DURATION = Histogram('http_request_duration_seconds', 'HTTP request duration')
SCHEDULE_RUNS = Counter('induction_schedule_runs_total', 'Completed planning runs', ['solver_status'])
REJECTED_RUNS = Counter('induction_rejected_runs_total', 'Planning runs rejected before optimization', ['reason'])
SOLVE_DURATION = Histogram('induction_solve_duration_seconds', 'Optimizer wall-clock time per run')
UNSERVICED_TRIPS = Gauge('induction_unserviced_trips', 'Unserviced trips in the most recent plan')
TRAINS_IN_SERVICE = Gauge('induction_trains_in_service', 'Trains assigned to service in the most recent plan')


def record_request_metrics(method: str, endpoint: str, status_code: int, duration: float):
    """Record request metrics"""
    REQUEST_COUNT.labels(method=method, endpoint=endpoint, status=str(status_code)).inc()
    REQUEST_DURATION.observe(duration)


def record_schedule_run(solution: ScheduleSolution):
    SCHEDULE_RUNS.labels(solver_status=solution.solver_status.value).inc()
    SOLVE_DURATION.observe(solution.solve_time_seconds)
    UNSERVICED_TRIPS.set(solution.trips_unserviced)
    TRAINS_IN_SERVICE.set(solution.total_trains_used)


def record_rejected_run(reason: str):
    REJECTED_RUNS.labels(reason=reason).inc()


def get_metrics():
    """Return Prometheus metrics"""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
