import logging
import threading
from typing import Dict, List, Any
from dataclasses import dataclass
from datetime import date, datetime
import json

import psutil

from .schemas import ScheduleSolution

logger = logging.getLogger(__name__)

HISTORY_LIMIT = 100


@dataclass
class RunMetrics:
    """Metrics for one planning run"""
    recorded_at: datetime
    planning_date: date
    num_trains: int = 0
    num_trips: int = 0
    trains_used: int = 0
    trips_serviced: int = 0
    trips_unserviced: int = 0
    solver_status: str = ""
    timed_out: bool = False
    solve_time_seconds: float = 0.0
    objective_value: float = 0.0
    memory_usage_mb: float = 0.0


class PerformanceMonitor:
    """Keep a bounded history of planning runs for the service's /performance view"""

    def __init__(self):
        self.metrics_history: List[RunMetrics] = []
        self._lock = threading.Lock()

    def record_run(self, num_trains: int, num_trips: int, solution: ScheduleSolution) -> RunMetrics:
        metrics = RunMetrics(
            recorded_at=datetime.now(),
            planning_date=solution.planning_date,
            num_trains=num_trains,
            num_trips=num_trips,
            trains_used=solution.total_trains_used,
            trips_serviced=solution.trips_serviced,
            trips_unserviced=solution.trips_unserviced,
            solver_status=solution.solver_status.value,
            timed_out=solution.timed_out,
            solve_time_seconds=solution.solve_time_seconds,
            objective_value=solution.objective_value,
            memory_usage_mb=self._get_memory_usage(),
        )

        with self._lock:
            self.metrics_history.append(metrics)
            # Keep only last 100 runs
            if len(self.metrics_history) > HISTORY_LIMIT:
                self.metrics_history = self.metrics_history[-HISTORY_LIMIT:]

        logger.info(f"Run for {metrics.planning_date} recorded: {metrics.solver_status} "
                    f"in {metrics.solve_time_seconds:.2f}s")
        return metrics

    def get_performance_summary(self) -> Dict[str, Any]:
        """Get performance summary statistics"""
        with self._lock:
            history = list(self.metrics_history)

        if not history:
            return {"message": "No planning runs recorded"}

        recent_runs = history[-10:]  # Last 10 runs
        avg_solve_time = sum(m.solve_time_seconds for m in recent_runs) / len(recent_runs)
        avg_unserviced = sum(m.trips_unserviced for m in recent_runs) / len(recent_runs)
        optimal_rate = sum(1 for m in recent_runs if m.solver_status == "OPTIMAL") / len(recent_runs)
        last = history[-1]

        return {
            "total_runs": len(history),
            "recent_runs": len(recent_runs),
            "average_solve_time_seconds": round(avg_solve_time, 2),
            "average_unserviced_trips": round(avg_unserviced, 1),
            "optimal_rate_percent": round(optimal_rate * 100, 1),
            "timeouts": sum(1 for m in recent_runs if m.timed_out),
            "last_run": {
                "planning_date": last.planning_date.isoformat(),
                "solve_time": last.solve_time_seconds,
                "status": last.solver_status,
                "trains": last.num_trains,
                "trips_serviced": last.trips_serviced,
            }
        }

    def get_detailed_metrics(self) -> List[Dict[str, Any]]:
        """Get detailed metrics for all runs"""
        with self._lock:
            history = list(self.metrics_history)
        return [
            {
                "timestamp": m.recorded_at.isoformat(),
                "planning_date": m.planning_date.isoformat(),
                "num_trains": m.num_trains,
                "num_trips": m.num_trips,
                "trains_used": m.trains_used,
                "trips_serviced": m.trips_serviced,
                "trips_unserviced": m.trips_unserviced,
                "solver_status": m.solver_status,
                "timed_out": m.timed_out,
                "solve_time_seconds": m.solve_time_seconds,
                "objective_value": m.objective_value,
                "memory_usage_mb": m.memory_usage_mb,
            }
            for m in history
        ]

    def export_metrics(self, filename: str):
        """Export metrics to JSON file"""
        metrics_data = {
            "export_timestamp": datetime.now().isoformat(),
            "summary": self.get_performance_summary(),
            "detailed_metrics": self.get_detailed_metrics()
        }

        with open(filename, 'w') as f:
            json.dump(metrics_data, f, indent=2)

        logger.info(f"Metrics exported to {filename}")

    def _get_memory_usage(self) -> float:
        """Get current memory usage in MB"""
        return psutil.Process().memory_info().rss / 1024 / 1024


# Global performance monitor instance
performance_monitor = PerformanceMonitor()
