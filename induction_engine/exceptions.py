from datetime import date
from typing import Dict, List, Optional


class InductionEngineError(Exception):
    """Base class for errors that reject a planning run before optimization"""


class DataUnavailable(InductionEngineError):
    """No usable fleet snapshot exists for the requested planning date"""

    def __init__(self, planning_date: date, message: Optional[str] = None):
        self.planning_date = planning_date
        super().__init__(message or f"No fleet snapshot available for {planning_date.isoformat()}")


class SnapshotValidationError(DataUnavailable):
    """A snapshot file exists but its content cannot be used"""

    def __init__(self, planning_date: date, errors: List[str]):
        self.errors = errors
        joined = "; ".join(errors)
        super().__init__(planning_date, f"Invalid fleet snapshot for {planning_date.isoformat()}: {joined}")


class InvalidWeights(InductionEngineError):
    """One or more constraint weights fall outside their declared range"""

    def __init__(self, problems: Dict[str, str]):
        self.problems = problems
        joined = ", ".join(f"{key}: {problem}" for key, problem in problems.items())
        super().__init__(f"Invalid constraint weights ({joined})")


class OptimizationCancelled(InductionEngineError):
    """The caller aborted the optimizer search; no result is produced"""
