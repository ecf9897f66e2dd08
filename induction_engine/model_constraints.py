from ortools.sat.python import cp_model
from typing import Dict, List, Sequence, Tuple
import logging

logger = logging.getLogger(__name__)

# Overnight depot window used for deep cleaning (minutes from midnight)
CLEANING_WINDOW_START = 23 * 60
CLEANING_WINDOW_MINUTES = 6 * 60


class InductionConstraintBuilder:
    """Builder for the train-to-trip induction constraints"""

    def __init__(self, model: cp_model.CpModel):
        self.model = model
        self.constraint_count = 0

    def add_trip_coverage_constraints(self, train_ids: Sequence[str], trip_ids: Sequence[str],
                                      assign: Dict[Tuple[str, str], cp_model.IntVar],
                                      trip_serviced: Dict[str, cp_model.IntVar]):
        """Each trip is run by at most one train, and is serviced iff one is assigned"""
        for j in trip_ids:
            self.model.Add(sum(assign[(t, j)] for t in train_ids) == trip_serviced[j])
            self.constraint_count += 1

    def add_no_overlap_constraints(self, train_ids: Sequence[str], trip_ids: Sequence[str],
                                   assign: Dict[Tuple[str, str], cp_model.IntVar],
                                   windows: Dict[str, Tuple[int, int]]):
        """A train cannot run two trips whose time windows overlap"""
        for t in train_ids:
            intervals = []
            for j in trip_ids:
                start, end = windows[j]
                intervals.append(self.model.NewOptionalIntervalVar(
                    start, end - start, end, assign[(t, j)], f"interval_{t}_{j}"
                ))
            if len(intervals) > 1:
                self.model.AddNoOverlap(intervals)
                self.constraint_count += 1

    def add_train_usage_constraints(self, train_ids: Sequence[str], trip_ids: Sequence[str],
                                    assign: Dict[Tuple[str, str], cp_model.IntVar],
                                    train_used: Dict[str, cp_model.IntVar]):
        """train_used[t] holds exactly when the train runs at least one trip"""
        for t in train_ids:
            trips_run = sum(assign[(t, j)] for j in trip_ids)
            self.model.Add(trips_run >= 1).OnlyEnforceIf(train_used[t])
            self.model.Add(trips_run == 0).OnlyEnforceIf(train_used[t].Not())
            self.constraint_count += 2

    def add_cleaning_capacity_constraints(self, cleaning_candidates: List[str],
                                          train_used: Dict[str, cp_model.IntVar],
                                          is_cleaned: Dict[str, cp_model.IntVar],
                                          cleaning_bays: int):
        """Cleaned trains stay out of service and share the depot's cleaning bays"""
        intervals = []
        for t in cleaning_candidates:
            self.model.AddImplication(is_cleaned[t], train_used[t].Not())
            intervals.append(self.model.NewOptionalIntervalVar(
                CLEANING_WINDOW_START, CLEANING_WINDOW_MINUTES,
                CLEANING_WINDOW_START + CLEANING_WINDOW_MINUTES,
                is_cleaned[t], f"cleaning_{t}"
            ))
            self.constraint_count += 1

        if intervals:
            self.model.AddCumulative(intervals, [1] * len(intervals), max(0, cleaning_bays))
            self.constraint_count += 1
            logger.debug(f"Cleaning capacity: {len(intervals)} candidates for {cleaning_bays} bays")
