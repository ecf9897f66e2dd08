from typing import Dict, List, Optional, Sequence
import logging

from .categories import CATEGORY_TABLE, ConstraintCategory
from .config import EvaluationTargets
from .evaluator import TrainEvaluation
from .explainer import category_triggered
from .schemas import ConstraintReport, ReportStatus, TrainState

logger = logging.getLogger(__name__)


def build_constraint_reports(evaluations: Sequence[TrainEvaluation], train_states: Dict[str, TrainState],
                             targets: Optional[EvaluationTargets] = None,
                             readiness_gate_enabled: bool = True) -> List[ConstraintReport]:
    """Summarize each constraint category against a solved plan"""
    targets = targets or EvaluationTargets()
    reports = []

    for spec in CATEGORY_TABLE:
        affected = [e for e in evaluations if category_triggered(spec.category, e, targets)]
        in_service = [e.train_id for e in affected if train_states.get(e.train_id) == TrainState.IN_SERVICE]

        if not affected:
            status = ReportStatus.SATISFIED
        elif in_service:
            status = ReportStatus.VIOLATED
        else:
            status = ReportStatus.ACTIVE

        if (status == ReportStatus.VIOLATED and readiness_gate_enabled
                and spec.category == ConstraintCategory.SERVICE_READINESS):
            logger.error(f"Hard-blocked trains in service: {', '.join(in_service)}")

        reports.append(ConstraintReport(
            name=spec.name,
            description=spec.description,
            trains_affected=len(affected),
            status=status,
        ))

    return reports
