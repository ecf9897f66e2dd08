from typing import List, Optional, Sequence
import logging

from .config import EvaluationTargets
from .evaluator import TrainEvaluation
from .explainer import reason_messages, status_text
from .optimizer import OptimizationOutcome
from .schemas import ConstraintWeights, InductionEntry

logger = logging.getLogger(__name__)


def ranking_key(state_priority: int, composite: float, train_id: str):
    return (state_priority, -composite, train_id)


def build_induction_ranking(evaluations: Sequence[TrainEvaluation], outcome: OptimizationOutcome,
                            weights: ConstraintWeights,
                            targets: Optional[EvaluationTargets] = None) -> List[InductionEntry]:
    """
    Order every train (blocked ones included) into the induction list.

    Sort keys: assignment state (in service, standby, cleaning, maintenance
    hold), then composite score descending, then train_id ascending.
    """
    targets = targets or EvaluationTargets()

    rows = []
    for evaluation in evaluations:
        state = outcome.train_states[evaluation.train_id]
        composite = evaluation.composite(weights)
        rows.append((ranking_key(state.priority, composite, evaluation.train_id), evaluation, state, composite))
    rows.sort(key=lambda row: row[0])

    ranking = []
    for position, (_, evaluation, state, composite) in enumerate(rows, start=1):
        train = evaluation.train
        ranking.append(InductionEntry(
            train_id=train.train_id,
            status=status_text(state, evaluation, targets),
            final_mileage=outcome.final_mileage[train.train_id],
            health_score=train.predicted_health_score,
            rank=position,
            state=state,
            composite_score=round(composite, 2),
            scores=evaluation.scores_by_name(),
            hard_blocked=evaluation.hard_blocked,
            assigned_trips=list(outcome.train_trips.get(train.train_id, [])),
            reasons=reason_messages(evaluation, targets),
        ))

    logger.info(f"Ranked {len(ranking)} trains")
    return ranking
