from dataclasses import dataclass
from typing import List, Optional

from .categories import ConstraintCategory, explanation_order
from .config import EvaluationTargets
from .evaluator import TrainEvaluation, mileage_deviation
from .schemas import TrainState

NO_ISSUES = "No issues detected"


@dataclass(frozen=True)
class Reason:
    category: ConstraintCategory
    message: str


def category_triggered(category: ConstraintCategory, evaluation: TrainEvaluation,
                       targets: EvaluationTargets) -> bool:
    """Whether a train trips the flag for one constraint category"""
    train = evaluation.train
    if category == ConstraintCategory.SERVICE_READINESS:
        return evaluation.hard_blocked
    if category == ConstraintCategory.PREDICTIVE_HEALTH:
        return train.predicted_health_score > targets.high_risk_threshold
    if category == ConstraintCategory.CLEANING:
        return train.cleaning_due
    if category == ConstraintCategory.MILEAGE:
        return mileage_deviation(train, targets) > targets.mileage_flag_deviation_km
    if category == ConstraintCategory.STABLING:
        return train.stabling_penalty > targets.stabling_flag_penalty
    if category == ConstraintCategory.BRANDING:
        return train.branding_shortfall_hours > 0
    raise ValueError(f"Unknown category: {category}")


def _messages_for(category: ConstraintCategory, evaluation: TrainEvaluation,
                  targets: EvaluationTargets) -> List[str]:
    train = evaluation.train
    if category == ConstraintCategory.SERVICE_READINESS:
        messages = []
        for block in evaluation.block_reasons:
            if block.kind == "missing_certificate":
                messages.append(f"{block.subject} FC missing")
            elif block.kind == "expired_certificate":
                messages.append(f"{block.subject} FC expired")
            else:
                messages.append(f"{block.count} open job-card(s)")
        return messages
    if category == ConstraintCategory.PREDICTIVE_HEALTH:
        return [f"High failure risk ({train.predicted_health_score * 100:.1f}%)"]
    if category == ConstraintCategory.CLEANING:
        return ["Deep-clean due tonight"]
    if category == ConstraintCategory.MILEAGE:
        return [f"Mileage deviation {mileage_deviation(train, targets):.0f} km"]
    if category == ConstraintCategory.STABLING:
        return ["Unfavourable stabling position"]
    return [f"{train.branding_shortfall_hours:g}h branding shortfall"]


def explain(evaluation: TrainEvaluation, targets: Optional[EvaluationTargets] = None) -> List[Reason]:
    targets = targets or EvaluationTargets()
    reasons = []
    for category in explanation_order():
        if category_triggered(category, evaluation, targets):
            reasons.extend(Reason(category, m) for m in _messages_for(category, evaluation, targets))
    return reasons


def reason_messages(evaluation: TrainEvaluation, targets: Optional[EvaluationTargets] = None) -> List[str]:
    messages = [reason.message for reason in explain(evaluation, targets)]
    return messages or [NO_ISSUES]


def status_text(state: TrainState, evaluation: TrainEvaluation,
                targets: Optional[EvaluationTargets] = None) -> str:
    """Display status for the ranking's Status column"""
    targets = targets or EvaluationTargets()
    if state == TrainState.IN_SERVICE:
        return "IN SERVICE"
    if state == TrainState.CLEANING:
        return "HELD FOR CLEANING"
    if state == TrainState.MAINTENANCE_HOLD:
        kinds = {block.kind: block for block in evaluation.block_reasons}
        if "open_job_cards" in kinds:
            return "HELD FOR MAINTENANCE (Job Card Open)"
        if "expired_certificate" in kinds:
            return f"HELD FOR MAINTENANCE ({kinds['expired_certificate'].subject} Cert Expired)"
        if "missing_certificate" in kinds:
            return f"HELD FOR MAINTENANCE ({kinds['missing_certificate'].subject} FC Missing)"
        return "HELD FOR MAINTENANCE"

    if category_triggered(ConstraintCategory.PREDICTIVE_HEALTH, evaluation, targets):
        return "STANDBY (High Failure Risk)"
    if category_triggered(ConstraintCategory.MILEAGE, evaluation, targets):
        return "STANDBY (For Mileage Balancing)"
    return "STANDBY"
