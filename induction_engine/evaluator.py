from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence
import logging

from .categories import ConstraintCategory, SOFT_CATEGORIES
from .config import EvaluationTargets
from .schemas import ConstraintWeights, Train

logger = logging.getLogger(__name__)

CERTIFICATES = (
    ("fc_rolling_stock", "Rolling-Stock"),
    ("fc_signalling", "Signalling"),
    ("fc_telecom", "Telecom"),
)


@dataclass(frozen=True)
class BlockReason:
    kind: str  # "missing_certificate" | "expired_certificate" | "open_job_cards"
    subject: str
    count: int = 0


@dataclass(frozen=True)
class TrainEvaluation:
    train: Train
    hard_blocked: bool
    block_reasons: List[BlockReason] = field(default_factory=list)
    scores: Dict[ConstraintCategory, int] = field(default_factory=dict)

    @property
    def train_id(self) -> str:
        return self.train.train_id

    def composite(self, weights: ConstraintWeights) -> float:
        """Weighted mean of the soft scores; readiness is the hard gate, not a term"""
        total = weights.soft_total
        if total <= 0:
            return 0.0
        return sum(weights.weight(c) * self.scores[c] for c in SOFT_CATEGORIES) / total

    def scores_by_name(self) -> Dict[str, int]:
        return {category.value: score for category, score in self.scores.items()}


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def expired_certificates(train: Train, planning_date: Optional[date]) -> List[str]:
    if planning_date is None:
        return []
    expired = []
    for attr, label in CERTIFICATES:
        expiry = getattr(train, f"{attr}_expiry")
        if expiry is not None and expiry < planning_date:
            expired.append(label)
    return expired


def score_readiness(train: Train, targets: EvaluationTargets) -> int:
    fc = sum(1 for attr, _ in CERTIFICATES if getattr(train, attr)) / len(CERTIFICATES)
    job_penalty = min(train.open_job_cards * targets.job_card_penalty, targets.job_card_penalty_cap)
    return int(clamp(round((fc - job_penalty) * 100)))


def score_predictive_health(train: Train) -> int:
    return int(round((1 - train.predicted_health_score) * 100))


def score_cleaning(train: Train, targets: EvaluationTargets) -> int:
    return targets.cleaning_due_score if train.cleaning_due else 100


def score_stabling(train: Train) -> int:
    return int(clamp(round(100 - train.stabling_penalty)))


def score_branding(train: Train, targets: EvaluationTargets) -> int:
    shortfall = min(train.branding_shortfall_hours, targets.branding_target_hours)
    return int(clamp(round((1 - shortfall / targets.branding_target_hours) * 100)))


def mileage_deviation(train: Train, targets: EvaluationTargets) -> float:
    return abs(train.mileage_km - targets.target_mileage_km)


def score_mileage(train: Train, targets: EvaluationTargets) -> int:
    dev = min(mileage_deviation(train, targets), targets.mileage_deviation_cap_km)
    return int(clamp(round((1 - dev / targets.mileage_deviation_cap_km) * 100)))


def evaluate_train(train: Train, planning_date: Optional[date] = None,
                   targets: Optional[EvaluationTargets] = None) -> TrainEvaluation:
    targets = targets or EvaluationTargets()

    block_reasons = []
    for attr, label in CERTIFICATES:
        if not getattr(train, attr):
            block_reasons.append(BlockReason("missing_certificate", label))
    for label in expired_certificates(train, planning_date):
        block_reasons.append(BlockReason("expired_certificate", label))
    if train.open_job_cards > 0:
        block_reasons.append(BlockReason("open_job_cards", "Job Card", train.open_job_cards))

    scores = {
        ConstraintCategory.SERVICE_READINESS: score_readiness(train, targets),
        ConstraintCategory.PREDICTIVE_HEALTH: score_predictive_health(train),
        ConstraintCategory.CLEANING: score_cleaning(train, targets),
        ConstraintCategory.MILEAGE: score_mileage(train, targets),
        ConstraintCategory.STABLING: score_stabling(train),
        ConstraintCategory.BRANDING: score_branding(train, targets),
    }

    return TrainEvaluation(
        train=train,
        hard_blocked=bool(block_reasons),
        block_reasons=block_reasons,
        scores=scores,
    )


def evaluate_fleet(trains: Sequence[Train], planning_date: Optional[date] = None,
                   targets: Optional[EvaluationTargets] = None,
                   max_workers: int = 1) -> List[TrainEvaluation]:
    """Evaluate every train; results keep input order regardless of workers"""
    targets = targets or EvaluationTargets()
    if max_workers > 1 and len(trains) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            evaluations = list(pool.map(lambda t: evaluate_train(t, planning_date, targets), trains))
    else:
        evaluations = [evaluate_train(t, planning_date, targets) for t in trains]

    blocked = sum(1 for e in evaluations if e.hard_blocked)
    logger.info(f"Evaluated {len(evaluations)} trains: {blocked} hard-blocked")
    return evaluations
