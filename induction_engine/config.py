from dataclasses import dataclass, field
import os


@dataclass(frozen=True)
class EvaluationTargets:
    """Fixed targets the constraint evaluator scores against"""
    target_mileage_km: float = 950.0
    mileage_deviation_cap_km: float = 250.0
    branding_target_hours: float = 10.0
    cleaning_due_score: int = 65
    job_card_penalty: float = 0.2
    job_card_penalty_cap: float = 0.8
    high_risk_threshold: float = 0.7
    mileage_flag_deviation_km: float = 100.0
    stabling_flag_penalty: float = 20.0


@dataclass
class EngineConfig:
    data_dir: str = "daily_input"
    max_solve_time_seconds: float = 60.0
    num_workers: int = 1
    random_seed: int = 0
    cleaning_bays: int = 2
    min_service_trains: int = 0
    trip_duration_minutes: int = 60
    evaluation_workers: int = 1
    log_level: str = "INFO"
    targets: EvaluationTargets = field(default_factory=EvaluationTargets)

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            data_dir=os.getenv("INDUCTION_DATA_DIR", "daily_input"),
            max_solve_time_seconds=float(os.getenv("SOLVER_TIME_LIMIT_SECONDS", "60")),
            num_workers=int(os.getenv("SOLVER_NUM_WORKERS", "1")),
            random_seed=int(os.getenv("SOLVER_RANDOM_SEED", "0")),
            cleaning_bays=int(os.getenv("CLEANING_BAYS", "2")),
            min_service_trains=int(os.getenv("MIN_SERVICE_TRAINS", "0")),
            trip_duration_minutes=int(os.getenv("TRIP_DURATION_MINUTES", "60")),
            evaluation_workers=int(os.getenv("EVALUATION_WORKERS", "1")),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
        )
