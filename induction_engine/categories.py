from dataclasses import dataclass
from enum import Enum
from typing import Dict, List, Tuple


class ConstraintCategory(Enum):
    SERVICE_READINESS = "service_readiness"
    PREDICTIVE_HEALTH = "predictive_health"
    CLEANING = "cleaning"
    MILEAGE = "mileage"
    STABLING = "stabling"
    BRANDING = "branding"


@dataclass(frozen=True)
class CategorySpec:
    category: ConstraintCategory
    name: str
    description: str
    hard: bool
    default_weight: float
    min_weight: float
    max_weight: float
    ui_key: str


# Order is explanation priority. The optimizer objective, the explainer and
# the constraint reports all read this table.
CATEGORY_TABLE: Tuple[CategorySpec, ...] = (
    CategorySpec(
        category=ConstraintCategory.SERVICE_READINESS,
        name="Service Readiness",
        description="Fitness Certificates and Job Card validation",
        hard=True,
        default_weight=10000,
        min_weight=0,
        max_weight=10000,
        ui_key="serviceReadiness",
    ),
    CategorySpec(
        category=ConstraintCategory.PREDICTIVE_HEALTH,
        name="Predictive Health",
        description="ML-based failure risk assessment",
        hard=False,
        default_weight=5000,
        min_weight=0,
        max_weight=10000,
        ui_key="predictiveHealth",
    ),
    CategorySpec(
        category=ConstraintCategory.CLEANING,
        name="Cleaning & Detailing",
        description="Deep cleaning schedule management",
        hard=False,
        default_weight=500,
        min_weight=0,
        max_weight=1000,
        ui_key="cleaning",
    ),
    CategorySpec(
        category=ConstraintCategory.MILEAGE,
        name="Mileage Balancing",
        description="Fleet wear equalization",
        hard=False,
        default_weight=1,
        min_weight=0,
        max_weight=50,
        ui_key="mileage",
    ),
    CategorySpec(
        category=ConstraintCategory.STABLING,
        name="Stabling Optimization",
        description="Minimize shunting operations",
        hard=False,
        default_weight=300,
        min_weight=0,
        max_weight=1000,
        ui_key="stabling",
    ),
    CategorySpec(
        category=ConstraintCategory.BRANDING,
        name="Branding Exposure",
        description="Advertiser SLA compliance",
        hard=False,
        default_weight=20,
        min_weight=0,
        max_weight=100,
        ui_key="branding",
    ),
)

CATEGORY_SPECS: Dict[ConstraintCategory, CategorySpec] = {spec.category: spec for spec in CATEGORY_TABLE}

SOFT_CATEGORIES: List[ConstraintCategory] = [spec.category for spec in CATEGORY_TABLE if not spec.hard]


def explanation_order() -> List[ConstraintCategory]:
    return [spec.category for spec in CATEGORY_TABLE]


def default_weights() -> Dict[str, float]:
    return {spec.category.value: spec.default_weight for spec in CATEGORY_TABLE}


def resolve_weight_key(key: str) -> ConstraintCategory:
    """Map a snake_case or UI camelCase key to its category.

    Raises KeyError for names that are not in the table.
    """
    for spec in CATEGORY_TABLE:
        if key == spec.category.value or key == spec.ui_key:
            return spec.category
    raise KeyError(key)
