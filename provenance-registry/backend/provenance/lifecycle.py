# provenance/lifecycle.py
"""
Product lifecycle.

    CREATED -> INSPECTOR_ASSIGNED -> APPROVED -> DISTRIBUTOR_ASSIGNED
            -> RETAILER_ASSIGNED -> SOLD

Approval is optional before distribution and may be repeated; the inspector
can certify and approve at any stage once assigned, even after sale, without
changing the stage. Reassigning the inspector never moves the stage back.
"""
from enum import Enum
from typing import Dict, FrozenSet, Optional

from .errors import InvalidState
from .models import ProductStage


class Step(str, Enum):
    ASSIGN_INSPECTOR = "assign_inspector"
    ADD_CERTIFICATION = "add_certification"
    APPROVE_QUALITY = "approve_quality"
    ASSIGN_DISTRIBUTOR = "assign_distributor"
    ASSIGN_RETAILER = "assign_retailer"
    SELL = "sell"


STAGE_ORDER = [
    ProductStage.CREATED,
    ProductStage.INSPECTOR_ASSIGNED,
    ProductStage.APPROVED,
    ProductStage.DISTRIBUTOR_ASSIGNED,
    ProductStage.RETAILER_ASSIGNED,
    ProductStage.SOLD,
]

_INSPECTED = frozenset({
    ProductStage.INSPECTOR_ASSIGNED,
    ProductStage.APPROVED,
    ProductStage.DISTRIBUTOR_ASSIGNED,
    ProductStage.RETAILER_ASSIGNED,
    ProductStage.SOLD,
})

ALLOWED_FROM: Dict[Step, FrozenSet[ProductStage]] = {
    Step.ASSIGN_INSPECTOR: frozenset(STAGE_ORDER) - {ProductStage.SOLD},
    Step.ADD_CERTIFICATION: _INSPECTED,
    Step.APPROVE_QUALITY: _INSPECTED,
    Step.ASSIGN_DISTRIBUTOR: frozenset({ProductStage.INSPECTOR_ASSIGNED, ProductStage.APPROVED}),
    Step.ASSIGN_RETAILER: frozenset({ProductStage.DISTRIBUTOR_ASSIGNED}),
    Step.SELL: frozenset({ProductStage.RETAILER_ASSIGNED}),
}

TARGET: Dict[Step, Optional[ProductStage]] = {
    Step.ASSIGN_INSPECTOR: ProductStage.INSPECTOR_ASSIGNED,
    Step.ADD_CERTIFICATION: None,
    Step.APPROVE_QUALITY: ProductStage.APPROVED,
    Step.ASSIGN_DISTRIBUTOR: ProductStage.DISTRIBUTOR_ASSIGNED,
    Step.ASSIGN_RETAILER: ProductStage.RETAILER_ASSIGNED,
    Step.SELL: ProductStage.SOLD,
}


def stage_rank(stage: ProductStage) -> int:
    return STAGE_ORDER.index(ProductStage(stage))


def can_apply(stage: ProductStage, step: Step) -> bool:
    return ProductStage(stage) in ALLOWED_FROM[step]


def next_stage(stage: ProductStage, step: Step) -> ProductStage:
    """
    Return the stage a product reaches after `step`, never moving backward.
    Raises InvalidState when `step` is not allowed from `stage`.
    """
    current = ProductStage(stage)
    if not can_apply(current, step):
        raise InvalidState(f"cannot {step.value.replace('_', ' ')} while product is {current.value}")
    target = TARGET[step]
    if target is None or stage_rank(target) < stage_rank(current):
        return current
    return target
