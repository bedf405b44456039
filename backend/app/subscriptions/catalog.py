"""Static catalog definitions for premium plans."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Dict

from .exceptions import ValidationError
from .models import PlanId, PremiumFeatures


@dataclass(frozen=True)
class PlanDefinition:
    """Describes a premium plan and the validity window it grants."""

    key: PlanId
    display_name: str
    days: int
    price: int
    currency: str = "NPR"
    features: PremiumFeatures = PremiumFeatures()

    @property
    def duration(self) -> timedelta:
        return timedelta(days=self.days)


PLAN_CATALOG: Dict[PlanId, PlanDefinition] = {
    PlanId.MONTHLY: PlanDefinition(
        key=PlanId.MONTHLY,
        display_name="Monthly Premium",
        days=30,
        price=100,
    ),
    PlanId.YEARLY: PlanDefinition(
        key=PlanId.YEARLY,
        display_name="Yearly Premium",
        days=365,
        price=1000,
    ),
}


def get_plan_definition(plan_id: object) -> PlanDefinition:
    """Return a plan definition, raising :class:`ValidationError` if unsupported."""

    try:
        key = plan_id if isinstance(plan_id, PlanId) else PlanId(str(plan_id).strip().lower())
        return PLAN_CATALOG[key]
    except (KeyError, ValueError) as exc:
        raise ValidationError(
            message=f"Unknown plan: {plan_id}",
            code="unknown_plan",
            detail={"plan_id": str(plan_id), "supported": [plan.value for plan in PLAN_CATALOG]},
        ) from exc


def list_plans() -> list[PlanDefinition]:
    return list(PLAN_CATALOG.values())


__all__ = ["PLAN_CATALOG", "PlanDefinition", "get_plan_definition", "list_plans"]
