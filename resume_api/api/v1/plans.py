from __future__ import annotations

from fastapi import APIRouter

from resume_api.plans import CREDIT_COSTS, PLANS
from resume_api.schemas.subscription import PlanCatalogResponse, PlanSchema

router = APIRouter()


@router.get("", response_model=PlanCatalogResponse)
async def list_plans() -> PlanCatalogResponse:
    """Public plan catalog with per-feature credit costs."""
    return PlanCatalogResponse(
        plans=[
            PlanSchema(
                id=plan.id,
                name=plan.name,
                price=plan.price,
                credits=plan.credits,
                cost_per_credit=plan.cost_per_credit,
                features=list(plan.features),
            )
            for plan in PLANS.values()
        ],
        credit_costs={feature.value: cost for feature, cost in CREDIT_COSTS.items()},
    )
