"""Subscription plan catalog and per-feature credit costs."""
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

from resume_api.core.exceptions import UnknownFeature, UnknownPlan


class PlanId(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    PRO = "pro"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    UNPAID = "unpaid"
    INCOMPLETE = "incomplete"


class Feature(str, Enum):
    RESUME_GENERATION = "resume_generation"
    JOB_TAILORING = "job_tailoring"
    COVER_LETTER_GENERATION = "cover_letter_generation"
    PERSONAL_BRAND_STRATEGY = "personal_brand_strategy"
    MOCK_INTERVIEW = "mock_interview"
    LINKEDIN_OPTIMIZATION = "linkedin_optimization"
    SALARY_NEGOTIATION = "salary_negotiation"
    AI_SUGGESTIONS = "ai_suggestions"


@dataclass(frozen=True)
class Plan:
    id: PlanId
    name: str
    price: Decimal
    credits: int
    features: tuple[str, ...] = field(default_factory=tuple)

    @property
    def cost_per_credit(self) -> Decimal:
        return (self.price / self.credits).quantize(Decimal("0.0001"))


PLANS: dict[PlanId, Plan] = {
    PlanId.BASIC: Plan(
        id=PlanId.BASIC,
        name="Basic",
        price=Decimal("9.99"),
        credits=10,
        features=(
            "Resume Generation",
            "AI Suggestions",
            "Basic Templates",
            "PDF Export",
            "Email Support",
        ),
    ),
    PlanId.STANDARD: Plan(
        id=PlanId.STANDARD,
        name="Standard",
        price=Decimal("19.99"),
        credits=50,
        features=(
            "Everything in Basic",
            "Job Tailoring",
            "Cover Letter Generation",
            "Premium Templates",
            "ATS Optimization",
            "Priority Support",
        ),
    ),
    PlanId.PRO: Plan(
        id=PlanId.PRO,
        name="Pro",
        price=Decimal("49.99"),
        credits=200,
        features=(
            "Everything in Standard",
            "Personal Brand Strategy",
            "Mock Interview Practice",
            "LinkedIn Optimization",
            "Salary Negotiation Tools",
            "Unlimited Templates",
        ),
    ),
}

# AI suggestions stay free so the resume editor never blocks on credits.
CREDIT_COSTS: dict[Feature, int] = {
    Feature.RESUME_GENERATION: 1,
    Feature.JOB_TAILORING: 1,
    Feature.COVER_LETTER_GENERATION: 1,
    Feature.PERSONAL_BRAND_STRATEGY: 1,
    Feature.MOCK_INTERVIEW: 1,
    Feature.LINKEDIN_OPTIMIZATION: 1,
    Feature.SALARY_NEGOTIATION: 1,
    Feature.AI_SUGGESTIONS: 0,
}


def get_plan(plan_id: str | PlanId) -> Plan:
    try:
        return PLANS[PlanId(plan_id)]
    except ValueError:
        raise UnknownPlan(f"Unknown plan '{plan_id}'") from None


def plan_allotment(plan_id: str | PlanId) -> int:
    return get_plan(plan_id).credits


def get_feature(feature: str | Feature) -> Feature:
    try:
        return Feature(feature)
    except ValueError:
        raise UnknownFeature(f"Unknown feature '{feature}'") from None


def credit_cost(feature: str | Feature) -> int:
    return CREDIT_COSTS[get_feature(feature)]
