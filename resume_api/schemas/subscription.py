from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from resume_api.plans import PlanId


class SubscriptionSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    plan: str
    status: str
    credits: int
    provider_subscription_id: Optional[str] = Field(default=None, alias="providerSubscriptionId")
    provider_customer_id: Optional[str] = Field(default=None, alias="providerCustomerId")
    current_period_start: datetime = Field(alias="currentPeriodStart")
    current_period_end: datetime = Field(alias="currentPeriodEnd")
    canceled_at: Optional[datetime] = Field(default=None, alias="canceledAt")


class SubscriptionResponse(BaseModel):
    subscription: SubscriptionSchema


class CreateSubscriptionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plan: PlanId
    provider_subscription_id: Optional[str] = Field(default=None, alias="providerSubscriptionId")
    provider_customer_id: Optional[str] = Field(default=None, alias="providerCustomerId")


class ChangePlanRequest(BaseModel):
    plan: PlanId


class PlanSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: PlanId
    name: str
    price: Decimal
    credits: int
    cost_per_credit: Decimal = Field(alias="costPerCredit")
    features: list[str]


class PlanCatalogResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    plans: list[PlanSchema]
    credit_costs: dict[str, int] = Field(alias="creditCosts")


class SubscriptionEventSchema(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    event_type: str = Field(alias="eventType")
    plan: str
    status: str
    credits_before: Optional[int] = Field(default=None, alias="creditsBefore")
    credits_after: int = Field(alias="creditsAfter")
    details: dict = Field(default_factory=dict)
    created_at: datetime = Field(alias="createdAt")


class SubscriptionEventsResponse(BaseModel):
    items: list[SubscriptionEventSchema]
