from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from resume_api.plans import Feature


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BalanceOut(CamelModel):
    plan: str
    status: str
    credits: int
    remaining_credits: int = Field(alias="remainingCredits")
    total_credits: int = Field(alias="totalCredits")
    used_credits: int = Field(alias="usedCredits")
    period_start: datetime = Field(alias="periodStart")
    period_end: datetime = Field(alias="periodEnd")


class CreditCheckRequest(CamelModel):
    feature: Feature
    amount: Optional[int] = Field(default=None, ge=0)


class CreditCheckResponse(CamelModel):
    allowed: bool
    feature: Feature
    required_credits: int = Field(alias="requiredCredits")


class ConsumeRequest(CamelModel):
    feature: Feature
    amount: Optional[int] = Field(default=None, ge=1)
    description: Optional[str] = Field(default=None, max_length=500)


class ConsumeResponse(CamelModel):
    success: bool = True
    feature: Feature
    consumed: int
    remaining_credits: int = Field(alias="remainingCredits")


class CreditEventOut(CamelModel):
    feature: str
    amount: int
    remaining_credits: int = Field(alias="remainingCredits")
    description: Optional[str] = None
    created_at: datetime = Field(alias="createdAt")


class CreditHistoryResponse(CamelModel):
    items: list[CreditEventOut]


class UsageComparisonOut(CamelModel):
    previous_total_used: int = Field(alias="previousTotalUsed")
    usage_change: int = Field(alias="usageChange")
    usage_change_percent: int = Field(alias="usageChangePercent")


class UsageSummaryOut(CamelModel):
    days: int
    offset: int = 0
    total_used: int = Field(alias="totalUsed")
    event_count: int = Field(alias="eventCount")
    by_feature: dict[str, int] = Field(alias="byFeature")
    by_day: dict[str, int] = Field(alias="byDay")
    recent_usage: list[CreditEventOut] = Field(default_factory=list, alias="recentUsage")
    comparison: Optional[UsageComparisonOut] = None


class RefreshResponse(CamelModel):
    success: bool
