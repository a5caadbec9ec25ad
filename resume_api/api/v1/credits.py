from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from resume_api.api.dependencies import get_current_user, get_ledger
from resume_api.core.exceptions import NoActiveSubscription, ValidationError
from resume_api.plans import Feature, credit_cost
from resume_api.schemas.credits import (
    BalanceOut,
    ConsumeRequest,
    ConsumeResponse,
    CreditCheckRequest,
    CreditCheckResponse,
    CreditEventOut,
    CreditHistoryResponse,
    RefreshResponse,
    UsageComparisonOut,
    UsageSummaryOut,
)
from resume_api.services.credit_ledger import CreditEventRecord, CreditLedger

router = APIRouter()


def _resolve_amount(feature: Feature, amount: int | None) -> int:
    """Feature cost unless the caller overrides it; free features cannot be charged."""
    cost = credit_cost(feature)
    if amount is None:
        return cost
    if cost == 0 and amount != 0:
        raise ValidationError(f"{feature.value} is free and cannot be charged credits")
    return amount


@router.get("", response_model=BalanceOut)
def get_credits(
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> BalanceOut:
    """Current plan and balance, refreshing first if the billing period rolled over."""
    ledger.refresh_monthly(user["id"])
    balance = ledger.get_balance(user["id"])
    return BalanceOut(
        plan=balance.plan,
        status=balance.status,
        credits=balance.credits,
        remaining_credits=balance.remaining_credits,
        total_credits=balance.total_credits,
        used_credits=balance.used_credits,
        period_start=balance.period_start,
        period_end=balance.period_end,
    )


@router.post("/check", response_model=CreditCheckResponse)
def check_credits(
    payload: CreditCheckRequest,
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditCheckResponse:
    required = _resolve_amount(payload.feature, payload.amount)
    ledger.refresh_monthly(user["id"])
    allowed = ledger.can_consume(user["id"], payload.feature, required)
    return CreditCheckResponse(allowed=allowed, feature=payload.feature, required_credits=required)


@router.post("/consume", response_model=ConsumeResponse)
def consume_credits(
    payload: ConsumeRequest,
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> ConsumeResponse:
    """Debit credits for one feature use. Failures surface as 402 / 503 via the error handlers."""
    amount = _resolve_amount(payload.feature, payload.amount)
    ledger.refresh_monthly(user["id"])

    if amount == 0:
        # Free features only require an active subscription; nothing is debited or recorded.
        if not ledger.can_consume(user["id"], payload.feature, 0):
            raise NoActiveSubscription("No active subscription")
        balance = ledger.get_balance(user["id"])
        return ConsumeResponse(
            feature=payload.feature,
            consumed=0,
            remaining_credits=balance.remaining_credits,
        )

    result = ledger.consume(user["id"], payload.feature, amount, payload.description)
    return ConsumeResponse(
        success=result.success,
        feature=payload.feature,
        consumed=amount,
        remaining_credits=result.remaining_credits,
    )


@router.get("/history", response_model=CreditHistoryResponse)
def credit_history(
    limit: int = Query(default=50, ge=1, le=500),
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> CreditHistoryResponse:
    events = ledger.list_events(user["id"], limit=limit)
    return CreditHistoryResponse(items=[_event_out(e) for e in events])


def _event_out(event: CreditEventRecord) -> CreditEventOut:
    return CreditEventOut(
        feature=event.feature,
        amount=event.amount,
        remaining_credits=event.remaining_credits,
        description=event.description,
        created_at=event.created_at,
    )


@router.get("/usage", response_model=UsageSummaryOut)
def credit_usage(
    days: int = Query(default=30, ge=1, le=365),
    offset: int = Query(default=0, ge=0, le=365),
    comparison: bool = Query(default=False),
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> UsageSummaryOut:
    """Usage over ``days`` ending ``offset`` days ago, optionally against the window before it."""
    summary = ledger.usage_summary(user["id"], days=days, offset=offset, compare=comparison)
    compared = None
    if summary.comparison is not None:
        compared = UsageComparisonOut(
            previous_total_used=summary.comparison.previous_total_used,
            usage_change=summary.comparison.usage_change,
            usage_change_percent=summary.comparison.usage_change_percent,
        )
    return UsageSummaryOut(
        days=summary.days,
        offset=summary.offset,
        total_used=summary.total_used,
        event_count=summary.event_count,
        by_feature=summary.by_feature,
        by_day=summary.by_day,
        recent_usage=[_event_out(e) for e in summary.recent_usage],
        comparison=compared,
    )


@router.post("/refresh", response_model=RefreshResponse)
def refresh_credits(
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> RefreshResponse:
    return RefreshResponse(success=ledger.refresh_monthly(user["id"]))
