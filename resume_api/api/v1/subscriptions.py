from __future__ import annotations

from dataclasses import asdict

from fastapi import APIRouter, Depends, Query, status

from resume_api.api.dependencies import get_current_user, get_ledger
from resume_api.schemas.subscription import (
    ChangePlanRequest,
    CreateSubscriptionRequest,
    SubscriptionEventSchema,
    SubscriptionEventsResponse,
    SubscriptionResponse,
    SubscriptionSchema,
)
from resume_api.services.credit_ledger import CreditLedger, SubscriptionRecord

router = APIRouter()


def _response(record: SubscriptionRecord) -> SubscriptionResponse:
    return SubscriptionResponse(subscription=SubscriptionSchema(**asdict(record)))


@router.get("/me", response_model=SubscriptionResponse)
def get_my_subscription(
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> SubscriptionResponse:
    return _response(ledger.get_subscription(user["id"]))


@router.post("", response_model=SubscriptionResponse, status_code=status.HTTP_201_CREATED)
def create_subscription(
    payload: CreateSubscriptionRequest,
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> SubscriptionResponse:
    """Provision the caller's ledger row after a successful checkout."""
    record = ledger.create_subscription(
        user["id"],
        payload.plan.value,
        provider_subscription_id=payload.provider_subscription_id,
        provider_customer_id=payload.provider_customer_id,
    )
    return _response(record)


@router.post("/cancel", response_model=SubscriptionResponse)
def cancel_subscription(
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> SubscriptionResponse:
    return _response(ledger.cancel_subscription(user["id"]))


@router.put("/plan", response_model=SubscriptionResponse)
def change_plan(
    payload: ChangePlanRequest,
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> SubscriptionResponse:
    return _response(ledger.change_plan(user["id"], payload.plan.value))


@router.get("/events", response_model=SubscriptionEventsResponse)
def subscription_events(
    limit: int = Query(default=50, ge=1, le=500),
    user: dict = Depends(get_current_user),
    ledger: CreditLedger = Depends(get_ledger),
) -> SubscriptionEventsResponse:
    """Lifecycle audit trail for the caller's subscription, newest first."""
    events = ledger.list_subscription_events(user["id"], limit=limit)
    return SubscriptionEventsResponse(
        items=[SubscriptionEventSchema(**asdict(e)) for e in events]
    )
