"""Shared API dependencies."""
from functools import lru_cache

from resume_api.config import settings
from resume_api.core.security import get_current_user
from resume_api.database import SessionLocal
from resume_api.services.credit_ledger import CreditLedger


@lru_cache
def get_ledger() -> CreditLedger:
    return CreditLedger(SessionLocal, billing_period_days=settings.billing_period_days)


__all__ = ["get_current_user", "get_ledger"]
