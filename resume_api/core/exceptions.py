"""Custom exception types for domain and API layers."""
from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base app exception."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code

    def payload(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "code": self.code}


class ValidationError(AppError):
    """Invalid request input."""

    status_code = 400
    code = "validation_error"


class Unauthenticated(AppError):
    """Authentication required."""

    status_code = 401
    code = "unauthenticated"


class UnknownPlan(ValidationError):
    """Unknown subscription plan."""

    code = "unknown_plan"


class UnknownFeature(ValidationError):
    """Unknown feature."""

    code = "unknown_feature"


class SubscriptionNotFound(AppError):
    """No subscription found."""

    status_code = 404
    code = "subscription_not_found"


class NoActiveSubscription(AppError):
    """No active subscription."""

    status_code = 402
    code = "no_active_subscription"


class InsufficientCredits(AppError):
    """Insufficient credits."""

    status_code = 402
    code = "insufficient_credits"

    def __init__(self, current_credits: int, required_credits: int) -> None:
        super().__init__("Insufficient credits")
        self.current_credits = current_credits
        self.required_credits = required_credits

    def payload(self) -> dict[str, Any]:
        data = super().payload()
        data["currentCredits"] = self.current_credits
        data["requiredCredits"] = self.required_credits
        return data


class DuplicateSubscription(AppError):
    """User already has an active subscription."""

    status_code = 409
    code = "duplicate_subscription"


class StorageFailure(AppError):
    """Credit storage is temporarily unavailable. Please retry."""

    status_code = 503
    code = "storage_failure"
