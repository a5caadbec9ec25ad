"""
Credit ledger: per-user plan, credit balance, consumption and monthly refresh.

Every balance mutation is a single conditional UPDATE against the database so
that concurrent requests, from one process or many, cannot double-spend or
double-grant credits.
"""
from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Iterator

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from resume_api.core.exceptions import (
    DuplicateSubscription,
    InsufficientCredits,
    NoActiveSubscription,
    StorageFailure,
    SubscriptionNotFound,
    ValidationError,
)
from resume_api.models import CreditEvent, Subscription, SubscriptionEvent
from resume_api.plans import Feature, SubscriptionStatus, get_feature, get_plan, plan_allotment

logger = logging.getLogger(__name__)

ACTIVE = SubscriptionStatus.ACTIVE.value
MAX_CONSUME_ATTEMPTS = 3
MAX_HISTORY_LIMIT = 500
RECENT_USAGE_LIMIT = 20


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class SubscriptionRecord:
    user_id: str
    plan: str
    status: str
    credits: int
    current_period_start: datetime
    current_period_end: datetime
    provider_subscription_id: str | None = None
    provider_customer_id: str | None = None
    canceled_at: datetime | None = None

    @classmethod
    def from_row(cls, row: Subscription) -> "SubscriptionRecord":
        return cls(
            user_id=row.user_id,
            plan=row.plan,
            status=row.status,
            credits=row.credits,
            current_period_start=as_utc(row.current_period_start),
            current_period_end=as_utc(row.current_period_end),
            provider_subscription_id=row.provider_subscription_id,
            provider_customer_id=row.provider_customer_id,
            canceled_at=as_utc(row.canceled_at),
        )


@dataclass(frozen=True)
class Balance:
    plan: str
    status: str
    credits: int
    total_credits: int
    period_start: datetime
    period_end: datetime

    @property
    def remaining_credits(self) -> int:
        return self.credits

    @property
    def used_credits(self) -> int:
        return max(0, self.total_credits - self.credits)


@dataclass(frozen=True)
class ConsumeResult:
    success: bool
    remaining_credits: int


@dataclass(frozen=True)
class CreditEventRecord:
    feature: str
    amount: int
    remaining_credits: int
    created_at: datetime
    description: str | None = None


@dataclass(frozen=True)
class SubscriptionEventRecord:
    event_type: str
    plan: str
    status: str
    credits_before: int | None
    credits_after: int
    created_at: datetime
    details: dict = field(default_factory=dict)


@dataclass(frozen=True)
class UsageComparison:
    previous_total_used: int
    usage_change: int
    usage_change_percent: int


@dataclass
class UsageSummary:
    days: int
    offset: int = 0
    total_used: int = 0
    event_count: int = 0
    by_feature: dict[str, int] = field(default_factory=dict)
    by_day: dict[str, int] = field(default_factory=dict)
    recent_usage: list[CreditEventRecord] = field(default_factory=list)
    comparison: UsageComparison | None = None


class CreditLedger:
    """Credit accounting for subscription plans, backed by a relational store."""

    def __init__(
        self,
        session_factory: sessionmaker,
        billing_period_days: int = 30,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session_factory = session_factory
        self.billing_period = timedelta(days=billing_period_days)
        self._clock = clock

    @contextmanager
    def _session(self) -> Iterator[Session]:
        db = self._session_factory()
        try:
            yield db
        except SQLAlchemyError as exc:
            db.rollback()
            logger.warning("Credit storage failure: %s", exc)
            raise StorageFailure() from exc
        finally:
            db.close()

    @staticmethod
    def _get_row(db: Session, user_id: str) -> Subscription | None:
        return db.execute(
            select(Subscription).where(Subscription.user_id == user_id)
        ).scalar_one_or_none()

    @staticmethod
    def _record_event(
        db: Session,
        user_id: str,
        event_type: str,
        plan: str,
        status: str,
        credits_before: int | None,
        credits_after: int,
        created_at: datetime,
        **details,
    ) -> None:
        """Stage a lifecycle audit row in the caller's transaction."""
        db.add(
            SubscriptionEvent(
                user_id=user_id,
                event_type=event_type,
                plan=plan,
                status=status,
                credits_before=credits_before,
                credits_after=credits_after,
                details=details,
                created_at=created_at,
            )
        )

    @staticmethod
    def _credits_after_plan_change(credits: int, old_plan: str, new_plan: str) -> int:
        """Upgrades grant only the allotment difference; downgrades cap the balance."""
        old_allotment = plan_allotment(old_plan)
        new_allotment = plan_allotment(new_plan)
        if new_allotment > old_allotment:
            return min(credits + new_allotment - old_allotment, new_allotment)
        return min(credits, new_allotment)

    # ====================
    # Reads
    # ====================

    def get_subscription(self, user_id: str) -> SubscriptionRecord:
        with self._session() as db:
            row = self._get_row(db, user_id)
            if row is None:
                raise SubscriptionNotFound(f"No subscription found for user {user_id}")
            return SubscriptionRecord.from_row(row)

    def get_balance(self, user_id: str) -> Balance:
        sub = self.get_subscription(user_id)
        return Balance(
            plan=sub.plan,
            status=sub.status,
            credits=sub.credits,
            total_credits=plan_allotment(sub.plan),
            period_start=sub.current_period_start,
            period_end=sub.current_period_end,
        )

    def can_consume(self, user_id: str, feature: str | Feature, amount: int) -> bool:
        get_feature(feature)
        if amount < 0:
            raise ValidationError("Credit amount cannot be negative")
        with self._session() as db:
            row = self._get_row(db, user_id)
            return row is not None and row.status == ACTIVE and row.credits >= amount

    # ====================
    # Consumption
    # ====================

    def consume(
        self,
        user_id: str,
        feature: str | Feature,
        amount: int = 1,
        description: str | None = None,
    ) -> ConsumeResult:
        """Debit ``amount`` credits and record one consumption event, atomically."""
        feature = get_feature(feature)
        if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
            raise ValidationError("Credit amount must be a positive integer")

        with self._session() as db:
            for _ in range(MAX_CONSUME_ATTEMPTS):
                now = self._clock()
                result = db.execute(
                    update(Subscription)
                    .where(
                        Subscription.user_id == user_id,
                        Subscription.status == ACTIVE,
                        Subscription.credits >= amount,
                    )
                    .values(credits=Subscription.credits - amount, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    remaining = db.execute(
                        select(Subscription.credits).where(Subscription.user_id == user_id)
                    ).scalar_one()
                    db.add(
                        CreditEvent(
                            user_id=user_id,
                            feature=feature.value,
                            amount=amount,
                            remaining_credits=remaining,
                            description=description,
                            created_at=now,
                        )
                    )
                    db.commit()
                    logger.info(
                        "Consumed %s credit(s) for %s by user %s, %s remaining",
                        amount,
                        feature.value,
                        user_id,
                        remaining,
                    )
                    return ConsumeResult(success=True, remaining_credits=remaining)

                db.rollback()
                row = self._get_row(db, user_id)
                if row is None or row.status != ACTIVE:
                    raise NoActiveSubscription("No active subscription")
                if row.credits < amount:
                    raise InsufficientCredits(current_credits=row.credits, required_credits=amount)
                # Balance changed between the update and the re-read (refresh or plan change).
                db.expire_all()

        raise StorageFailure("Credit balance kept changing. Please retry.")

    # ====================
    # Billing period
    # ====================

    def _next_period(self, period_end: datetime, now: datetime) -> tuple[datetime, datetime]:
        start = period_end
        end = start + self.billing_period
        while end <= now:
            start = end
            end = start + self.billing_period
        return start, end

    def refresh_monthly(self, user_id: str, now: datetime | None = None) -> bool:
        """Reset credits to the plan allotment once the billing period has rolled over.

        Returns True only for the call that performed the reset.
        """
        now = now or self._clock()
        with self._session() as db:
            row = self._get_row(db, user_id)
            if row is None or row.status != ACTIVE:
                return False
            observed_end = row.current_period_end
            if now < as_utc(observed_end):
                return False

            new_start, new_end = self._next_period(as_utc(observed_end), now)
            allotment = plan_allotment(row.plan)
            result = db.execute(
                update(Subscription)
                .where(
                    Subscription.user_id == user_id,
                    Subscription.status == ACTIVE,
                    Subscription.current_period_end == observed_end,
                )
                .values(
                    credits=allotment,
                    current_period_start=new_start,
                    current_period_end=new_end,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                return False
            self._record_event(
                db,
                user_id,
                "credits_refreshed",
                plan=row.plan,
                status=ACTIVE,
                credits_before=row.credits,
                credits_after=allotment,
                created_at=now,
                period_start=new_start.isoformat(),
                period_end=new_end.isoformat(),
            )
            db.commit()

        logger.info(
            "Refreshed credits for user %s to %s, period now ends %s",
            user_id,
            allotment,
            new_end.isoformat(),
        )
        return True

    def due_for_refresh(self, now: datetime | None = None, limit: int = 500) -> list[str]:
        now = now or self._clock()
        with self._session() as db:
            rows = db.execute(
                select(Subscription.user_id)
                .where(Subscription.status == ACTIVE, Subscription.current_period_end <= now)
                .order_by(Subscription.current_period_end)
                .limit(limit)
            ).scalars()
            return list(rows)

    # ====================
    # Subscription lifecycle
    # ====================

    def create_subscription(
        self,
        user_id: str,
        plan: str,
        provider_subscription_id: str | None = None,
        provider_customer_id: str | None = None,
    ) -> SubscriptionRecord:
        """Provision a ledger row at the plan's full allotment.

        An active subscription is never overwritten. A canceled or lapsed one
        is re-provisioned in place: inside its still-running period it keeps
        its balance (adjusted like a plan change), otherwise it starts a new
        period with a full allotment.
        """
        plan_info = get_plan(plan)
        now = self._clock()
        values = {
            "plan": plan_info.id.value,
            "status": ACTIVE,
            "provider_subscription_id": provider_subscription_id,
            "provider_customer_id": provider_customer_id,
            "canceled_at": None,
        }

        with self._session() as db:
            existing = self._get_row(db, user_id)
            if existing is None:
                db.add(
                    Subscription(
                        user_id=user_id,
                        credits=plan_info.credits,
                        current_period_start=now,
                        current_period_end=now + self.billing_period,
                        **values,
                    )
                )
                self._record_event(
                    db,
                    user_id,
                    "subscription_created",
                    plan=plan_info.id.value,
                    status=ACTIVE,
                    credits_before=None,
                    credits_after=plan_info.credits,
                    created_at=now,
                )
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    raise DuplicateSubscription(
                        f"User {user_id} already has a subscription"
                    ) from None
            else:
                if existing.status == ACTIVE:
                    raise DuplicateSubscription(
                        f"User {user_id} already has an active subscription"
                    )
                observed_credits = existing.credits
                observed_end = existing.current_period_end
                previous_plan, previous_status = existing.plan, existing.status
                if now < as_utc(observed_end):
                    credits = self._credits_after_plan_change(
                        observed_credits, previous_plan, plan_info.id.value
                    )
                else:
                    credits = plan_info.credits
                    values["current_period_start"] = now
                    values["current_period_end"] = now + self.billing_period

                result = db.execute(
                    update(Subscription)
                    .where(
                        Subscription.user_id == user_id,
                        Subscription.status != ACTIVE,
                        Subscription.credits == observed_credits,
                        Subscription.current_period_end == observed_end,
                    )
                    .values(credits=credits, updated_at=now, **values)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    db.rollback()
                    raise DuplicateSubscription(
                        f"User {user_id} already has an active subscription"
                    )
                self._record_event(
                    db,
                    user_id,
                    "subscription_reprovisioned",
                    plan=plan_info.id.value,
                    status=ACTIVE,
                    credits_before=observed_credits,
                    credits_after=credits,
                    created_at=now,
                    previous_plan=previous_plan,
                    previous_status=previous_status,
                )
                db.commit()
                db.expire_all()

            record = SubscriptionRecord.from_row(self._get_row(db, user_id))

        logger.info("Provisioned %s subscription for user %s", record.plan, user_id)
        return record

    def cancel_subscription(self, user_id: str) -> SubscriptionRecord:
        return self._transition(user_id, SubscriptionStatus.CANCELED, "subscription_canceled")

    def set_status(self, user_id: str, status: str) -> SubscriptionRecord:
        try:
            new_status = SubscriptionStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown subscription status '{status}'") from None
        return self._transition(user_id, new_status, "status_changed")

    def _transition(
        self, user_id: str, new_status: SubscriptionStatus, event_type: str
    ) -> SubscriptionRecord:
        now = self._clock()
        values = {"status": new_status.value, "updated_at": now}
        if new_status is SubscriptionStatus.CANCELED:
            values["canceled_at"] = now
        with self._session() as db:
            row = self._get_row(db, user_id)
            if row is None:
                raise SubscriptionNotFound(f"No subscription found for user {user_id}")
            previous_status = row.status
            result = db.execute(
                update(Subscription)
                .where(Subscription.user_id == user_id, Subscription.status == previous_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                raise StorageFailure("Subscription changed concurrently. Please retry.")
            self._record_event(
                db,
                user_id,
                event_type,
                plan=row.plan,
                status=new_status.value,
                credits_before=row.credits,
                credits_after=row.credits,
                created_at=now,
                previous_status=previous_status,
            )
            db.commit()
            db.expire_all()
            record = SubscriptionRecord.from_row(self._get_row(db, user_id))

        logger.info("Subscription status for user %s set to %s", user_id, new_status.value)
        return record

    def change_plan(self, user_id: str, plan: str) -> SubscriptionRecord:
        """Move an active subscription to another plan within the current period.

        An upgrade adds the allotment difference to the balance, capped at the
        new allotment. A downgrade caps the balance at the new allotment.
        """
        plan_info = get_plan(plan)
        new_plan = plan_info.id.value
        with self._session() as db:
            for _ in range(MAX_CONSUME_ATTEMPTS):
                now = self._clock()
                row = self._get_row(db, user_id)
                if row is None:
                    raise SubscriptionNotFound(f"No subscription found for user {user_id}")
                if row.status != ACTIVE:
                    raise NoActiveSubscription("No active subscription")
                if row.plan == new_plan:
                    raise ValidationError(f"Subscription is already on the {new_plan} plan")

                old_plan, old_credits = row.plan, row.credits
                credits = self._credits_after_plan_change(old_credits, old_plan, new_plan)
                result = db.execute(
                    update(Subscription)
                    .where(
                        Subscription.user_id == user_id,
                        Subscription.status == ACTIVE,
                        Subscription.plan == old_plan,
                        Subscription.credits == old_credits,
                    )
                    .values(plan=new_plan, credits=credits, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    self._record_event(
                        db,
                        user_id,
                        "plan_changed",
                        plan=new_plan,
                        status=ACTIVE,
                        credits_before=old_credits,
                        credits_after=credits,
                        created_at=now,
                        previous_plan=old_plan,
                    )
                    db.commit()
                    db.expire_all()
                    record = SubscriptionRecord.from_row(self._get_row(db, user_id))
                    logger.info(
                        "Changed plan for user %s from %s to %s, %s credits",
                        user_id,
                        old_plan,
                        new_plan,
                        credits,
                    )
                    return record

                # Balance or plan moved under us (consume, refresh); re-read and retry.
                db.rollback()
                db.expire_all()

        raise StorageFailure("Subscription kept changing. Please retry.")

    # ====================
    # History & analytics
    # ====================

    def list_events(self, user_id: str, limit: int = 50) -> list[CreditEventRecord]:
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
        with self._session() as db:
            rows = db.execute(
                select(CreditEvent)
                .where(CreditEvent.user_id == user_id)
                .order_by(CreditEvent.created_at.desc())
                .limit(limit)
            ).scalars()
            return [_credit_event_record(row) for row in rows]

    def list_subscription_events(
        self, user_id: str, limit: int = 50
    ) -> list[SubscriptionEventRecord]:
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationError(f"limit must be between 1 and {MAX_HISTORY_LIMIT}")
        with self._session() as db:
            rows = db.execute(
                select(SubscriptionEvent)
                .where(SubscriptionEvent.user_id == user_id)
                .order_by(SubscriptionEvent.created_at.desc())
                .limit(limit)
            ).scalars()
            return [
                SubscriptionEventRecord(
                    event_type=row.event_type,
                    plan=row.plan,
                    status=row.status,
                    credits_before=row.credits_before,
                    credits_after=row.credits_after,
                    created_at=as_utc(row.created_at),
                    details=dict(row.details or {}),
                )
                for row in rows
            ]

    def usage_summary(
        self,
        user_id: str,
        days: int = 30,
        offset: int = 0,
        compare: bool = False,
        now: datetime | None = None,
    ) -> UsageSummary:
        """Aggregate debits in the ``days`` long window ending ``offset`` days ago.

        With ``compare`` the total is also set against the window of the same
        length immediately before it.
        """
        if days < 1 or days > 365:
            raise ValidationError("days must be between 1 and 365")
        if offset < 0 or offset > 365:
            raise ValidationError("offset must be between 0 and 365")
        now = now or self._clock()
        window_end = now - timedelta(days=offset)
        window_start = window_end - timedelta(days=days)

        with self._session() as db:
            rows = db.execute(
                select(CreditEvent)
                .where(
                    CreditEvent.user_id == user_id,
                    CreditEvent.created_at > window_start,
                    CreditEvent.created_at <= window_end,
                )
                .order_by(CreditEvent.created_at.desc())
            ).scalars().all()
            events = [_credit_event_record(row) for row in rows]

            previous_total = None
            if compare:
                previous_total = db.execute(
                    select(func.coalesce(func.sum(CreditEvent.amount), 0)).where(
                        CreditEvent.user_id == user_id,
                        CreditEvent.created_at > window_start - timedelta(days=days),
                        CreditEvent.created_at <= window_start,
                    )
                ).scalar_one()

        by_feature: dict[str, int] = defaultdict(int)
        by_day: dict[str, int] = defaultdict(int)
        for event in events:
            by_feature[event.feature] += event.amount
            by_day[event.created_at.date().isoformat()] += event.amount

        total_used = sum(by_feature.values())
        summary = UsageSummary(
            days=days,
            offset=offset,
            total_used=total_used,
            event_count=len(events),
            by_feature=dict(by_feature),
            by_day=dict(sorted(by_day.items())),
            recent_usage=events[:RECENT_USAGE_LIMIT],
        )
        if previous_total is not None:
            summary.comparison = _compare_usage(total_used, int(previous_total))
        return summary


def _credit_event_record(row: CreditEvent) -> CreditEventRecord:
    return CreditEventRecord(
        feature=row.feature,
        amount=row.amount,
        remaining_credits=row.remaining_credits,
        created_at=as_utc(row.created_at),
        description=row.description,
    )


def _compare_usage(current: int, previous: int) -> UsageComparison:
    if previous > 0:
        percent = round((current - previous) / previous * 100)
    else:
        percent = 100 if current > 0 else 0
    return UsageComparison(
        previous_total_used=previous,
        usage_change=current - previous,
        usage_change_percent=percent,
    )
