# 📄 File: billing_engine/modules/subscriptions/domain/services/subscription_service.py
# 🧭 Purpose (Layman Explanation):
# The rule book for subscriptions: who may subscribe, how plans change, how renewals and
# cancellations work, and the periodic clean-up that expires or renews subscriptions on time.
# 🧪 Purpose (Technical Summary):
# Domain service orchestrating the Subscription state machine over the user directory, plan
# catalog and subscription repository, including the expiry, auto-renewal and grace-period sweeps.
# 🔗 Dependencies:
# Subscription/Plan/User domain models, repositories, billing_engine.shared.core.exceptions
# 🔄 Connected Modules / Calls From:
# Subscription API endpoints, webhook_reconciler.py, billing_service.py, background_jobs/scheduler.py

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from billing_engine.modules.subscriptions.domain.models.plan import Plan
from billing_engine.modules.subscriptions.domain.models.subscription import (
    CURRENT_STATUSES,
    Subscription,
    SubscriptionStatus,
)
from billing_engine.modules.subscriptions.domain.models.user import User
from billing_engine.modules.subscriptions.domain.repositories.plan_repository import PlanRepository
from billing_engine.modules.subscriptions.domain.repositories.subscription_repository import SubscriptionRepository
from billing_engine.modules.subscriptions.domain.repositories.user_repository import UserRepository
from billing_engine.shared.config.settings import get_settings
from billing_engine.shared.core.exceptions import (
    BusinessRuleViolationError,
    ConflictError,
    InvalidStateTransitionError,
    NotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Payment processor subscription status -> local status
PROCESSOR_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "trialing": SubscriptionStatus.TRIAL,
    "active": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.SUSPENDED,
    "paused": SubscriptionStatus.SUSPENDED,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete": SubscriptionStatus.PENDING,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
}

# Fields a generic update may touch
UPDATABLE_FIELDS = frozenset({
    "status",
    "is_auto_renew",
    "start_date",
    "end_date",
    "trial_end_date",
    "next_billing_date",
    "cancellation_reason",
    "external_subscription_id",
})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionService:
    """
    Domain service for subscription lifecycle business logic.

    All state changes go through the Subscription domain model so the
    transition rules live in one place.
    """

    def __init__(
        self,
        subscription_repository: SubscriptionRepository,
        plan_repository: PlanRepository,
        user_repository: UserRepository,
    ):
        self.subscription_repository = subscription_repository
        self.plan_repository = plan_repository
        self.user_repository = user_repository
        self.settings = get_settings()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_user(self, user_id: UUID) -> User:
        user = await self.user_repository.get_by_id(user_id)
        if user is None:
            raise NotFoundError(f"User with ID {user_id} not found", resource_type="user", resource_id=str(user_id))
        return user

    async def register_user(self, user: User) -> User:
        created = await self.user_repository.create(user)
        logger.info(f"Registered billing user {created.id}")
        return created

    async def get_plan(self, plan_id: UUID) -> Plan:
        plan = await self.plan_repository.get_by_id(plan_id)
        if plan is None:
            raise NotFoundError(f"Plan with ID {plan_id} not found", resource_type="plan", resource_id=str(plan_id))
        return plan

    async def get_subscription(self, subscription_id: UUID) -> Subscription:
        subscription = await self.subscription_repository.get_by_id(subscription_id)
        if subscription is None:
            raise NotFoundError(
                f"Subscription with ID {subscription_id} not found",
                resource_type="subscription",
                resource_id=str(subscription_id),
            )
        return subscription

    # =========================================================================
    # PLAN CATALOG
    # =========================================================================

    async def create_plan(self, plan: Plan) -> Plan:
        if await self.plan_repository.get_by_name(plan.name):
            raise ConflictError(
                message=f"Plan with name '{plan.name}' already exists",
                resource_type="plan",
                conflict_field="name",
                existing_value=plan.name,
            )
        return await self.plan_repository.create(plan)

    async def list_plans(self, active_only: bool = True) -> List[Plan]:
        return await self.plan_repository.list(active_only=active_only)

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_subscription(
        self,
        user_id: UUID,
        plan_id: UUID,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        status: Optional[SubscriptionStatus] = None,
        is_auto_renew: bool = True,
    ) -> Subscription:
        """
        Create a subscription for a user.

        Raises:
            NotFoundError: Unknown user or plan
            BusinessRuleViolationError: Plan is no longer offered
            ConflictError: User already holds an active or trial subscription
        """
        await self.get_user(user_id)
        plan = await self.get_plan(plan_id)
        if not plan.is_active:
            raise BusinessRuleViolationError(
                message=f"Plan '{plan.name}' is not available for new subscriptions",
                rule="plan_must_be_active",
                context={"plan_id": str(plan.id)},
            )

        if await self.subscription_repository.has_current_subscription(user_id):
            logger.warning(f"User {user_id} already has an active or trial subscription")
            raise ConflictError(
                message="User already has an active or trial subscription",
                resource_type="subscription",
                conflict_field="user_id",
                existing_value=user_id,
            )

        subscription = Subscription.create_for_plan(
            user_id=user_id,
            plan=plan,
            start_date=start_date,
            end_date=end_date,
            status=status,
            is_auto_renew=is_auto_renew,
        )
        created = await self.subscription_repository.create(subscription)
        logger.info(f"Subscription {created.id} created for user {user_id} on plan {plan.name} ({created.status})")
        return created

    async def subscribe(self, caller_id: UUID, plan_id: UUID, is_auto_renew: bool = True) -> Subscription:
        """Self-service create: the subscription owner is the caller."""
        return await self.create_subscription(user_id=caller_id, plan_id=plan_id, is_auto_renew=is_auto_renew)

    # =========================================================================
    # READ
    # =========================================================================

    async def list_subscriptions(
        self,
        status: Optional[SubscriptionStatus] = None,
        user_id: Optional[UUID] = None,
        plan_id: Optional[UUID] = None,
        is_auto_renew: Optional[bool] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Subscription], int]:
        skip = (page - 1) * limit
        return await self.subscription_repository.list(
            status=status,
            user_id=user_id,
            plan_id=plan_id,
            is_auto_renew=is_auto_renew,
            skip=skip,
            limit=limit,
        )

    async def find_by_user(self, user_id: UUID) -> List[Subscription]:
        await self.get_user(user_id)
        return await self.subscription_repository.get_by_user_id(user_id)

    async def get_stats(self) -> Dict[str, int]:
        counts = await self.subscription_repository.count_by_status()
        stats = {status.value: counts.get(status.value, 0) for status in SubscriptionStatus}
        stats["total"] = sum(counts.values())
        return stats

    # =========================================================================
    # MUTATIONS
    # =========================================================================

    async def update_subscription(self, subscription_id: UUID, updates: Dict[str, Any]) -> Subscription:
        """
        Apply a partial update.

        A status change goes through the lifecycle rules, so a cancelled
        subscription cannot be moved back out of cancelled this way either.
        """
        subscription = await self.get_subscription(subscription_id)
        updates = dict(updates)

        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                message="Fields cannot be updated directly",
                field=", ".join(sorted(unknown)),
            )

        new_status = updates.pop("status", None)
        try:
            updated = Subscription.model_validate({**subscription.model_dump(), **updates})
        except PydanticValidationError as e:
            raise ValidationError(message="Invalid subscription update", details={"errors": [
                {"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()
            ]})

        if new_status is not None and SubscriptionStatus(new_status) != updated.current_status:
            new_status = SubscriptionStatus(new_status)
            if new_status in CURRENT_STATUSES and await self.subscription_repository.has_current_subscription(
                updated.user_id, exclude_id=updated.id
            ):
                raise ConflictError(
                    message="User already has an active or trial subscription",
                    resource_type="subscription",
                    conflict_field="user_id",
                    existing_value=updated.user_id,
                )
            updated.transition_to(new_status)

        updated.updated_at = _utcnow()
        saved = await self.subscription_repository.save(updated)
        logger.info(f"Subscription {subscription_id} updated ({', '.join(sorted(updates)) or 'status'})")
        return saved

    async def change_plan(self, subscription_id: UUID, new_plan_id: UUID) -> Subscription:
        subscription = await self.get_subscription(subscription_id)
        new_plan = await self.get_plan(new_plan_id)
        old_plan_id = subscription.plan_id

        subscription.change_plan(new_plan)
        saved = await self.subscription_repository.save(subscription)
        logger.info(f"Subscription {subscription_id} changed plan {old_plan_id} -> {new_plan_id}")
        return saved

    async def renew(
        self,
        subscription_id: UUID,
        custom_end_date: Optional[datetime] = None,
        source: str = "api",
    ) -> Subscription:
        """
        Renew one billing period.

        Raises:
            InvalidStateTransitionError: Subscription is cancelled
            ConflictError: This period has already been renewed
        """
        subscription = await self.get_subscription(subscription_id)
        previous_end_date = subscription.end_date

        subscription.renew(custom_end_date=custom_end_date)
        recorded = await self.subscription_repository.record_renewal(
            subscription_id=subscription.id,
            period_start=previous_end_date,
            period_end=subscription.end_date,
            renewal_number=subscription.renewal_count,
            source=source,
        )
        if not recorded:
            raise ConflictError(
                message="Subscription has already been renewed for this period",
                resource_type="subscription",
                conflict_field="end_date",
                existing_value=subscription.end_date.isoformat(),
            )

        saved = await self.subscription_repository.save(subscription)
        logger.info(
            f"Subscription {subscription_id} renewed until {saved.end_date.isoformat()} "
            f"(renewal #{saved.renewal_count}, source={source})"
        )
        return saved

    async def cancel(self, subscription_id: UUID, reason: Optional[str] = None) -> Subscription:
        subscription = await self.get_subscription(subscription_id)
        subscription.cancel(reason=reason)
        saved = await self.subscription_repository.save(subscription)
        logger.info(f"Subscription {subscription_id} cancelled")
        return saved

    async def delete(self, subscription_id: UUID) -> None:
        """Administrative removal. The only path that physically deletes a row."""
        if not await self.subscription_repository.delete(subscription_id):
            raise NotFoundError(
                f"Subscription with ID {subscription_id} not found",
                resource_type="subscription",
                resource_id=str(subscription_id),
            )

    # =========================================================================
    # PAYMENT OUTCOMES
    # =========================================================================

    async def mark_payment_failed(self, subscription: Subscription) -> Subscription:
        """Open (or keep) the grace period after a failed invoice."""
        if not subscription.mark_past_due(self.settings.GRACE_PERIOD_DAYS):
            logger.info(f"Subscription {subscription.id} in status {subscription.status}, not marking past due")
            return subscription
        saved = await self.subscription_repository.save(subscription)
        logger.warning(
            f"Subscription {subscription.id} is past due, grace period ends "
            f"{saved.grace_period_end_date.isoformat()}"
        )
        return saved

    async def mark_payment_succeeded(self, subscription: Subscription) -> Subscription:
        if not subscription.restore_after_payment():
            return subscription
        saved = await self.subscription_repository.save(subscription)
        logger.info(f"Subscription {subscription.id} restored to active after payment")
        return saved

    async def apply_processor_update(
        self,
        subscription: Subscription,
        processor_status: Optional[str],
        cancel_at_period_end: Optional[bool] = None,
        current_period_end: Optional[datetime] = None,
    ) -> Subscription:
        """
        Mirror a payment processor subscription update onto the local row.

        Illegal transitions (for example leaving cancelled) are logged and
        ignored; the other synced fields still apply.
        """
        target = PROCESSOR_STATUS_MAP.get(processor_status or "")
        if processor_status and target is None:
            logger.warning(f"Unmapped processor subscription status '{processor_status}' for {subscription.id}")

        if target is not None and target != subscription.current_status:
            try:
                if target == SubscriptionStatus.PAST_DUE:
                    subscription.mark_past_due(self.settings.GRACE_PERIOD_DAYS)
                else:
                    subscription.transition_to(target)
            except InvalidStateTransitionError as e:
                logger.warning(f"Ignoring processor status update for {subscription.id}: {e.message}")

        if subscription.current_status != SubscriptionStatus.CANCELLED:
            if cancel_at_period_end is not None:
                subscription.is_auto_renew = not cancel_at_period_end
            if current_period_end is not None and current_period_end >= subscription.start_date:
                subscription.end_date = current_period_end
                subscription.next_billing_date = current_period_end

        subscription.updated_at = _utcnow()
        return await self.subscription_repository.save(subscription)

    async def cancel_from_processor(self, subscription: Subscription) -> Subscription:
        """Processor deleted the subscription. Already-cancelled rows are left alone."""
        if subscription.current_status == SubscriptionStatus.CANCELLED:
            return subscription
        subscription.cancel(reason="Cancelled by payment processor")
        return await self.subscription_repository.save(subscription)

    # =========================================================================
    # SWEEPS
    # =========================================================================

    async def process_expired_subscriptions(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Expire active/trial subscriptions past their end date with auto-renew off."""
        now = now or _utcnow()
        candidates = await self.subscription_repository.find_expired_without_auto_renew(now)
        result = {"processed": len(candidates), "expired": 0, "failed": 0}

        for subscription in candidates:
            try:
                async with self.subscription_repository.savepoint():
                    subscription.expire(now)
                    await self.subscription_repository.save(subscription)
                result["expired"] += 1
            except Exception as e:
                result["failed"] += 1
                logger.error(f"Failed to expire subscription {subscription.id}: {e}")

        logger.info(f"Expiry sweep finished: {result}")
        return result

    async def process_auto_renewals(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """Renew active auto-renewing subscriptions ending within the lookahead window."""
        now = now or _utcnow()
        until = now + timedelta(days=self.settings.RENEWAL_LOOKAHEAD_DAYS)
        candidates = await self.subscription_repository.find_due_for_renewal(until)
        result = {"processed": len(candidates), "renewed": 0, "skipped": 0, "failed": 0}

        for subscription in candidates:
            try:
                async with self.subscription_repository.savepoint():
                    await self.renew(subscription.id, source="scheduler")
                result["renewed"] += 1
            except ConflictError as e:
                result["skipped"] += 1
                logger.info(f"Skipping renewal of subscription {subscription.id}: {e.message}")
            except Exception as e:
                result["failed"] += 1
                logger.error(f"Failed to auto-renew subscription {subscription.id}: {e}")

        logger.info(f"Auto-renewal sweep finished: {result}")
        return result

    async def process_grace_periods(
        self,
        now: Optional[datetime] = None,
        on_suspended: Optional[Callable[[Subscription], Awaitable[None]]] = None,
    ) -> Dict[str, int]:
        """
        Suspend past-due subscriptions whose grace period has elapsed.

        ``on_suspended`` runs after each committed suspension; its errors are
        logged and do not undo the suspension.
        """
        now = now or _utcnow()
        candidates = await self.subscription_repository.find_grace_period_elapsed(now)
        result = {"processed": len(candidates), "suspended": 0, "failed": 0}

        for subscription in candidates:
            try:
                async with self.subscription_repository.savepoint():
                    subscription.suspend(now)
                    await self.subscription_repository.save(subscription)
                result["suspended"] += 1
            except Exception as e:
                result["failed"] += 1
                logger.error(f"Failed to suspend subscription {subscription.id}: {e}")
                continue

            if on_suspended is not None:
                try:
                    await on_suspended(subscription)
                except Exception as e:
                    logger.error(f"Suspension follow-up failed for subscription {subscription.id}: {e}")

        logger.info(f"Grace period sweep finished: {result}")
        return result
