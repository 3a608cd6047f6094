# 📄 File: billing_engine/modules/subscriptions/domain/repositories/subscription_repository.py
# 🧭 Purpose (Layman Explanation):
# Lists every way the billing engine needs to look up or store subscriptions, without saying
# which database does the work.
# 🧪 Purpose (Technical Summary):
# Abstract repository interface for subscription persistence, lifecycle sweeps and the
# renewal ledger.
# 🔗 Dependencies:
# - abc (Abstract Base Classes)
# - Subscription domain model
# 🔄 Connected Modules / Calls From:
# - subscription_service.py, billing_service.py, webhook_reconciler.py
# - subscription_repository_impl.py (concrete implementation)

from abc import ABC, abstractmethod
from datetime import datetime
from typing import AsyncContextManager, Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from billing_engine.modules.subscriptions.domain.models.subscription import Subscription, SubscriptionStatus


class SubscriptionRepository(ABC):
    """Abstract repository interface for subscription data access operations."""

    @abstractmethod
    def savepoint(self) -> AsyncContextManager:
        """Scope whose writes roll back on their own if the block raises."""
        pass

    @abstractmethod
    async def create(self, subscription: Subscription) -> Subscription:
        """
        Persist a new subscription.

        Raises:
            ConflictError: If the user already holds an active/trial subscription
        """
        pass

    @abstractmethod
    async def get_by_id(self, subscription_id: UUID) -> Optional[Subscription]:
        pass

    @abstractmethod
    async def get_by_external_id(self, external_subscription_id: str) -> Optional[Subscription]:
        """Get subscription by payment processor subscription id."""
        pass

    @abstractmethod
    async def list(
        self,
        status: Optional[SubscriptionStatus] = None,
        user_id: Optional[UUID] = None,
        plan_id: Optional[UUID] = None,
        is_auto_renew: Optional[bool] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Subscription], int]:
        """Return one page of subscriptions and the total matching count."""
        pass

    @abstractmethod
    async def get_by_user_id(self, user_id: UUID) -> List[Subscription]:
        pass

    @abstractmethod
    async def get_latest_for_user(
        self,
        user_id: UUID,
        statuses: Sequence[SubscriptionStatus],
    ) -> Optional[Subscription]:
        """Most recently created subscription of a user in one of ``statuses``."""
        pass

    @abstractmethod
    async def has_current_subscription(self, user_id: UUID, exclude_id: Optional[UUID] = None) -> bool:
        """True if the user holds an active or trial subscription."""
        pass

    @abstractmethod
    async def save(self, subscription: Subscription) -> Subscription:
        """Write every field of an existing subscription."""
        pass

    @abstractmethod
    async def delete(self, subscription_id: UUID) -> bool:
        pass

    @abstractmethod
    async def count_by_status(self) -> Dict[str, int]:
        pass

    # Sweeps

    @abstractmethod
    async def find_expired_without_auto_renew(self, now: datetime) -> List[Subscription]:
        """Active/trial, auto-renew off, end date reached."""
        pass

    @abstractmethod
    async def find_due_for_renewal(self, until: datetime) -> List[Subscription]:
        """Active, auto-renew on, end date at or before ``until``."""
        pass

    @abstractmethod
    async def find_grace_period_elapsed(self, now: datetime) -> List[Subscription]:
        pass

    @abstractmethod
    async def find_ending_between(self, start: datetime, end: datetime) -> List[Subscription]:
        """Active/trial subscriptions whose end date falls in [start, end)."""
        pass

    # Renewal ledger

    @abstractmethod
    async def record_renewal(
        self,
        subscription_id: UUID,
        period_start: datetime,
        period_end: datetime,
        renewal_number: int,
        source: str = "api",
    ) -> bool:
        """
        Insert a renewal ledger row.

        Returns False when a renewal for the same period already exists.
        """
        pass
