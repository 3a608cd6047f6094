# 📄 File: billing_engine/modules/subscriptions/infrastructure/database/subscription_repository_impl.py
# 🧭 Purpose (Layman Explanation):
# Does the actual database work for subscriptions: saving them, finding them, counting them and
# finding the ones that need renewing or expiring.
# 🧪 Purpose (Technical Summary):
# SQLAlchemy-based implementation of SubscriptionRepository, mapping between SubscriptionModel
# rows and Subscription domain models, with SQLAlchemyError wrapped into DatabaseError.
# 🔗 Dependencies:
# SQLAlchemy, billing_engine.shared.core.exceptions, logging
# 🔄 Connected Modules / Calls From:
# subscription_service.py, billing_service.py, webhook_reconciler.py, scheduler jobs

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import and_, delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.subscriptions.domain.models.subscription import (
    CURRENT_STATUSES,
    Subscription,
    SubscriptionStatus,
)
from billing_engine.modules.subscriptions.domain.repositories.subscription_repository import SubscriptionRepository
from billing_engine.modules.subscriptions.infrastructure.database.models import (
    SubscriptionModel,
    SubscriptionRenewalModel,
)
from billing_engine.shared.core.exceptions import ConflictError, DatabaseError

logger = logging.getLogger(__name__)

_CURRENT = [status.value for status in CURRENT_STATUSES]


class SubscriptionRepositoryImpl(SubscriptionRepository):
    """
    SQLAlchemy implementation of subscription repository.
    Handles all subscription database operations with proper error handling.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_domain(model: SubscriptionModel) -> Subscription:
        return Subscription.model_validate(model)

    async def _fetch_all(self, query) -> List[Subscription]:
        result = await self.session.execute(query)
        return [self._to_domain(row) for row in result.scalars().all()]

    @staticmethod
    def _duplicate_current(user_id: UUID) -> ConflictError:
        return ConflictError(
            message="User already has an active or trial subscription",
            resource_type="subscription",
            conflict_field="user_id",
            existing_value=user_id,
        )

    def savepoint(self):
        return self.session.begin_nested()

    async def create(self, subscription: Subscription) -> Subscription:
        try:
            async with self.session.begin_nested():
                model = SubscriptionModel(**subscription.model_dump())
                self.session.add(model)
            logger.info(f"Created subscription {model.id} for user {model.user_id}")
            return self._to_domain(model)
        except IntegrityError:
            raise self._duplicate_current(subscription.user_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error creating subscription for user {subscription.user_id}: {e}")
            raise DatabaseError(f"Failed to create subscription: {e}", operation="insert", table="subscriptions")

    async def get_by_id(self, subscription_id: UUID) -> Optional[Subscription]:
        try:
            model = await self.session.get(SubscriptionModel, subscription_id)
            return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting subscription {subscription_id}: {e}")
            raise DatabaseError(f"Failed to get subscription: {e}", operation="select", table="subscriptions")

    async def get_by_external_id(self, external_subscription_id: str) -> Optional[Subscription]:
        try:
            result = await self.session.execute(
                select(SubscriptionModel).where(
                    SubscriptionModel.external_subscription_id == external_subscription_id
                )
            )
            model = result.scalar_one_or_none()
            return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting subscription by external id {external_subscription_id}: {e}")
            raise DatabaseError(f"Failed to get subscription: {e}", operation="select", table="subscriptions")

    async def list(
        self,
        status: Optional[SubscriptionStatus] = None,
        user_id: Optional[UUID] = None,
        plan_id: Optional[UUID] = None,
        is_auto_renew: Optional[bool] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Subscription], int]:
        conditions = []
        if status is not None:
            conditions.append(SubscriptionModel.status == SubscriptionStatus(status).value)
        if user_id is not None:
            conditions.append(SubscriptionModel.user_id == user_id)
        if plan_id is not None:
            conditions.append(SubscriptionModel.plan_id == plan_id)
        if is_auto_renew is not None:
            conditions.append(SubscriptionModel.is_auto_renew == is_auto_renew)

        try:
            count_query = select(func.count()).select_from(SubscriptionModel)
            page_query = select(SubscriptionModel).order_by(SubscriptionModel.created_at.desc())
            if conditions:
                count_query = count_query.where(and_(*conditions))
                page_query = page_query.where(and_(*conditions))

            total = (await self.session.execute(count_query)).scalar_one()
            items = await self._fetch_all(page_query.offset(skip).limit(limit))
            return items, total
        except SQLAlchemyError as e:
            logger.error(f"Database error listing subscriptions: {e}")
            raise DatabaseError(f"Failed to list subscriptions: {e}", operation="select", table="subscriptions")

    async def get_by_user_id(self, user_id: UUID) -> List[Subscription]:
        try:
            return await self._fetch_all(
                select(SubscriptionModel)
                .where(SubscriptionModel.user_id == user_id)
                .order_by(SubscriptionModel.created_at.desc())
            )
        except SQLAlchemyError as e:
            logger.error(f"Database error getting subscriptions for user {user_id}: {e}")
            raise DatabaseError(f"Failed to get subscriptions: {e}", operation="select", table="subscriptions")

    async def get_latest_for_user(
        self,
        user_id: UUID,
        statuses: Sequence[SubscriptionStatus],
    ) -> Optional[Subscription]:
        try:
            result = await self.session.execute(
                select(SubscriptionModel)
                .where(
                    SubscriptionModel.user_id == user_id,
                    SubscriptionModel.status.in_([SubscriptionStatus(s).value for s in statuses]),
                )
                .order_by(SubscriptionModel.created_at.desc())
                .limit(1)
            )
            model = result.scalar_one_or_none()
            return self._to_domain(model) if model else None
        except SQLAlchemyError as e:
            logger.error(f"Database error getting latest subscription for user {user_id}: {e}")
            raise DatabaseError(f"Failed to get subscription: {e}", operation="select", table="subscriptions")

    async def has_current_subscription(self, user_id: UUID, exclude_id: Optional[UUID] = None) -> bool:
        query = select(func.count()).select_from(SubscriptionModel).where(
            SubscriptionModel.user_id == user_id,
            SubscriptionModel.status.in_(_CURRENT),
        )
        if exclude_id is not None:
            query = query.where(SubscriptionModel.id != exclude_id)
        try:
            return (await self.session.execute(query)).scalar_one() > 0
        except SQLAlchemyError as e:
            logger.error(f"Database error checking current subscription for user {user_id}: {e}")
            raise DatabaseError(f"Failed to check subscriptions: {e}", operation="select", table="subscriptions")

    async def save(self, subscription: Subscription) -> Subscription:
        try:
            model = await self.session.get(SubscriptionModel, subscription.id)
            if model is None:
                raise DatabaseError(
                    f"Subscription {subscription.id} vanished before update",
                    operation="update",
                    table="subscriptions",
                )
            async with self.session.begin_nested():
                for field, value in subscription.model_dump(exclude={"id", "created_at"}).items():
                    setattr(model, field, value)
            return self._to_domain(model)
        except IntegrityError:
            raise self._duplicate_current(subscription.user_id)
        except SQLAlchemyError as e:
            logger.error(f"Database error updating subscription {subscription.id}: {e}")
            raise DatabaseError(f"Failed to update subscription: {e}", operation="update", table="subscriptions")

    async def delete(self, subscription_id: UUID) -> bool:
        try:
            result = await self.session.execute(
                delete(SubscriptionModel).where(SubscriptionModel.id == subscription_id)
            )
            deleted = result.rowcount > 0
            if deleted:
                logger.info(f"Deleted subscription {subscription_id}")
            return deleted
        except SQLAlchemyError as e:
            logger.error(f"Database error deleting subscription {subscription_id}: {e}")
            raise DatabaseError(f"Failed to delete subscription: {e}", operation="delete", table="subscriptions")

    async def count_by_status(self) -> Dict[str, int]:
        try:
            result = await self.session.execute(
                select(SubscriptionModel.status, func.count()).group_by(SubscriptionModel.status)
            )
            return {status: count for status, count in result.all()}
        except SQLAlchemyError as e:
            logger.error(f"Database error counting subscriptions: {e}")
            raise DatabaseError(f"Failed to count subscriptions: {e}", operation="select", table="subscriptions")

    async def find_expired_without_auto_renew(self, now: datetime) -> List[Subscription]:
        return await self._fetch_all(
            select(SubscriptionModel).where(
                SubscriptionModel.status.in_(_CURRENT),
                SubscriptionModel.is_auto_renew.is_(False),
                SubscriptionModel.end_date <= now,
            )
        )

    async def find_due_for_renewal(self, until: datetime) -> List[Subscription]:
        return await self._fetch_all(
            select(SubscriptionModel)
            .where(
                SubscriptionModel.status == SubscriptionStatus.ACTIVE.value,
                SubscriptionModel.is_auto_renew.is_(True),
                SubscriptionModel.end_date <= until,
            )
            .order_by(SubscriptionModel.end_date)
        )

    async def find_grace_period_elapsed(self, now: datetime) -> List[Subscription]:
        return await self._fetch_all(
            select(SubscriptionModel).where(
                SubscriptionModel.status == SubscriptionStatus.PAST_DUE.value,
                SubscriptionModel.grace_period_end_date.is_not(None),
                SubscriptionModel.grace_period_end_date <= now,
            )
        )

    async def find_ending_between(self, start: datetime, end: datetime) -> List[Subscription]:
        return await self._fetch_all(
            select(SubscriptionModel).where(
                SubscriptionModel.status.in_(_CURRENT),
                SubscriptionModel.end_date >= start,
                SubscriptionModel.end_date < end,
            )
        )

    async def record_renewal(
        self,
        subscription_id: UUID,
        period_start: datetime,
        period_end: datetime,
        renewal_number: int,
        source: str = "api",
    ) -> bool:
        try:
            async with self.session.begin_nested():
                self.session.add(SubscriptionRenewalModel(
                    subscription_id=subscription_id,
                    period_start=period_start,
                    period_end=period_end,
                    renewal_number=renewal_number,
                    source=source,
                ))
            return True
        except IntegrityError:
            logger.warning(
                f"Subscription {subscription_id} already renewed for period ending {period_end.isoformat()}"
            )
            return False
        except SQLAlchemyError as e:
            logger.error(f"Database error recording renewal for subscription {subscription_id}: {e}")
            raise DatabaseError(f"Failed to record renewal: {e}", operation="insert", table="subscription_renewals")
