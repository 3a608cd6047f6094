# 📄 File: billing_engine/modules/subscriptions/presentation/dependencies.py
# 🧭 Purpose (Layman Explanation):
# Hands each subscription endpoint a ready-to-use service wired to this request's database
# session, and tells endpoints who is calling.
# 🧪 Purpose (Technical Summary):
# FastAPI dependency providers for SubscriptionService (repositories bound to the request
# session) and for the caller id placed on request.state by the request middleware.
# 🔗 Dependencies:
# FastAPI, SQLAlchemy AsyncSession, repository implementations
# 🔄 Connected Modules / Calls From:
# presentation/api/v1/subscriptions.py, plans.py, users.py, payments endpoints

from typing import Optional
from uuid import UUID

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from billing_engine.modules.subscriptions.domain.services.subscription_service import SubscriptionService
from billing_engine.modules.subscriptions.infrastructure.database.plan_repository_impl import PlanRepositoryImpl
from billing_engine.modules.subscriptions.infrastructure.database.subscription_repository_impl import (
    SubscriptionRepositoryImpl,
)
from billing_engine.modules.subscriptions.infrastructure.database.user_repository_impl import UserRepositoryImpl
from billing_engine.shared.core.exceptions import AuthenticationError
from billing_engine.shared.infrastructure.database.session import get_db_session


def build_subscription_service(session: AsyncSession) -> SubscriptionService:
    return SubscriptionService(
        subscription_repository=SubscriptionRepositoryImpl(session),
        plan_repository=PlanRepositoryImpl(session),
        user_repository=UserRepositoryImpl(session),
    )


async def get_subscription_service(
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionService:
    return build_subscription_service(db)


def get_optional_caller_id(request: Request) -> Optional[UUID]:
    return getattr(request.state, "user_id", None)


def get_caller_id(caller_id: Optional[UUID] = Depends(get_optional_caller_id)) -> UUID:
    """Caller id is required for self-service endpoints."""
    if caller_id is None:
        raise AuthenticationError()
    return caller_id
