"""
Plan catalog and user directory endpoints.

Endpoints:
- POST /plans: Create a plan (name must be unique)
- GET /plans: List plans
- GET /plans/{plan_id}: Get one plan
- POST /users: Register a billing user
- GET /users/{user_id}: Get one user
"""

import logging
from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from billing_engine.modules.subscriptions.domain.models.plan import Plan
from billing_engine.modules.subscriptions.domain.models.user import User
from billing_engine.modules.subscriptions.domain.services.subscription_service import SubscriptionService
from billing_engine.modules.subscriptions.presentation.api.schemas.subscription_schemas import (
    PlanCreateRequest,
    PlanResponse,
    UserCreateRequest,
    UserResponse,
)
from billing_engine.modules.subscriptions.presentation.dependencies import get_subscription_service

logger = logging.getLogger(__name__)

plans_router = APIRouter()
users_router = APIRouter()


@plans_router.post(
    "",
    response_model=PlanResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create plan",
    responses={409: {"description": "A plan with this name already exists"}},
)
async def create_plan(
    request: PlanCreateRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> PlanResponse:
    plan = await service.create_plan(Plan(**request.model_dump()))
    return PlanResponse.model_validate(plan)


@plans_router.get("", response_model=List[PlanResponse], summary="List plans")
async def list_plans(
    active_only: bool = Query(True),
    service: SubscriptionService = Depends(get_subscription_service),
) -> List[PlanResponse]:
    return [PlanResponse.model_validate(plan) for plan in await service.list_plans(active_only=active_only)]


@plans_router.get("/{plan_id}", response_model=PlanResponse, summary="Get plan")
async def get_plan(
    plan_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> PlanResponse:
    return PlanResponse.model_validate(await service.get_plan(plan_id))


@users_router.post(
    "",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register billing user",
)
async def create_user(
    request: UserCreateRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> UserResponse:
    user = await service.register_user(User(**request.model_dump()))
    return UserResponse.model_validate(user)


@users_router.get("/{user_id}", response_model=UserResponse, summary="Get user")
async def get_user(
    user_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> UserResponse:
    return UserResponse.model_validate(await service.get_user(user_id))
