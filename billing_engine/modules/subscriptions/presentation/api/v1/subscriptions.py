# 📄 File: billing_engine/modules/subscriptions/presentation/api/v1/subscriptions.py
#
# 🧭 Purpose (Layman Explanation):
# The web endpoints for subscriptions: sign a user up, look subscriptions up, change plans,
# renew, cancel and see how many subscriptions are in each state.
#
# 🧪 Purpose (Technical Summary):
# FastAPI router exposing the subscription lifecycle operations of SubscriptionService.
# Domain exceptions propagate to the application exception handler.
#
# 🔗 Dependencies:
# - FastAPI router, Query parameters, status codes
# - SubscriptionService (via presentation.dependencies)
# - subscription_schemas (request/response schemas)
#
# 🔄 Connected Modules / Calls From:
# - billing_engine.api.v1.router (router inclusion)

"""
Subscriptions API Endpoints

Endpoints:
- POST /: Create a subscription for a user (administrative)
- POST /subscribe: Create a subscription for the calling user
- GET /: List subscriptions (paginated, filterable)
- GET /stats: Counts by status
- GET /user/{user_id}: A user's subscriptions
- GET /{subscription_id}: Get one subscription
- PATCH /{subscription_id}: Partial update
- POST /{subscription_id}/change-plan: Switch plan with immediate effect
- POST /{subscription_id}/renew: Renew one billing period
- POST /{subscription_id}/cancel: Cancel
- DELETE /{subscription_id}: Administrative removal
"""

import logging
import math
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from billing_engine.modules.subscriptions.domain.models.subscription import SubscriptionStatus
from billing_engine.modules.subscriptions.domain.services.subscription_service import SubscriptionService
from billing_engine.modules.subscriptions.presentation.api.schemas.subscription_schemas import (
    CancelRequest,
    ChangePlanRequest,
    RenewRequest,
    SubscribeRequest,
    SubscriptionCreateRequest,
    SubscriptionListResponse,
    SubscriptionResponse,
    SubscriptionStatsResponse,
    SubscriptionUpdateRequest,
)
from billing_engine.modules.subscriptions.presentation.dependencies import (
    get_caller_id,
    get_subscription_service,
)

logger = logging.getLogger(__name__)

subscriptions_router = APIRouter()


@subscriptions_router.post(
    "",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create subscription",
    responses={
        404: {"description": "User or plan not found"},
        409: {"description": "User already has an active or trial subscription"},
    }
)
async def create_subscription(
    request: SubscriptionCreateRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = await service.create_subscription(
        user_id=request.user_id,
        plan_id=request.plan_id,
        start_date=request.start_date,
        end_date=request.end_date,
        status=request.status,
        is_auto_renew=request.is_auto_renew,
    )
    return SubscriptionResponse.model_validate(subscription)


@subscriptions_router.post(
    "/subscribe",
    response_model=SubscriptionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Subscribe the calling user to a plan",
)
async def subscribe(
    request: SubscribeRequest,
    caller_id: UUID = Depends(get_caller_id),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = await service.subscribe(caller_id, request.plan_id, is_auto_renew=request.is_auto_renew)
    return SubscriptionResponse.model_validate(subscription)


@subscriptions_router.get(
    "",
    response_model=SubscriptionListResponse,
    summary="List subscriptions",
)
async def list_subscriptions(
    status_filter: Optional[SubscriptionStatus] = Query(None, alias="status"),
    user_id: Optional[UUID] = Query(None),
    plan_id: Optional[UUID] = Query(None),
    is_auto_renew: Optional[bool] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionListResponse:
    items, total = await service.list_subscriptions(
        status=status_filter,
        user_id=user_id,
        plan_id=plan_id,
        is_auto_renew=is_auto_renew,
        page=page,
        limit=limit,
    )
    return SubscriptionListResponse(
        items=[SubscriptionResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        limit=limit,
        pages=math.ceil(total / limit) if total else 0,
    )


@subscriptions_router.get(
    "/stats",
    response_model=SubscriptionStatsResponse,
    summary="Subscription counts by status",
)
async def get_subscription_stats(
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionStatsResponse:
    stats = await service.get_stats()
    total = stats.pop("total")
    return SubscriptionStatsResponse(total=total, by_status=stats)


@subscriptions_router.get(
    "/user/{user_id}",
    response_model=List[SubscriptionResponse],
    summary="List a user's subscriptions",
)
async def get_user_subscriptions(
    user_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> List[SubscriptionResponse]:
    subscriptions = await service.find_by_user(user_id)
    return [SubscriptionResponse.model_validate(item) for item in subscriptions]


@subscriptions_router.get(
    "/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Get subscription",
)
async def get_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    return SubscriptionResponse.model_validate(await service.get_subscription(subscription_id))


@subscriptions_router.patch(
    "/{subscription_id}",
    response_model=SubscriptionResponse,
    summary="Update subscription",
)
async def update_subscription(
    subscription_id: UUID,
    request: SubscriptionUpdateRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    updates = request.model_dump(exclude_unset=True)
    subscription = await service.update_subscription(subscription_id, updates)
    return SubscriptionResponse.model_validate(subscription)


@subscriptions_router.post(
    "/{subscription_id}/change-plan",
    response_model=SubscriptionResponse,
    summary="Change plan",
    responses={400: {"description": "New plan is the same as the current plan"}},
)
async def change_plan(
    subscription_id: UUID,
    request: ChangePlanRequest,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = await service.change_plan(subscription_id, request.plan_id)
    return SubscriptionResponse.model_validate(subscription)


@subscriptions_router.post(
    "/{subscription_id}/renew",
    response_model=SubscriptionResponse,
    summary="Renew subscription",
    responses={409: {"description": "Subscription is cancelled or already renewed for this period"}},
)
async def renew_subscription(
    subscription_id: UUID,
    request: Optional[RenewRequest] = None,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    custom_end_date = request.end_date if request else None
    subscription = await service.renew(subscription_id, custom_end_date=custom_end_date)
    return SubscriptionResponse.model_validate(subscription)


@subscriptions_router.post(
    "/{subscription_id}/cancel",
    response_model=SubscriptionResponse,
    summary="Cancel subscription",
    responses={409: {"description": "Subscription is already cancelled"}},
)
async def cancel_subscription(
    subscription_id: UUID,
    request: Optional[CancelRequest] = None,
    service: SubscriptionService = Depends(get_subscription_service),
) -> SubscriptionResponse:
    subscription = await service.cancel(subscription_id, reason=request.reason if request else None)
    return SubscriptionResponse.model_validate(subscription)


@subscriptions_router.delete(
    "/{subscription_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete subscription",
)
async def delete_subscription(
    subscription_id: UUID,
    service: SubscriptionService = Depends(get_subscription_service),
) -> Response:
    await service.delete(subscription_id)
    logger.info(f"Subscription {subscription_id} deleted")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
