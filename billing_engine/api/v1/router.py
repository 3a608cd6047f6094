# 📄 File: billing_engine/api/v1/router.py
# 🧭 Purpose (Layman Explanation):
# The traffic director for version 1 of the API, sending subscription, plan, user and payment
# requests to the code that handles them.
# 🧪 Purpose (Technical Summary):
# API v1 router aggregation combining the health router and every module router under its
# route prefix.
# 🔗 Dependencies:
# FastAPI, billing_engine.api.v1.health, billing_engine.modules.*.presentation.api.v1.*
# 🔄 Connected Modules / Calls From:
# billing_engine.main

import logging

from fastapi import APIRouter

from billing_engine.api.v1 import ROUTE_PREFIXES
from billing_engine.api.v1.health import health_router
from billing_engine.modules.payments.presentation.api.v1.payments import payments_router
from billing_engine.modules.subscriptions.presentation.api.v1.plans import plans_router, users_router
from billing_engine.modules.subscriptions.presentation.api.v1.subscriptions import subscriptions_router

logger = logging.getLogger(__name__)

# Create main API v1 router
api_v1_router = APIRouter()

# Health checks (no prefix - direct access)
api_v1_router.include_router(health_router)

for name, router, tag in [
    ("subscriptions", subscriptions_router, "Subscriptions"),
    ("plans", plans_router, "Plans"),
    ("users", users_router, "Users"),
    ("payments", payments_router, "Payments"),
]:
    api_v1_router.include_router(router, prefix=ROUTE_PREFIXES[name], tags=[tag])
    logger.debug(f"{tag} router loaded at {ROUTE_PREFIXES[name]}")
