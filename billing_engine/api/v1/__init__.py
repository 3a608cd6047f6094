# 📄 File: billing_engine/api/v1/__init__.py
# 🧭 Purpose (Layman Explanation):
# Version 1 of the billing API, kept in its own folder so later versions can be added without
# breaking existing clients.
# 🧪 Purpose (Technical Summary):
# Package initialization for API version 1 with its route prefixes.
# 🔗 Dependencies:
# None
# 🔄 Connected Modules / Calls From:
# billing_engine.api.v1.router, billing_engine.main

__api_version__ = "v1"

ROUTE_PREFIXES = {
    "subscriptions": "/subscriptions",
    "plans": "/plans",
    "users": "/users",
    "payments": "/payments",
}
