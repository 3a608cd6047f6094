# 📄 File: billing_engine/__init__.py
#
# 🧭 Purpose (Layman Explanation):
# Tells Python this folder holds the billing engine: the service that runs subscriptions,
# takes payments through Stripe and keeps both in step.
#
# 🧪 Purpose (Technical Summary):
# Package initialization with version metadata for the subscription billing and
# payment reconciliation service.
#
# 🔗 Dependencies:
# - None
#
# 🔄 Connected Modules / Calls From:
# - billing_engine.main, celery_config

"""
Billing Engine - subscription billing and payment reconciliation.
"""

__version__ = "1.0.0"
__title__ = "Billing Engine API"
__description__ = "Subscription billing and payment reconciliation engine"
