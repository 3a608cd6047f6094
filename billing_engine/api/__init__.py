# 📄 File: billing_engine/api/__init__.py
# 🧭 Purpose (Layman Explanation):
# Marks the api folder as a package: the request-handling layer of the billing engine.
# 🧪 Purpose (Technical Summary):
# Package initialization for the API layer (versioned routers and middleware).
# 🔗 Dependencies:
# None (package initialization)
# 🔄 Connected Modules / Calls From:
# billing_engine.main
