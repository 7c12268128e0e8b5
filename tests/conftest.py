import os

os.environ.setdefault("USAGE_STORE_BACKEND", "memory")
os.environ.setdefault("AUDIT_ENABLED", "0")
os.environ.setdefault("RATE_LIMIT_ENABLED", "0")
