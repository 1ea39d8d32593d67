import os

# Settings are read once at import time; keep the suite off the on-disk database.
os.environ.setdefault("EXPENSES_DATABASE_URL", "sqlite://")
os.environ.setdefault("EXPENSES_AUTH_SECRET", "test-secret")
