"""Root conftest — shared test configuration."""

import os

# Ensure tests never reach a real database or Linear workspace
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("LINEAR_API_KEY", "lin_api_test_fake_key")
os.environ.setdefault("SUPERADMIN_EMAILS_FALLBACK", "")
os.environ.setdefault("LOG_FORMAT", "text")
