# Ensures `import audisell` works when the package lives under `backend/audisell`
import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parent
PKG_DIR = ROOT / "backend"
if str(PKG_DIR) not in sys.path:
    sys.path.insert(0, str(PKG_DIR))

_TMP = Path(tempfile.mkdtemp(prefix="audisell-tests-"))

# Default to test env; tests should mock vendors
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_TMP / 'bootstrap.db'}")
os.environ.setdefault("MEDIA_ROOT", str(_TMP / "media"))
os.environ.setdefault("ADMIN_EMAIL", "owner@audisell.com")
os.environ.setdefault("SERVICE_TOKEN", "service-token-for-tests")
os.environ.setdefault("SKIP_STARTUP_MIGRATIONS", "1")
os.environ.setdefault("AI_STUB_MODE", "1")

# Disable rate limits early so routers and slowapi see it at import time
os.environ.setdefault("DISABLE_RATE_LIMITS", "1")

# Vendor keys stay blank so nothing reaches a real API
for _key in ("OPENAI_API_KEY", "GEMINI_API_KEY", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET", "RECAPTCHA_SECRET_KEY"):
    os.environ[_key] = ""
for _key in ("RABBITMQ_URL", "CELERY_EAGER", "REDIS_HOST", "RATE_LIMIT_REDIS_URL", "SENTRY_DSN", "SMTP_HOST"):
    os.environ.pop(_key, None)
