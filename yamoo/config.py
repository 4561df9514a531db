import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"
DATA_DIR.mkdir(exist_ok=True)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in ("true", "1", "yes")


# Application
APP_ENV = os.getenv("APP_ENV", "development")

# Database
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'yamoo.db'}")

# CORS
CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*").split(",")

# Trusted Hosts
TRUSTED_HOSTS = os.getenv("TRUSTED_HOSTS", "").split(",") if os.getenv("TRUSTED_HOSTS") else []

# Rate Limiting
RATE_LIMIT_ENABLED = _env_flag("RATE_LIMIT_ENABLED", "true")
RATE_LIMIT_PAYMENT = os.getenv("RATE_LIMIT_PAYMENT", "10/minute")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# Toss Payments
TOSS_API_BASE = os.getenv("TOSS_API_BASE", "https://api.tosspayments.com/v1")
TOSS_SECRET_KEY = os.getenv("TOSS_SECRET_KEY", "")
TOSS_TIMEOUT_SECONDS = float(os.getenv("TOSS_TIMEOUT_SECONDS", "30"))

# Cron
CRON_SECRET = os.getenv("CRON_SECRET", "")
MAX_BILLING_RETRIES = int(os.getenv("MAX_BILLING_RETRIES", "3"))

# N8N notification webhooks (read once at startup)
N8N_WEBHOOK_URL = os.getenv("N8N_WEBHOOK_URL", "").strip()
ENABLE_N8N_NOTIFICATION_WEBHOOKS = _env_flag("ENABLE_N8N_NOTIFICATION_WEBHOOKS", "false")

# JWT: no default, must be set via env in production
_jwt_secret_raw = os.getenv("JWT_SECRET_KEY", "").strip()
if not _jwt_secret_raw and APP_ENV != "development":
    raise RuntimeError(
        "JWT_SECRET_KEY 환경변수가 설정되지 않았습니다. "
        "프로덕션 환경에서는 반드시 강력한 랜덤 시크릿을 설정하세요."
    )
JWT_SECRET_KEY = _jwt_secret_raw or "yamoo-dev-secret-key-change-in-production"  # dev-only fallback
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
