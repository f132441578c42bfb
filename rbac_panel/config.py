"""应用配置（通过 .env 覆盖）。"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# 优先加载项目根目录下的 .env
BASE_DIR = Path(__file__).resolve().parents[1]
load_dotenv(BASE_DIR / ".env")


def _to_int(value: str | None, default: int, *, minimum: int = 0) -> int:
    """安全解析整数环境变量。"""

    try:
        parsed = int(str(value).strip())
    except (TypeError, ValueError):
        return default
    return parsed if parsed >= minimum else default


def _to_bool(value: str | None, default: bool = False) -> bool:
    """安全解析布尔环境变量。"""

    if value is None:
        return default
    return str(value).strip().lower() in {"1", "true", "on", "yes"}


APP_NAME = os.getenv("APP_NAME", "RBAC Panel")
APP_ENV = os.getenv("APP_ENV", "dev")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

MONGO_URL = os.getenv("MONGO_URL", "mongodb://localhost:27017")
MONGO_DB = os.getenv("MONGO_DB", "rbac_panel")

APP_PORT = _to_int(os.getenv("APP_PORT"), 8000, minimum=1)
SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
SESSION_COOKIE = os.getenv("SESSION_COOKIE", "rbac_session")

UVICORN_HOST = os.getenv("UVICORN_HOST", "0.0.0.0")
UVICORN_LOG_LEVEL = os.getenv("UVICORN_LOG_LEVEL", "info")
UVICORN_RELOAD = _to_bool(os.getenv("UVICORN_RELOAD"), default=False)

# 进入 /admin 必须持有的角色，未持有时直接销毁会话
PANEL_ROLE = os.getenv("PANEL_ROLE", "admin").strip() or "admin"
GUARD_LAST_ADMIN = _to_bool(os.getenv("GUARD_LAST_ADMIN"), default=True)

DEFAULT_ADMIN_EMAIL = os.getenv("DEFAULT_ADMIN_EMAIL", "admin@example.com")
DEFAULT_ADMIN_PASSWORD = os.getenv("DEFAULT_ADMIN_PASSWORD", "password")

PASSWORD_MIN_LENGTH = _to_int(os.getenv("PASSWORD_MIN_LENGTH"), 8, minimum=6)
OTP_LENGTH = _to_int(os.getenv("OTP_LENGTH"), 4, minimum=4)
OTP_TTL_MINUTES = _to_int(os.getenv("OTP_TTL_MINUTES"), 15, minimum=1)
# 连续输错达到次数后验证码作废，需重新发送
OTP_MAX_ATTEMPTS = _to_int(os.getenv("OTP_MAX_ATTEMPTS"), 5, minimum=1)

DATATABLE_MAX_LENGTH = _to_int(os.getenv("DATATABLE_MAX_LENGTH"), 100, minimum=10)
