"""CSRF Token 管理。"""

from __future__ import annotations

import hmac
import secrets
from typing import Any, MutableMapping

CSRF_SESSION_KEY = "csrf_token"
CSRF_FORM_FIELD = "csrf_token"
CSRF_HEADER = "X-CSRF-Token"
SAFE_METHODS = {"GET", "HEAD", "OPTIONS"}


def ensure_csrf_token(session: MutableMapping[str, Any]) -> str:
    token = session.get(CSRF_SESSION_KEY)
    if not token:
        token = secrets.token_urlsafe(32)
        session[CSRF_SESSION_KEY] = token
    return str(token)


def rotate_csrf_token(session: MutableMapping[str, Any]) -> str:
    """登录、会话销毁后换发新 token。"""

    token = secrets.token_urlsafe(32)
    session[CSRF_SESSION_KEY] = token
    return token


def tokens_match(expected: str | None, submitted: str | None) -> bool:
    if not expected or not submitted:
        return False
    return hmac.compare_digest(str(expected), str(submitted))
