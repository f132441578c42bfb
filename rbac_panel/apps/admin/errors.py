"""业务异常到 HTTP 响应的统一映射。"""

from __future__ import annotations

import logging
from typing import Any, cast

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.responses import Response

from rbac_panel.apps.admin.rendering import push_flash, templates, wants_json
from rbac_panel.services import csrf_service
from rbac_panel.services.exceptions import AppError, SessionInvalidatedError

logger = logging.getLogger(__name__)

LOGIN_PATH = "/admin/login"


def end_session(request: Request, message: str) -> RedirectResponse:
    """销毁会话并换发 CSRF token，带提示跳回登录页。"""

    request.session.clear()
    csrf_service.rotate_csrf_token(request.session)
    push_flash(request, message, "error")
    return RedirectResponse(url=LOGIN_PATH, status_code=302)


def error_response(request: Request, message: str, error_code: str, status_code: int) -> Response:
    if wants_json(request):
        return JSONResponse(
            status_code=status_code,
            content={"success": False, "message": message, "error_code": error_code},
        )
    return templates.TemplateResponse(
        name="pages/error.html",
        context={"request": request, "status_code": status_code, "message": message},
        request=request,
        status_code=status_code,
    )


async def app_error_handler(request: Request, exc: AppError) -> Response:
    if isinstance(exc, SessionInvalidatedError):
        logger.warning("会话已销毁: path=%s reason=%s", request.url.path, exc.message)
        return end_session(request, exc.message)

    logger.warning(
        "业务异常: path=%s error_code=%s message=%s details=%s",
        request.url.path,
        exc.error_code,
        exc.message,
        exc.details,
    )
    return error_response(request, exc.message, exc.error_code, exc.status_code)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AppError, cast(Any, app_error_handler))
