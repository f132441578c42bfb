"""后台鉴权中间件。

/admin 下的请求依次经过：登录检查 -> 后台角色检查 -> CSRF 检查 -> 路由权限检查。
角色检查失败时销毁会话并跳回登录页，而不是返回 403。
"""

from __future__ import annotations

from html import escape
import logging
from urllib.parse import quote

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import HTMLResponse, JSONResponse, RedirectResponse, Response

from rbac_panel.apps.admin.errors import end_session
from rbac_panel.apps.admin.rendering import wants_json
from rbac_panel.config import PANEL_ROLE
from rbac_panel.services import csrf_service, permission_service, role_service
from rbac_panel.services.exceptions import SessionInvalidatedError

logger = logging.getLogger(__name__)

GUEST_PATHS = {
    "/admin/login",
    "/admin/logout",
    "/admin/forgot-password",
    "/admin/reset-password",
}


def forbidden_response(request: Request, message: str) -> Response:
    """返回统一的 403 响应。"""

    if wants_json(request):
        return JSONResponse(
            status_code=403,
            content={"success": False, "message": message, "error_code": "permission_denied"},
        )
    if request.headers.get("HX-Request") == "true":
        return HTMLResponse(content=message, status_code=403)

    content = (
        "<!doctype html><html lang='zh-CN'><head><meta charset='utf-8' />"
        "<meta name='viewport' content='width=device-width, initial-scale=1' />"
        "<title>403 无权限</title></head><body style='font-family: sans-serif; padding: 2rem;'>"
        "<h1 style='margin: 0 0 0.75rem;'>403 无权限</h1>"
        f"<p style='margin: 0;'>{escape(message)}</p>"
        "</body></html>"
    )
    return HTMLResponse(content=content, status_code=403)


async def csrf_passed(request: Request) -> bool:
    """非安全方法必须携带与会话一致的 CSRF token（表单字段或请求头）。"""

    if request.method.upper() in csrf_service.SAFE_METHODS:
        return True

    expected = request.session.get(csrf_service.CSRF_SESSION_KEY)
    submitted = request.headers.get(csrf_service.CSRF_HEADER)
    if not submitted:
        content_type = request.headers.get("content-type", "")
        if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
            # 先缓存请求体，下游路由仍可再次读取表单
            await request.body()
            form_data = await request.form()
            value = form_data.get(csrf_service.CSRF_FORM_FIELD)
            submitted = value if isinstance(value, str) else None
    return csrf_service.tokens_match(expected, submitted)


def login_redirect(request: Request) -> RedirectResponse:
    next_url = request.url.path
    if request.url.query:
        next_url = f"{next_url}?{request.url.query}"
    return RedirectResponse(url=f"/admin/login?next={quote(next_url, safe='/')}", status_code=302)


class AdminAuthMiddleware(BaseHTTPMiddleware):
    """Session 登录 + 角色 + 权限三段式鉴权中间件。"""

    def __init__(self, app, exempt_paths: set[str] | None = None, panel_role: str = PANEL_ROLE):
        super().__init__(app)
        self.exempt_paths = GUEST_PATHS | (exempt_paths or set())
        self.panel_role = panel_role

    async def dispatch(self, request: Request, call_next) -> Response:
        path = request.url.path

        if path.startswith("/static") or not path.startswith("/admin"):
            return await call_next(request)

        if path.rstrip("/") in self.exempt_paths:
            if not await csrf_passed(request):
                return forbidden_response(request, "页面已过期，请刷新后重试。")
            return await call_next(request)

        if not request.session.get("user_id"):
            return login_redirect(request)

        context = await permission_service.resolve_auth_context(request)
        try:
            permission_service.ensure_panel_access(context, self.panel_role)
        except SessionInvalidatedError as exc:
            logger.warning(
                "后台角色校验失败，销毁会话: user_id=%s path=%s",
                request.session.get("user_id"),
                path,
            )
            return end_session(request, exc.message)

        if not await csrf_passed(request):
            return forbidden_response(request, "页面已过期，请刷新后重试。")

        needed = permission_service.required_permission(path, request.method)
        if needed is None:
            return forbidden_response(request, "当前请求未注册权限映射，已被系统拒绝访问。")

        if not permission_service.can(context, needed):
            logger.info("拒绝访问: user=%s permission=%s path=%s", context.user_id, needed, path)
            return forbidden_response(request, "当前账号没有执行该操作的权限。")

        structure = await role_service.get_permission_structure()
        request.state.permission_groups = permission_service.filter_structure(structure, context.permissions)
        return await call_next(request)
