"""Admin 渲染与响应公共工具。"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from fasthx.jinja import Jinja
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from fastapi.templating import Jinja2Templates

from rbac_panel.apps.admin.navigation import build_navigation_context
from rbac_panel.config import APP_NAME
from rbac_panel.services import csrf_service, permission_service

BASE_DIR = Path(__file__).resolve().parent
TEMPLATES_DIR = BASE_DIR / "templates"

templates = Jinja2Templates(directory=str(TEMPLATES_DIR))
jinja = Jinja(templates)

FLASH_SESSION_KEY = "flash"


def fmt_dt(value: datetime | None) -> str:
    """格式化日期时间，统一页面展示精度。"""

    if not value:
        return ""
    if value.tzinfo is None:
        return value.strftime("%Y-%m-%d %H:%M")
    return value.astimezone().strftime("%Y-%m-%d %H:%M")


templates.env.filters["fmt_dt"] = fmt_dt


@dataclass(frozen=True, slots=True)
class TemplatePayload:
    """动态模板渲染载体。"""

    template: str
    context: dict[str, Any]


def render_template_payload(
    result: TemplatePayload,
    *,
    context: dict[str, Any],
    request: Request,
) -> str:
    """根据 payload 指定的模板和上下文渲染 HTML。"""

    rendered = templates.TemplateResponse(
        name=result.template,
        context=result.context,
        request=request,
    )
    return bytes(rendered.body).decode(rendered.charset)


def push_flash(request: Request, message: str, variant: str = "success") -> None:
    request.session[FLASH_SESSION_KEY] = {"message": message, "variant": variant}


def pop_flash(request: Request) -> dict[str, str] | None:
    flash = request.session.pop(FLASH_SESSION_KEY, None)
    return flash if isinstance(flash, dict) else None


def guest_context(request: Request) -> dict[str, Any]:
    """登录、找回密码等未登录页面的基础上下文。"""

    return {
        "request": request,
        "app_name": APP_NAME,
        "csrf_token": csrf_service.ensure_csrf_token(request.session),
        "flash": pop_flash(request),
    }


def base_context(request: Request) -> dict[str, Any]:
    """构建 Admin 页面的基础上下文，按钮与菜单统一经 can 判断。"""

    auth = getattr(request.state, "auth", None) or permission_service.ANONYMOUS
    permission_groups = getattr(request.state, "permission_groups", None) or {}

    def can(permission: str) -> bool:
        return permission_service.can(auth, permission)

    return {
        **guest_context(request),
        "current_user": request.session.get("user_name"),
        "auth": auth,
        "can": can,
        "nav": build_navigation_context(request.url.path, auth, permission_groups),
    }


def is_htmx_request(request: Request) -> bool:
    """判断请求是否来自 HTMX。"""

    return request.headers.get("hx-request", "").strip().lower() == "true"


def wants_json(request: Request) -> bool:
    """数据表、删除按钮等脚本请求期望 JSON 响应。"""

    accept = request.headers.get("accept", "").lower()
    requested_with = request.headers.get("x-requested-with", "").lower()
    return "application/json" in accept or requested_with == "xmlhttprequest"


def set_form_error_status(response: Response, request: Request) -> None:
    """统一设置表单校验失败时的状态码策略。"""

    response.status_code = 200 if is_htmx_request(request) else 422


def json_result(
    success: bool,
    message: str,
    data: Any = None,
    *,
    status_code: int = 200,
) -> JSONResponse:
    """删除等脚本操作统一返回 {success, message, data}。"""

    return JSONResponse(
        status_code=status_code,
        content={"success": success, "message": message, "data": data},
    )


async def read_request_list(request: Request, key: str) -> list[str]:
    """读取多选字段（如 permissions[]），去重并保持顺序。"""

    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" not in content_type and "multipart/form-data" not in content_type:
        return []

    form_data = await request.form()
    items = [str(item).strip() for item in form_data.getlist(key) if str(item).strip()]
    return list(dict.fromkeys(items))


ACTION_LABELS = {
    "view": "查看",
    "edit": "编辑",
    "delete": "删除",
}


def row_actions(
    auth: permission_service.AuthContext | None,
    resource: str,
    item_id: str,
    *,
    allow_delete: bool = True,
) -> list[dict[str, str]]:
    """数据表操作列：只输出当前账号持有对应权限的按钮。"""

    routes = {
        "view": f"/admin/{resource}/{item_id}",
        "edit": f"/admin/{resource}/{item_id}/edit",
        "delete": f"/admin/{resource}/{item_id}",
    }
    actions: list[dict[str, str]] = []
    for action, route in routes.items():
        if action == "delete" and not allow_delete:
            continue
        if permission_service.can(auth, f"{resource}.{action}"):
            actions.append({"type": action, "label": ACTION_LABELS[action], "route": route})
    return actions
