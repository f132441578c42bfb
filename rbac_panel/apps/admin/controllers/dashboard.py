"""仪表盘控制器。"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse

from rbac_panel.apps.admin.rendering import base_context, jinja
from rbac_panel.models import Permission, Role, User
from rbac_panel.services import permission_service

router = APIRouter(prefix="/admin")


@router.get("")
async def admin_root() -> RedirectResponse:
    return RedirectResponse(url="/admin/dashboard", status_code=302)


@router.get("/dashboard")
@jinja.page("pages/dashboard.html")
async def dashboard_page(request: Request) -> dict[str, Any]:
    """仪表盘：统计卡片按查看权限显示。"""

    context = base_context(request)
    auth = context["auth"]
    stats: list[dict[str, Any]] = []
    if permission_service.can(auth, "users.view"):
        stats.append({"name": "用户", "count": await User.find_all().count(), "url": "/admin/users"})
    if permission_service.can(auth, "roles.view"):
        stats.append({"name": "角色", "count": await Role.find_all().count(), "url": "/admin/roles"})
    if permission_service.can(auth, "permissions.view"):
        stats.append({"name": "权限", "count": await Permission.find_all().count(), "url": "/admin/permissions"})

    return {
        **context,
        "stats": stats,
        "roles": sorted(auth.roles),
        "permission_groups": getattr(request.state, "permission_groups", None) or {},
    }
