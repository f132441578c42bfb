"""角色管理控制器。"""

from __future__ import annotations

import logging
from typing import Any

from beanie import PydanticObjectId
from fasthx import page as fasthx_page
from fastapi import APIRouter, Form, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse

from rbac_panel.apps.admin.rendering import (
    TemplatePayload,
    base_context,
    jinja,
    json_result,
    push_flash,
    read_request_list,
    render_template_payload,
    row_actions,
    set_form_error_status,
)
from rbac_panel.services import datatable_service, permission_service, registry_service, role_service, validators
from rbac_panel.services.exceptions import AppError, DuplicateNameError, ProtectedRoleError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")


def form_errors(name: str) -> list[str]:
    error = validators.validate_role_name(name)
    return [error] if error else []


async def form_context(
    request: Request,
    *,
    mode: str,
    action: str,
    form: dict[str, Any],
    errors: list[str],
    role: Any = None,
) -> dict[str, Any]:
    return {
        **base_context(request),
        "mode": mode,
        "action": action,
        "form": form,
        "errors": errors,
        "role": role,
        "permission_structure": await role_service.get_permission_structure(),
        "format_group_title": registry_service.format_group_title,
    }


@router.get("/roles")
@jinja.page("pages/roles/index.html")
async def roles_page(request: Request) -> dict[str, Any]:
    """角色列表页，数据由 /admin/roles/data 提供。"""

    context = base_context(request)
    return {**context, "flags": permission_service.build_flags(context["auth"], "roles")}


@router.get("/roles/data")
async def roles_data(request: Request) -> JSONResponse:
    """角色数据表。保留角色不输出删除按钮。"""

    auth = await permission_service.resolve_auth_context(request)
    rows = [
        {
            "id": str(item["role"].id),
            "name": item["role"].name,
            "permissions_count": item["permission_count"],
            "created_at": item["role"].created_at.isoformat(),
            "action": row_actions(
                auth,
                "roles",
                str(item["role"].id),
                allow_delete=not role_service.is_reserved_role(item["role"].name),
            ),
        }
        for item in await role_service.list_with_permission_counts()
    ]
    table = datatable_service.parse_request(request.query_params)
    return JSONResponse(datatable_service.build_response(table, rows, search_fields=("name",)))


@router.get("/roles/new")
@jinja.page("pages/roles/form.html")
async def roles_new(request: Request) -> dict[str, Any]:
    """新建角色表单。"""

    return await form_context(
        request,
        mode="create",
        action="/admin/roles",
        form={"name": "", "permissions": []},
        errors=[],
    )


@router.post("/roles")
@fasthx_page(render_template_payload)
async def roles_create(
    request: Request,
    response: Response,
    name: str = Form(""),
) -> Response | TemplatePayload:
    """创建角色。"""

    form = {"name": name.strip(), "permissions": await read_request_list(request, "permissions")}
    errors = form_errors(form["name"])
    if not errors:
        try:
            role = await role_service.create_role(form["name"], form["permissions"])
        except DuplicateNameError as exc:
            errors.append(exc.message)

    if errors:
        set_form_error_status(response, request)
        return TemplatePayload(
            template="pages/roles/form.html",
            context=await form_context(request, mode="create", action="/admin/roles", form=form, errors=errors),
        )

    push_flash(request, f"角色 {role.name} 已创建")
    return RedirectResponse(url="/admin/roles", status_code=302)


@router.get("/roles/{role_id}")
@jinja.page("pages/roles/show.html")
async def roles_show(request: Request, role_id: PydanticObjectId) -> dict[str, Any]:
    """角色详情：按分组展示已授予的权限。"""

    role = await role_service.get_role(role_id)
    context = base_context(request)
    return {
        **context,
        "role": role,
        "grouped_permissions": role_service.group_role_permissions(role, await registry_service.list_all()),
        "flags": permission_service.build_flags(context["auth"], "roles"),
        "reserved": role_service.is_reserved_role(role.name),
    }


@router.get("/roles/{role_id}/edit")
@jinja.page("pages/roles/form.html")
async def roles_edit(request: Request, role_id: PydanticObjectId) -> dict[str, Any]:
    """编辑角色表单。"""

    role = await role_service.get_role(role_id)
    return await form_context(
        request,
        mode="edit",
        action=f"/admin/roles/{role_id}",
        form={"name": role.name, "permissions": list(role.permissions)},
        errors=[],
        role=role,
    )


@router.post("/roles/{role_id}")
@fasthx_page(render_template_payload)
async def roles_update(
    request: Request,
    response: Response,
    role_id: PydanticObjectId,
    name: str = Form(""),
) -> Response | TemplatePayload:
    """更新角色；提交的权限集合整体替换原有集合。"""

    role = await role_service.get_role(role_id)
    form = {"name": name.strip(), "permissions": await read_request_list(request, "permissions")}
    errors = form_errors(form["name"])
    if not errors:
        try:
            role = await role_service.update_role(role_id, form["name"], form["permissions"])
        except (DuplicateNameError, ProtectedRoleError) as exc:
            errors.append(exc.message)

    if errors:
        set_form_error_status(response, request)
        return TemplatePayload(
            template="pages/roles/form.html",
            context=await form_context(
                request,
                mode="edit",
                action=f"/admin/roles/{role_id}",
                form=form,
                errors=errors,
                role=role,
            ),
        )

    permission_service.invalidate_auth_context(request)
    push_flash(request, f"角色 {role.name} 已更新")
    return RedirectResponse(url="/admin/roles", status_code=302)


@router.delete("/roles/{role_id}")
async def roles_delete(request: Request, role_id: PydanticObjectId) -> JSONResponse:
    """删除角色；保留角色拒绝删除。"""

    try:
        await role_service.delete_role(role_id)
    except AppError as exc:
        return json_result(False, exc.message, status_code=exc.status_code)

    permission_service.invalidate_auth_context(request)
    return json_result(True, "角色已删除", {"id": str(role_id)})
