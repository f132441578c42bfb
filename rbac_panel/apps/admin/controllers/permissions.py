"""权限注册表管理控制器。"""

from __future__ import annotations

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
    render_template_payload,
    row_actions,
    set_form_error_status,
)
from rbac_panel.services import datatable_service, permission_service, registry_service, validators
from rbac_panel.services.exceptions import AppError, DuplicateNameError

router = APIRouter(prefix="/admin")


def build_form_data(values: dict[str, Any]) -> dict[str, str]:
    """构建权限表单默认值。"""

    return {
        "name": str(values.get("name") or "").strip(),
        "label": str(values.get("label") or "").strip(),
        "group": str(values.get("group") or "").strip(),
    }


def form_errors(form: dict[str, str]) -> list[str]:
    errors: list[str] = []
    name_error = validators.validate_permission_name(form["name"])
    if name_error:
        errors.append(name_error)
    if len(form["label"]) > 255:
        errors.append("显示名称不能超过 255 个字符")
    if len(form["group"]) > 255:
        errors.append("分组不能超过 255 个字符")
    return errors


async def form_context(
    request: Request,
    *,
    mode: str,
    action: str,
    form: dict[str, str],
    errors: list[str],
) -> dict[str, Any]:
    return {
        **base_context(request),
        "mode": mode,
        "action": action,
        "form": form,
        "errors": errors,
        "groups": await registry_service.list_groups(),
    }


@router.get("/permissions")
@jinja.page("pages/permissions/index.html")
async def permissions_page(request: Request) -> dict[str, Any]:
    """权限列表页。"""

    context = base_context(request)
    return {**context, "flags": permission_service.build_flags(context["auth"], "permissions")}


@router.get("/permissions/data")
async def permissions_data(request: Request) -> JSONResponse:
    """权限数据表；未填写分组的显示为 General。"""

    auth = await permission_service.resolve_auth_context(request)
    rows = [
        {
            "id": str(item.id),
            "name": item.name,
            "label": registry_service.permission_label(item.name, item.label),
            "group": registry_service.format_group_title(item.group),
            "created_at": item.created_at.isoformat(),
            "action": row_actions(auth, "permissions", str(item.id)),
        }
        for item in await registry_service.list_all()
    ]
    table = datatable_service.parse_request(request.query_params)
    return JSONResponse(datatable_service.build_response(table, rows, search_fields=("name", "label", "group")))


@router.get("/permissions/new")
@jinja.page("pages/permissions/form.html")
async def permissions_new(request: Request) -> dict[str, Any]:
    """新建权限表单。"""

    return await form_context(
        request,
        mode="create",
        action="/admin/permissions",
        form=build_form_data({}),
        errors=[],
    )


@router.post("/permissions")
@fasthx_page(render_template_payload)
async def permissions_create(
    request: Request,
    response: Response,
    name: str = Form(""),
    label: str = Form(""),
    group: str = Form(""),
) -> Response | TemplatePayload:
    """登记新权限。"""

    form = build_form_data({"name": name, "label": label, "group": group})
    errors = form_errors(form)
    if not errors:
        try:
            permission = await registry_service.create_permission(form["name"], form["label"], form["group"] or None)
        except DuplicateNameError as exc:
            errors.append(exc.message)

    if errors:
        set_form_error_status(response, request)
        return TemplatePayload(
            template="pages/permissions/form.html",
            context=await form_context(request, mode="create", action="/admin/permissions", form=form, errors=errors),
        )

    push_flash(request, f"权限 {permission.name} 已创建")
    return RedirectResponse(url="/admin/permissions", status_code=302)


@router.get("/permissions/{permission_id}")
@jinja.page("pages/permissions/show.html")
async def permissions_show(request: Request, permission_id: PydanticObjectId) -> dict[str, Any]:
    """权限详情。"""

    permission = await registry_service.get_permission(permission_id)
    context = base_context(request)
    return {
        **context,
        "permission": permission,
        "label": registry_service.permission_label(permission.name, permission.label),
        "group_title": registry_service.format_group_title(permission.group),
        "flags": permission_service.build_flags(context["auth"], "permissions"),
    }


@router.get("/permissions/{permission_id}/edit")
@jinja.page("pages/permissions/form.html")
async def permissions_edit(request: Request, permission_id: PydanticObjectId) -> dict[str, Any]:
    """编辑权限表单。"""

    permission = await registry_service.get_permission(permission_id)
    return await form_context(
        request,
        mode="edit",
        action=f"/admin/permissions/{permission_id}",
        form=build_form_data({"name": permission.name, "label": permission.label, "group": permission.group}),
        errors=[],
    )


@router.post("/permissions/{permission_id}")
@fasthx_page(render_template_payload)
async def permissions_update(
    request: Request,
    response: Response,
    permission_id: PydanticObjectId,
    name: str = Form(""),
    label: str = Form(""),
    group: str = Form(""),
) -> Response | TemplatePayload:
    """更新权限；改名会同步到引用它的角色。"""

    await registry_service.get_permission(permission_id)
    form = build_form_data({"name": name, "label": label, "group": group})
    errors = form_errors(form)
    if not errors:
        try:
            permission = await registry_service.update_permission(
                permission_id,
                form["name"],
                form["label"],
                form["group"] or None,
            )
        except DuplicateNameError as exc:
            errors.append(exc.message)

    if errors:
        set_form_error_status(response, request)
        return TemplatePayload(
            template="pages/permissions/form.html",
            context=await form_context(
                request,
                mode="edit",
                action=f"/admin/permissions/{permission_id}",
                form=form,
                errors=errors,
            ),
        )

    permission_service.invalidate_auth_context(request)
    push_flash(request, f"权限 {permission.name} 已更新")
    return RedirectResponse(url="/admin/permissions", status_code=302)


@router.delete("/permissions/{permission_id}")
async def permissions_delete(request: Request, permission_id: PydanticObjectId) -> JSONResponse:
    """删除权限，并从所有角色中移除。"""

    try:
        await registry_service.delete_permission(permission_id)
    except AppError as exc:
        return json_result(False, exc.message, status_code=exc.status_code)

    permission_service.invalidate_auth_context(request)
    return json_result(True, "权限已删除", {"id": str(permission_id)})
