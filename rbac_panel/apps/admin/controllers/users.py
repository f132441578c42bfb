"""用户管理控制器（含角色分配）。"""

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
from rbac_panel.config import PASSWORD_MIN_LENGTH
from rbac_panel.models.user import utc_now
from rbac_panel.services import (
    auth_service,
    datatable_service,
    permission_service,
    role_service,
    user_service,
    validators,
)
from rbac_panel.services.exceptions import AppError, AuthorizationError, DuplicateNameError

router = APIRouter(prefix="/admin")

STATUS_META: dict[str, dict[str, str]] = {
    "active": {"label": "启用", "color": "#2f855a"},
    "inactive": {"label": "停用", "color": "#b7791f"},
}


def build_form_data(values: dict[str, Any]) -> dict[str, str]:
    """构建用户表单默认值。"""

    return {
        "first_name": str(values.get("first_name") or "").strip(),
        "last_name": str(values.get("last_name") or "").strip(),
        "email": validators.normalize_email(str(values.get("email") or "")),
        "role_id": str(values.get("role_id") or "").strip(),
        "status": str(values.get("status") or "active"),
        "password": str(values.get("password") or ""),
        "password_confirmation": str(values.get("password_confirmation") or ""),
        "email_verified": "1" if values.get("email_verified") else "",
    }


def form_errors(form: dict[str, str], *, is_create: bool, role_ids: set[str]) -> list[str]:
    """统一校验用户表单字段。"""

    errors: list[str] = []
    if not form["first_name"] or not form["last_name"]:
        errors.append("姓名不能为空")
    if len(form["first_name"]) > 64 or len(form["last_name"]) > 64:
        errors.append("姓名不能超过 64 个字符")

    email_error = validators.validate_email_address(form["email"])
    if email_error:
        errors.append(email_error)
    if form["status"] not in STATUS_META:
        errors.append("状态不合法")
    if form["role_id"] and form["role_id"] not in role_ids:
        errors.append("角色不合法")

    if is_create or form["password"]:
        password_error = validators.validate_password(
            form["password"],
            min_length=PASSWORD_MIN_LENGTH,
            confirm=form["password_confirmation"],
        )
        if password_error:
            errors.append(password_error)
    return errors


async def form_context(
    request: Request,
    *,
    mode: str,
    action: str,
    form: dict[str, str],
    errors: list[str],
    roles: list[Any] | None = None,
) -> dict[str, Any]:
    return {
        **base_context(request),
        "mode": mode,
        "action": action,
        "form": form,
        "errors": errors,
        "roles": roles if roles is not None else await role_service.list_roles(),
        "status_meta": STATUS_META,
    }


def user_matches(row: dict[str, Any], keyword: str) -> bool:
    """按名、姓、全名、邮箱搜索。"""

    fields = (row["first_name"], row["last_name"], row["name"], row["email"])
    return any(keyword in str(value).lower() for value in fields)


@router.get("/users")
@jinja.page("pages/users/index.html")
async def users_page(request: Request) -> dict[str, Any]:
    """用户列表页。"""

    context = base_context(request)
    return {**context, "flags": permission_service.build_flags(context["auth"], "users")}


@router.get("/users/data")
async def users_data(request: Request) -> JSONResponse:
    """用户数据表：不列出管理员，当前账号所在行不输出删除按钮。"""

    auth = await permission_service.resolve_auth_context(request)
    roles = await role_service.list_roles()
    role_names = {role.id: role.name for role in roles}
    admin_ids = {role.id for role in roles if role.name == role_service.ROLE_ADMIN}

    rows: list[dict[str, Any]] = []
    for user in await user_service.list_users():
        if admin_ids.intersection(user.role_ids):
            continue
        user_id = str(user.id)
        rows.append(
            {
                "id": user_id,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "name": user.name,
                "email": user.email,
                "role": ", ".join(role_names[item] for item in user.role_ids if item in role_names),
                "status": user.status,
                "email_verified": user.email_verified_at is not None,
                "created_at": user.created_at.isoformat(),
                "action": row_actions(auth, "users", user_id, allow_delete=user_id != auth.user_id),
            }
        )

    table = datatable_service.parse_request(request.query_params)
    return JSONResponse(
        datatable_service.build_response(
            table,
            rows,
            search_fields=("first_name", "last_name", "name", "email"),
            row_filter=user_matches,
        )
    )


@router.get("/users/new")
@jinja.page("pages/users/form.html")
async def users_new(request: Request) -> dict[str, Any]:
    """新建用户表单，默认选中普通用户角色。"""

    default_role = await role_service.get_role_by_name(role_service.ROLE_USER)
    form = build_form_data({"role_id": str(default_role.id) if default_role else "", "email_verified": True})
    return await form_context(request, mode="create", action="/admin/users", form=form, errors=[])


@router.post("/users")
@fasthx_page(render_template_payload)
async def users_create(
    request: Request,
    response: Response,
    first_name: str = Form(""),
    last_name: str = Form(""),
    email: str = Form(""),
    role_id: str = Form(""),
    status: str = Form("active"),
    password: str = Form(""),
    password_confirmation: str = Form(""),
    email_verified: str = Form(""),
) -> Response | TemplatePayload:
    """创建用户；勾选“邮箱已验证”时记录验证时间。"""

    roles = await role_service.list_roles()
    form = build_form_data(
        {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "role_id": role_id,
            "status": status,
            "password": password,
            "password_confirmation": password_confirmation,
            "email_verified": email_verified,
        }
    )
    errors = form_errors(form, is_create=True, role_ids={str(role.id) for role in roles})
    if not errors:
        try:
            user = await user_service.create_user(
                {
                    "first_name": form["first_name"],
                    "last_name": form["last_name"],
                    "email": form["email"],
                    "status": form["status"],
                    "password_hash": auth_service.hash_password(form["password"]),
                    "email_verified_at": utc_now() if form["email_verified"] else None,
                    "role_ids": [PydanticObjectId(form["role_id"])] if form["role_id"] else [],
                }
            )
        except DuplicateNameError as exc:
            errors.append(exc.message)

    if errors:
        set_form_error_status(response, request)
        return TemplatePayload(
            template="pages/users/form.html",
            context=await form_context(
                request,
                mode="create",
                action="/admin/users",
                form=form,
                errors=errors,
                roles=roles,
            ),
        )

    push_flash(request, f"用户 {user.name} 已创建")
    return RedirectResponse(url="/admin/users", status_code=302)


@router.get("/users/{user_id}")
@jinja.page("pages/users/show.html")
async def users_show(request: Request, user_id: PydanticObjectId) -> dict[str, Any]:
    """用户详情：角色与按分组归类的有效权限。"""

    user = await user_service.get_user(user_id)
    context = base_context(request)
    return {
        **context,
        "user": user,
        "roles": sorted(await permission_service.effective_roles(user_id)),
        "permission_groups": await permission_service.user_permissions_by_group(user_id),
        "status_meta": STATUS_META,
        "flags": permission_service.build_flags(context["auth"], "users"),
        "is_self": str(user.id) == context["auth"].user_id,
    }


@router.get("/users/{user_id}/edit")
@jinja.page("pages/users/form.html")
async def users_edit(request: Request, user_id: PydanticObjectId) -> dict[str, Any]:
    """编辑用户表单。"""

    user = await user_service.get_user(user_id)
    form = build_form_data(
        {
            "first_name": user.first_name,
            "last_name": user.last_name,
            "email": user.email,
            "role_id": str(user.role_ids[0]) if user.role_ids else "",
            "status": user.status,
            "email_verified": user.email_verified_at is not None,
        }
    )
    return await form_context(request, mode="edit", action=f"/admin/users/{user_id}", form=form, errors=[])


@router.post("/users/{user_id}")
@fasthx_page(render_template_payload)
async def users_update(
    request: Request,
    response: Response,
    user_id: PydanticObjectId,
    first_name: str = Form(""),
    last_name: str = Form(""),
    email: str = Form(""),
    role_id: str = Form(""),
    status: str = Form("active"),
    password: str = Form(""),
    password_confirmation: str = Form(""),
    email_verified: str = Form(""),
) -> Response | TemplatePayload:
    """更新用户资料，并把角色重置为表单选中的单个角色；资料与角色一次写入。"""

    user = await user_service.get_user(user_id)
    roles = await role_service.list_roles()
    form = build_form_data(
        {
            "first_name": first_name,
            "last_name": last_name,
            "email": email,
            "role_id": role_id,
            "status": status,
            "password": password,
            "password_confirmation": password_confirmation,
            "email_verified": email_verified,
        }
    )
    errors = form_errors(form, is_create=False, role_ids={str(role.id) for role in roles})
    if not errors:
        payload: dict[str, Any] = {
            "first_name": form["first_name"],
            "last_name": form["last_name"],
            "email": form["email"],
            "status": form["status"],
            "role_ids": [PydanticObjectId(form["role_id"])] if form["role_id"] else [],
        }
        if not form["email_verified"]:
            payload["email_verified_at"] = None
        elif user.email_verified_at is None:
            payload["email_verified_at"] = utc_now()
        if form["password"]:
            payload["password_hash"] = auth_service.hash_password(form["password"])
        try:
            await user_service.update_user(user, payload)
        except (DuplicateNameError, AuthorizationError) as exc:
            errors.append(exc.message)

    if errors:
        set_form_error_status(response, request)
        return TemplatePayload(
            template="pages/users/form.html",
            context=await form_context(
                request,
                mode="edit",
                action=f"/admin/users/{user_id}",
                form=form,
                errors=errors,
                roles=roles,
            ),
        )

    if str(user_id) == request.session.get("user_id"):
        request.session["user_name"] = user.name
    permission_service.invalidate_auth_context(request)
    push_flash(request, f"用户 {user.name} 已更新")
    return RedirectResponse(url="/admin/users", status_code=302)


@router.delete("/users/{user_id}")
async def users_delete(request: Request, user_id: PydanticObjectId) -> JSONResponse:
    """删除用户；不能删除当前登录账号。"""

    try:
        user = await user_service.delete_user(user_id, actor_id=request.session.get("user_id"))
    except AppError as exc:
        return json_result(False, exc.message, status_code=exc.status_code)

    return json_result(True, f"用户 {user.name} 已删除", {"id": str(user_id)})
