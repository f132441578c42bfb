"""登录、个人资料、修改密码、邮箱验证与找回密码控制器。"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote, urlsplit

from fasthx import page as fasthx_page
from fastapi import APIRouter, Form, Request, Response
from fastapi.responses import RedirectResponse

from rbac_panel.apps.admin.rendering import (
    TemplatePayload,
    base_context,
    guest_context,
    jinja,
    push_flash,
    render_template_payload,
)
from rbac_panel.config import PASSWORD_MIN_LENGTH
from rbac_panel.services import (
    auth_service,
    csrf_service,
    otp_service,
    permission_service,
    user_service,
    validators,
)
from rbac_panel.services.exceptions import AuthorizationError, DuplicateNameError, OtpError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin")

DEFAULT_NEXT_PATH = "/admin/dashboard"


def sanitize_next_path(next_url: str | None) -> str:
    """清洗登录跳转地址，避免开放重定向。"""

    raw_value = (next_url or "").strip()
    if not raw_value:
        return DEFAULT_NEXT_PATH

    parsed = urlsplit(raw_value)
    if parsed.scheme or parsed.netloc:
        return DEFAULT_NEXT_PATH
    if not parsed.path.startswith("/") or parsed.path.startswith("//"):
        return DEFAULT_NEXT_PATH
    if not parsed.path.startswith("/admin"):
        return DEFAULT_NEXT_PATH

    if parsed.query:
        return f"{parsed.path}?{parsed.query}"
    return parsed.path


def profile_form(user: Any) -> dict[str, str]:
    return {
        "first_name": user.first_name,
        "last_name": user.last_name,
        "email": user.email,
    }


@router.get("/login")
@jinja.page("pages/login.html")
async def login_page(request: Request, next: str | None = None) -> dict[str, Any]:
    """登录页面。"""

    return {
        **guest_context(request),
        "next": sanitize_next_path(next),
        "email": "",
        "error": "",
    }


@router.post("/login")
@fasthx_page(render_template_payload)
async def login_action(
    request: Request,
    response: Response,
    email: str = Form(""),
    password: str = Form(""),
    next: str = Form(DEFAULT_NEXT_PATH),
) -> Response | TemplatePayload:
    """登录动作。"""

    safe_next = sanitize_next_path(next)
    user = await auth_service.authenticate(email, password)
    if not user:
        logger.info("登录失败: email=%s", validators.normalize_email(email))
        response.status_code = 401
        return TemplatePayload(
            template="pages/login.html",
            context={
                **guest_context(request),
                "next": safe_next,
                "email": email.strip(),
                "error": "邮箱或密码不正确，或账号已被停用。",
            },
        )

    request.session["user_id"] = str(user.id)
    request.session["user_name"] = user.name
    csrf_service.rotate_csrf_token(request.session)
    permission_service.invalidate_auth_context(request)
    logger.info("用户 %s 登录成功", user.email)
    return RedirectResponse(url=safe_next, status_code=302)


@router.get("/logout")
async def logout(request: Request) -> RedirectResponse:
    """退出登录。"""

    request.session.clear()
    csrf_service.rotate_csrf_token(request.session)
    return RedirectResponse(url="/admin/login", status_code=302)


async def _current_user(request: Request) -> Any:
    context = await permission_service.resolve_auth_context(request)
    return context.user


@router.get("/profile")
@jinja.page("pages/profile.html")
async def profile_page(request: Request) -> Response | dict[str, Any]:
    """个人资料页面。"""

    user = await _current_user(request)
    if not user:
        return RedirectResponse(url="/admin/login", status_code=302)

    return {
        **base_context(request),
        "user": user,
        "form": profile_form(user),
        "errors": [],
    }


@router.post("/profile")
@fasthx_page(render_template_payload)
async def profile_update(
    request: Request,
    response: Response,
    first_name: str = Form(""),
    last_name: str = Form(""),
    email: str = Form(""),
) -> Response | TemplatePayload:
    """更新个人资料；修改邮箱后需要重新验证。"""

    user = await _current_user(request)
    if not user:
        return RedirectResponse(url="/admin/login", status_code=302)

    form = {
        "first_name": first_name.strip(),
        "last_name": last_name.strip(),
        "email": validators.normalize_email(email),
    }
    errors: list[str] = []
    if not form["first_name"] or not form["last_name"]:
        errors.append("姓名不能为空")
    email_error = validators.validate_email_address(form["email"])
    if email_error:
        errors.append(email_error)

    if not errors:
        payload: dict[str, Any] = dict(form)
        if form["email"] != user.email:
            payload["email_verified_at"] = None
        try:
            await user_service.update_user(user, payload)
        except DuplicateNameError as exc:
            errors.append(exc.message)

    if errors:
        response.status_code = 422
        return TemplatePayload(
            template="pages/profile.html",
            context={**base_context(request), "user": user, "form": form, "errors": errors},
        )

    request.session["user_name"] = user.name
    push_flash(request, "个人资料已保存")
    return RedirectResponse(url="/admin/profile", status_code=302)


@router.post("/profile/delete")
@fasthx_page(render_template_payload)
async def profile_destroy(
    request: Request,
    response: Response,
    password: str = Form(""),
) -> Response | TemplatePayload:
    """注销当前账号，需要再次输入密码。"""

    user = await _current_user(request)
    if not user:
        return RedirectResponse(url="/admin/login", status_code=302)

    error = ""
    if not auth_service.verify_password(password, user.password_hash):
        error = "密码不正确"
    else:
        try:
            await user_service.delete_user(user.id)
        except AuthorizationError as exc:
            error = exc.message

    if error:
        response.status_code = 422
        return TemplatePayload(
            template="pages/profile.html",
            context={
                **base_context(request),
                "user": user,
                "form": profile_form(user),
                "errors": [],
                "delete_error": error,
            },
        )

    request.session.clear()
    csrf_service.rotate_csrf_token(request.session)
    return RedirectResponse(url="/admin/login", status_code=302)


@router.get("/password")
@jinja.page("pages/password.html")
async def password_page(request: Request) -> dict[str, Any]:
    """修改密码页面。"""

    return {**base_context(request), "error": "", "saved": False}


@router.post("/password")
@fasthx_page(render_template_payload)
async def password_update(
    request: Request,
    response: Response,
    current_password: str = Form(""),
    password: str = Form(""),
    password_confirmation: str = Form(""),
) -> Response | TemplatePayload:
    """更新当前账号密码。"""

    user = await _current_user(request)
    if not user:
        return RedirectResponse(url="/admin/login", status_code=302)

    error = validators.validate_password(password, min_length=PASSWORD_MIN_LENGTH, confirm=password_confirmation)
    if not error and not await auth_service.change_password(user, current_password, password):
        error = "当前密码不正确"

    if error:
        response.status_code = 422
        return TemplatePayload(
            template="pages/password.html",
            context={**base_context(request), "error": error, "saved": False},
        )

    return TemplatePayload(
        template="pages/password.html",
        context={**base_context(request), "error": "", "saved": True},
    )


@router.get("/verify-email")
@jinja.page("pages/verify_email.html")
async def verify_email_page(request: Request) -> dict[str, Any]:
    """邮箱验证页面。"""

    user = await _current_user(request)
    return {**base_context(request), "user": user, "error": ""}


@router.post("/verify-email/send")
async def verify_email_send(request: Request) -> RedirectResponse:
    """向当前邮箱发送验证码。"""

    user = await _current_user(request)
    if user.email_verified_at is not None:
        push_flash(request, "邮箱已验证，无需重复操作", "info")
        return RedirectResponse(url="/admin/profile", status_code=302)

    purpose = otp_service.OtpPurpose.EMAIL_VERIFICATION
    await otp_service.generate_otp(user, purpose)
    push_flash(request, purpose.message)
    return RedirectResponse(url="/admin/verify-email", status_code=302)


@router.post("/verify-email")
@fasthx_page(render_template_payload)
async def verify_email_confirm(
    request: Request,
    response: Response,
    code: str = Form(""),
) -> Response | TemplatePayload:
    """提交验证码完成邮箱验证。"""

    user = await _current_user(request)
    try:
        await otp_service.verify_otp(user, code)
    except OtpError as exc:
        response.status_code = 422
        return TemplatePayload(
            template="pages/verify_email.html",
            context={**base_context(request), "user": user, "error": exc.message},
        )

    await otp_service.mark_email_verified(user)
    push_flash(request, "邮箱验证成功")
    return RedirectResponse(url="/admin/profile", status_code=302)


@router.get("/forgot-password")
@jinja.page("pages/forgot_password.html")
async def forgot_password_page(request: Request) -> dict[str, Any]:
    """找回密码页面。"""

    return {**guest_context(request), "email": "", "error": ""}


@router.post("/forgot-password")
@fasthx_page(render_template_payload)
async def forgot_password_action(
    request: Request,
    response: Response,
    email: str = Form(""),
) -> Response | TemplatePayload:
    """发送重置密码验证码；账号是否存在都给出相同提示。"""

    normalized = validators.normalize_email(email)
    error = validators.validate_email_address(normalized)
    if error:
        response.status_code = 422
        return TemplatePayload(
            template="pages/forgot_password.html",
            context={**guest_context(request), "email": email.strip(), "error": error},
        )

    purpose = otp_service.OtpPurpose.PASSWORD_RESET
    user = await user_service.get_user_by_email(normalized)
    if user and user.is_active:
        try:
            await otp_service.generate_otp(user, purpose)
        except OtpError as exc:
            logger.info("跳过发送重置验证码: email=%s reason=%s", normalized, exc.error_code)
    else:
        logger.info("跳过发送重置验证码: email=%s reason=unknown_account", normalized)

    push_flash(request, purpose.message)
    return RedirectResponse(url=f"/admin/reset-password?email={quote(normalized)}", status_code=302)


@router.get("/reset-password")
@jinja.page("pages/reset_password.html")
async def reset_password_page(request: Request, email: str = "") -> dict[str, Any]:
    """输入验证码与新密码。"""

    return {**guest_context(request), "email": email, "error": ""}


@router.post("/reset-password")
@fasthx_page(render_template_payload)
async def reset_password_action(
    request: Request,
    response: Response,
    email: str = Form(""),
    code: str = Form(""),
    password: str = Form(""),
    password_confirmation: str = Form(""),
) -> Response | TemplatePayload:
    """校验验证码后重置密码。"""

    normalized = validators.normalize_email(email)
    error = validators.validate_password(password, min_length=PASSWORD_MIN_LENGTH, confirm=password_confirmation)
    user = None
    if not error:
        user = await user_service.get_user_by_email(normalized)
        if not user:
            error = "未找到验证码或验证码已失效"
    if not error and user is not None:
        try:
            await otp_service.verify_otp(user, code)
        except OtpError as exc:
            error = exc.message

    if error or user is None:
        response.status_code = 422
        return TemplatePayload(
            template="pages/reset_password.html",
            context={**guest_context(request), "email": normalized, "error": error},
        )

    await auth_service.reset_password(user, password)
    push_flash(request, "密码已重置，请使用新密码登录")
    return RedirectResponse(url="/admin/login", status_code=302)
