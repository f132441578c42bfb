"""表单字段校验与规范化。"""

from __future__ import annotations

import re

from email_validator import EmailNotValidError, validate_email

PERMISSION_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_\-]*(\.[a-z0-9_\-]+)*$")
ROLE_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9 _\-]{0,63}$")


def normalize_email(value: str) -> str:
    """去空格并转小写，唯一性比较统一使用该形式。"""

    return (value or "").strip().lower()


def validate_email_address(value: str) -> str | None:
    if not value:
        return "邮箱不能为空"
    try:
        validate_email(value, check_deliverability=False)
    except EmailNotValidError:
        return "邮箱格式不合法"
    return None


def validate_permission_name(value: str) -> str | None:
    if not value:
        return "权限标识不能为空"
    if len(value) > 255:
        return "权限标识不能超过 255 个字符"
    if not PERMISSION_NAME_PATTERN.fullmatch(value):
        return "权限标识只能包含小写字母、数字、点、下划线和连字符"
    return None


def validate_role_name(value: str) -> str | None:
    if not value:
        return "角色名称不能为空"
    if not ROLE_NAME_PATTERN.fullmatch(value):
        return "角色名称只能包含字母、数字、空格、下划线和连字符，最长 64 个字符"
    return None


def validate_password(value: str, *, min_length: int, confirm: str | None = None) -> str | None:
    if len(value) < min_length:
        return f"密码至少 {min_length} 位"
    if confirm is not None and value != confirm:
        return "两次输入的密码不一致"
    return None
