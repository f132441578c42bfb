"""业务异常定义。

服务层只抛出这里的异常，控制器把校验类异常转成表单提示，
其余异常交给 ``register_exception_handlers`` 统一输出。
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """所有业务异常的基类。"""

    message: str = "系统异常"
    error_code: str = "internal_error"
    status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.message = message or self.message
        self.error_code = error_code or self.error_code
        self.details = details or {}
        super().__init__(self.message)


class DuplicateNameError(AppError):
    """名称（或邮箱）唯一性冲突。"""

    message = "名称已存在"
    error_code = "duplicate_name"
    status_code = 409

    def __init__(self, message: str | None = None, *, field: str = "name", value: str = "") -> None:
        self.field = field
        super().__init__(message, details={"field": field, "value": value})


class NotFoundError(AppError):
    """引用的权限、角色或用户不存在。"""

    message = "记录不存在"
    error_code = "not_found"
    status_code = 404

    def __init__(self, message: str | None = None, *, resource: str = "", resource_id: str = "") -> None:
        details: dict[str, Any] = {}
        if resource:
            details["resource"] = resource
        if resource_id:
            details["resource_id"] = resource_id
        super().__init__(message, details=details)


class ProtectedRoleError(AppError):
    """尝试删除或重命名保留角色。"""

    message = "系统保留角色不可删除或重命名"
    error_code = "protected_role"
    status_code = 400


class AuthorizationError(AppError):
    """当前账号缺少执行该操作所需的权限。"""

    message = "当前账号没有执行该操作的权限"
    error_code = "permission_denied"
    status_code = 403


class SelfDeletionError(AuthorizationError):
    """不允许删除当前登录账号。"""

    message = "不能删除当前登录账号"
    error_code = "self_deletion"
    status_code = 400


class LastAdminError(AuthorizationError):
    """操作会导致系统中不再有任何可用的管理员。"""

    message = "至少需要保留一个启用状态的管理员账号"
    error_code = "last_admin"
    status_code = 400


class SessionInvalidatedError(AppError):
    """角色校验失败，会话已被销毁。"""

    message = "账号不存在或没有访问后台所需的权限"
    error_code = "session_invalidated"
    status_code = 401


class OtpError(AppError):
    """验证码缺失、过期或不匹配。"""

    message = "验证码无效"
    error_code = "invalid_otp"
    status_code = 422
