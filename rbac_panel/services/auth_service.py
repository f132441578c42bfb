"""登录认证与密码服务。"""

from __future__ import annotations

import logging

import bcrypt
from beanie import PydanticObjectId
from bson.errors import InvalidId

from rbac_panel.config import DEFAULT_ADMIN_EMAIL, DEFAULT_ADMIN_PASSWORD
from rbac_panel.models import User
from rbac_panel.models.user import utc_now
from rbac_panel.services import role_service, user_service, validators

logger = logging.getLogger(__name__)


def hash_password(plain: str) -> str:
    """bcrypt 哈希；超过 72 字节的部分会被 bcrypt 截断。"""

    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# 账号不存在时也跑一次 bcrypt，避免通过耗时差异枚举邮箱
_DUMMY_HASH = hash_password("rbac-panel-timing-equalizer")


async def get_user_by_id(user_id: str | None) -> User | None:
    if not user_id:
        return None
    try:
        object_id = PydanticObjectId(user_id)
    except (InvalidId, TypeError, ValueError):
        return None
    return await User.get(object_id)


async def authenticate(email: str, password: str) -> User | None:
    """校验邮箱与密码，停用账号一律视为失败。"""

    user = await user_service.get_user_by_email(validators.normalize_email(email))
    if not user:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    if not user.is_active:
        return None
    return user


async def change_password(user: User, old_password: str, new_password: str) -> bool:
    if not verify_password(old_password, user.password_hash):
        return False
    user.password_hash = hash_password(new_password)
    user.updated_at = utc_now()
    await user.save()
    logger.info("用户 %s 修改了密码", user.email)
    return True


async def reset_password(user: User, new_password: str) -> None:
    user.password_hash = hash_password(new_password)
    user.updated_at = utc_now()
    await user.save()
    logger.info("用户 %s 通过验证码重置了密码", user.email)


async def ensure_default_admin() -> None:
    """没有任何管理员时，按配置创建默认管理员。"""

    if await user_service.first_user_with_role(role_service.ROLE_ADMIN):
        return

    admin_role = await role_service.get_role_by_name(role_service.ROLE_ADMIN)
    if not admin_role:
        return

    email = validators.normalize_email(DEFAULT_ADMIN_EMAIL)
    existing = await user_service.get_user_by_email(email)
    if existing:
        await user_service.assign_role(existing.id, admin_role.id)
        return

    await user_service.create_user(
        {
            "first_name": "Admin",
            "last_name": "User",
            "email": email,
            "password_hash": hash_password(DEFAULT_ADMIN_PASSWORD),
            "status": "active",
            "email_verified_at": utc_now(),
            "role_ids": [admin_role.id],
        }
    )
    logger.info("已创建默认管理员 %s", email)
