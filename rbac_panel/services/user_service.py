"""用户服务层（含角色分配）。"""

from __future__ import annotations

import logging
import re
from typing import Any

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from rbac_panel.config import GUARD_LAST_ADMIN
from rbac_panel.models import User
from rbac_panel.models.user import utc_now
from rbac_panel.services import role_service
from rbac_panel.services.exceptions import DuplicateNameError, LastAdminError, NotFoundError, SelfDeletionError

logger = logging.getLogger(__name__)


async def list_users(query: str | None = None) -> list[User]:
    if query:
        regex = {"$regex": re.escape(query), "$options": "i"}
        return (
            await User.find({"$or": [{"first_name": regex}, {"last_name": regex}, {"email": regex}]})
            .sort("-created_at")
            .to_list()
        )
    return await User.find_all().sort("-created_at").to_list()


async def get_user(user_id: PydanticObjectId) -> User:
    user = await User.get(user_id)
    if not user:
        raise NotFoundError("用户不存在", resource="user", resource_id=str(user_id))
    return user


async def get_user_by_email(email: str) -> User | None:
    return await User.find_one(User.email == email)


async def create_user(payload: dict[str, Any]) -> User:
    if await get_user_by_email(payload["email"]):
        raise DuplicateNameError("该邮箱已被使用", field="email", value=payload["email"])

    user = User(
        first_name=payload["first_name"],
        last_name=payload["last_name"],
        email=payload["email"],
        password_hash=payload["password_hash"],
        status=payload.get("status", "active"),
        email_verified_at=payload.get("email_verified_at"),
        role_ids=list(payload.get("role_ids", [])),
        created_at=utc_now(),
        updated_at=utc_now(),
    )
    try:
        await user.insert()
    except DuplicateKeyError as exc:
        raise DuplicateNameError("该邮箱已被使用", field="email", value=payload["email"]) from exc

    logger.info("创建用户 %s", user.email)
    return user


async def update_user(user: User, payload: dict[str, Any]) -> User:
    """按 payload 中出现的字段更新，校验全部通过后一次写入。

    password_hash 为空时保留原密码；role_ids 出现时整体替换角色。
    """

    if "email" in payload and payload["email"] != user.email:
        clash = await get_user_by_email(payload["email"])
        if clash and clash.id != user.id:
            raise DuplicateNameError("该邮箱已被使用", field="email", value=payload["email"])

    if "status" in payload and payload["status"] != "active":
        await _ensure_admin_remains(user, remaining_role_ids=None)
    if "role_ids" in payload:
        await _ensure_admin_remains(user, remaining_role_ids=list(payload["role_ids"]))

    for field in ("first_name", "last_name", "email", "status", "email_verified_at"):
        if field in payload:
            setattr(user, field, payload[field])
    if "role_ids" in payload:
        user.role_ids = list(payload["role_ids"])
    if payload.get("password_hash"):
        user.password_hash = payload["password_hash"]
    user.updated_at = utc_now()
    try:
        await user.save()
    except DuplicateKeyError as exc:
        raise DuplicateNameError("该邮箱已被使用", field="email", value=user.email) from exc
    return user


async def delete_user(user_id: PydanticObjectId, *, actor_id: str | None = None) -> User:
    user = await get_user(user_id)
    if actor_id and str(user.id) == str(actor_id):
        raise SelfDeletionError()

    await _ensure_admin_remains(user, remaining_role_ids=None)
    await user.delete()
    logger.info("删除用户 %s", user.email)
    return user


async def assign_role(user_id: PydanticObjectId, role_id: PydanticObjectId) -> User:
    """追加角色，不移除已有角色。"""

    user = await get_user(user_id)
    role = await role_service.get_role(role_id)
    if role.id not in user.role_ids:
        user.role_ids.append(role.id)
        user.updated_at = utc_now()
        await user.save()
        logger.info("用户 %s 分配角色 %s", user.email, role.name)
    return user


async def remove_all_roles(user_id: PydanticObjectId) -> User:
    user = await get_user(user_id)
    await _ensure_admin_remains(user, remaining_role_ids=[])
    user.role_ids = []
    user.updated_at = utc_now()
    await user.save()
    logger.info("用户 %s 已移除全部角色", user.email)
    return user


async def set_single_role(user_id: PydanticObjectId, role_id: PydanticObjectId | None) -> User:
    """清空后只保留一个角色，单文档写入完成。"""

    user = await get_user(user_id)
    new_role_ids: list[PydanticObjectId] = []
    if role_id is not None:
        role = await role_service.get_role(role_id)
        new_role_ids = [role.id]

    await _ensure_admin_remains(user, remaining_role_ids=new_role_ids)
    user.role_ids = new_role_ids
    user.updated_at = utc_now()
    await user.save()
    logger.info("用户 %s 角色设置为 %s", user.email, [str(item) for item in new_role_ids])
    return user


async def users_with_role(role_name: str) -> list[User]:
    role = await role_service.get_role_by_name(role_name)
    if not role:
        return []
    return await User.find(User.role_ids == role.id).to_list()


async def first_user_with_role(role_name: str) -> User | None:
    users = await users_with_role(role_name)
    return users[0] if users else None


async def _ensure_admin_remains(user: User, *, remaining_role_ids: list[PydanticObjectId] | None) -> None:
    """拒绝会让系统失去最后一个启用管理员的操作。

    remaining_role_ids 为 None 表示用户本身将被删除或停用。
    """

    if not GUARD_LAST_ADMIN:
        return

    admin_role = await role_service.get_role_by_name(role_service.ROLE_ADMIN)
    if not admin_role or admin_role.id not in user.role_ids or not user.is_active:
        return
    if remaining_role_ids is not None and admin_role.id in remaining_role_ids:
        return

    other_admins = await User.find(
        User.role_ids == admin_role.id,
        User.status == "active",
        User.id != user.id,
    ).count()
    if other_admins == 0:
        logger.warning("拒绝移除最后一个管理员 %s", user.email)
        raise LastAdminError()
