"""权限注册表服务层。"""

from __future__ import annotations

import logging

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from rbac_panel.models import Permission, Role
from rbac_panel.models.permission import utc_now
from rbac_panel.services.exceptions import DuplicateNameError, NotFoundError

logger = logging.getLogger(__name__)

UNCATEGORIZED_GROUP = "uncategorized"


def format_permission_label(name: str) -> str:
    """由权限名推导展示名：`billing.invoice_void` -> `Billing Invoice Void`。"""

    words = name.replace(".", " ").replace("_", " ").split(" ")
    return " ".join(word[:1].upper() + word[1:] for word in words)


def permission_label(name: str, label: str | None) -> str:
    """所有展示权限名称的地方统一走这里。"""

    return label or format_permission_label(name)


def permission_group_key(group: str | None) -> str:
    return (group or UNCATEGORIZED_GROUP).lower()


def format_group_title(group: str | None) -> str:
    """列表中展示的分组名，空分组显示为 General。"""

    if not group:
        return "General"
    return " ".join(word[:1].upper() + word[1:] for word in group.replace("_", " ").split(" "))


def _clean_group(group: str | None) -> str | None:
    value = (group or "").strip()
    return value or None


async def list_all() -> list[Permission]:
    return await Permission.find_all().sort("_id").to_list()


async def list_groups() -> list[str]:
    """去重后的非空分组，供表单选择或新建分组。"""

    permissions = await list_all()
    return sorted({item.group for item in permissions if item.group})


async def get_permission(permission_id: PydanticObjectId) -> Permission:
    permission = await Permission.get(permission_id)
    if not permission:
        raise NotFoundError("权限不存在", resource="permission", resource_id=str(permission_id))
    return permission


async def get_permission_by_name(name: str) -> Permission | None:
    return await Permission.find_one(Permission.name == name)


async def existing_names(names: set[str] | list[str]) -> set[str]:
    """返回给定名称中实际存在于注册表的部分。"""

    if not names:
        return set()
    found = await Permission.find({"name": {"$in": list(names)}}).to_list()
    return {item.name for item in found}


async def create_permission(name: str, label: str = "", group: str | None = None) -> Permission:
    name = name.strip()
    if await get_permission_by_name(name):
        raise DuplicateNameError("权限标识已存在", value=name)

    permission = Permission(
        name=name,
        label=label.strip(),
        group=_clean_group(group),
        created_at=utc_now(),
        updated_at=utc_now(),
    )
    try:
        await permission.insert()
    except DuplicateKeyError as exc:
        raise DuplicateNameError("权限标识已存在", value=name) from exc

    logger.info("创建权限 %s", name)
    return permission


async def update_permission(
    permission_id: PydanticObjectId,
    name: str,
    label: str = "",
    group: str | None = None,
) -> Permission:
    """更新权限；改名时同步替换所有角色中的旧名称。"""

    permission = await get_permission(permission_id)
    name = name.strip()
    old_name = permission.name

    if name != old_name:
        clash = await get_permission_by_name(name)
        if clash and clash.id != permission.id:
            raise DuplicateNameError("权限标识已存在", value=name)

    permission.name = name
    permission.label = label.strip()
    permission.group = _clean_group(group)
    permission.updated_at = utc_now()
    try:
        await permission.save()
    except DuplicateKeyError as exc:
        raise DuplicateNameError("权限标识已存在", value=name) from exc

    if name != old_name:
        await _rename_in_roles(old_name, name)
        logger.info("权限改名 %s -> %s", old_name, name)
    return permission


async def _rename_in_roles(old_name: str, new_name: str) -> None:
    roles = await Role.find(Role.permissions == old_name).to_list()
    for role in roles:
        renamed = [new_name if item == old_name else item for item in role.permissions]
        role.permissions = list(dict.fromkeys(renamed))
        role.updated_at = utc_now()
        await role.save()


async def delete_permission(permission_id: PydanticObjectId) -> None:
    """删除权限，并先从所有引用它的角色中移除。"""

    permission = await get_permission(permission_id)
    await Role.find(Role.permissions == permission.name).update(
        {"$pull": {"permissions": permission.name}, "$set": {"updated_at": utc_now()}}
    )
    await permission.delete()
    logger.info("删除权限 %s", permission.name)


async def ensure_permissions(definitions: list[dict[str, str]]) -> None:
    """按名称补齐种子权限，已存在的只更新展示名与分组。"""

    for item in definitions:
        permission = await get_permission_by_name(item["name"])
        if not permission:
            await create_permission(item["name"], item.get("label", ""), item.get("group"))
            continue
        permission.label = item.get("label", permission.label)
        permission.group = _clean_group(item.get("group")) or permission.group
        permission.updated_at = utc_now()
        await permission.save()
