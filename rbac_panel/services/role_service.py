"""角色服务层。"""

from __future__ import annotations

import logging
from typing import Any, Iterable

from beanie import PydanticObjectId
from pymongo.errors import DuplicateKeyError

from rbac_panel.models import Permission, Role, User
from rbac_panel.models.role import utc_now
from rbac_panel.services import registry_service
from rbac_panel.services.exceptions import DuplicateNameError, NotFoundError, ProtectedRoleError

logger = logging.getLogger(__name__)

ROLE_ADMIN = "admin"
ROLE_USER = "user"
RESERVED_ROLES = (ROLE_ADMIN, ROLE_USER)


def is_reserved_role(name: str) -> bool:
    return name in RESERVED_ROLES


def build_permission_structure(permissions: Iterable[Any]) -> dict[str, list[dict[str, str]]]:
    """按分组整理权限，分组内保持注册表顺序。"""

    groups: dict[str, list[dict[str, str]]] = {}
    for permission in permissions:
        group_key = registry_service.permission_group_key(permission.group)
        groups.setdefault(group_key, []).append(
            {
                "name": permission.name,
                "label": registry_service.permission_label(permission.name, permission.label),
            }
        )
    return groups


async def get_permission_structure() -> dict[str, list[dict[str, str]]]:
    """每次调用都从注册表重新构建，不做进程级缓存。"""

    return build_permission_structure(await registry_service.list_all())


async def list_roles() -> list[Role]:
    return await Role.find_all().sort("_id").to_list()


async def get_role(role_id: PydanticObjectId) -> Role:
    role = await Role.get(role_id)
    if not role:
        raise NotFoundError("角色不存在", resource="role", resource_id=str(role_id))
    return role


async def get_role_by_name(name: str) -> Role | None:
    return await Role.find_one(Role.name == name)


async def list_role_names() -> set[str]:
    return {role.name for role in await list_roles()}


async def _known_permissions(permission_names: Iterable[str]) -> list[str]:
    """过滤掉注册表中不存在的权限名，保持提交顺序并去重。"""

    requested = list(dict.fromkeys(name.strip() for name in permission_names if name and name.strip()))
    known = await registry_service.existing_names(requested)
    dropped = [name for name in requested if name not in known]
    if dropped:
        logger.warning("忽略未注册的权限: %s", ", ".join(dropped))
    return [name for name in requested if name in known]


async def create_role(name: str, permission_names: Iterable[str] = ()) -> Role:
    name = name.strip()
    if await get_role_by_name(name):
        raise DuplicateNameError("角色名称已存在", value=name)

    role = Role(
        name=name,
        permissions=await _known_permissions(permission_names),
        created_at=utc_now(),
        updated_at=utc_now(),
    )
    try:
        await role.insert()
    except DuplicateKeyError as exc:
        raise DuplicateNameError("角色名称已存在", value=name) from exc

    logger.info("创建角色 %s（%d 项权限）", role.name, len(role.permissions))
    return role


async def update_role(role_id: PydanticObjectId, name: str, permission_names: Iterable[str]) -> Role:
    """更新角色名称，并用新集合整体替换权限（单文档写入）。"""

    role = await get_role(role_id)
    name = name.strip()
    if name != role.name:
        if is_reserved_role(role.name):
            raise ProtectedRoleError("系统保留角色不可重命名")
        clash = await get_role_by_name(name)
        if clash and clash.id != role.id:
            raise DuplicateNameError("角色名称已存在", value=name)

    role.name = name
    role.permissions = await _known_permissions(permission_names)
    role.updated_at = utc_now()
    try:
        await role.save()
    except DuplicateKeyError as exc:
        raise DuplicateNameError("角色名称已存在", value=name) from exc

    logger.info("更新角色 %s（%d 项权限）", role.name, len(role.permissions))
    return role


async def delete_role(role_id: PydanticObjectId) -> None:
    """删除非保留角色，并先解除所有用户对它的分配。"""

    role = await get_role(role_id)
    if is_reserved_role(role.name):
        raise ProtectedRoleError("不能删除系统核心角色")

    await User.find(User.role_ids == role.id).update(
        {"$pull": {"role_ids": role.id}, "$set": {"updated_at": utc_now()}}
    )
    await role.delete()
    logger.info("删除角色 %s", role.name)


async def list_with_permission_counts() -> list[dict[str, Any]]:
    return [{"role": role, "permission_count": len(role.permissions)} for role in await list_roles()]


def group_role_permissions(role: Role, permissions: Iterable[Permission]) -> dict[str, list[dict[str, str]]]:
    """角色详情页：只保留角色持有的权限，按展示分组归类。"""

    held = set(role.permissions)
    grouped: dict[str, list[dict[str, str]]] = {}
    for permission in permissions:
        if permission.name not in held:
            continue
        grouped.setdefault(permission.group or "Uncategorized", []).append(
            {
                "name": permission.name,
                "label": registry_service.permission_label(permission.name, permission.label),
            }
        )
    return grouped


async def ensure_default_roles() -> None:
    """补齐保留角色；admin 首次创建时拥有全部权限。"""

    all_names = [item.name for item in await registry_service.list_all()]
    admin_role = await get_role_by_name(ROLE_ADMIN)
    if not admin_role:
        await create_role(ROLE_ADMIN, all_names)
    elif not admin_role.permissions and all_names:
        admin_role.permissions = all_names
        admin_role.updated_at = utc_now()
        await admin_role.save()

    if not await get_role_by_name(ROLE_USER):
        await create_role(ROLE_USER, [])
