"""权限解析与鉴权服务。

当前账号的有效权限 = 其所有角色权限的并集。每个请求解析一次并挂在
``request.state.auth`` 上；同一请求内发生角色或权限变更后需要调用
``invalidate_auth_context`` 重新解析。路由、模板按钮、数据表操作列都只通过
``can`` 判断，避免各处各算一套。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from beanie import PydanticObjectId
from starlette.requests import Request

from rbac_panel.apps.admin.registry import iter_route_permissions
from rbac_panel.models import Role, User
from rbac_panel.services import auth_service, role_service
from rbac_panel.services.exceptions import NotFoundError, SessionInvalidatedError


@dataclass(frozen=True, slots=True)
class AuthContext:
    """一次请求内的鉴权上下文。"""

    user: User | None = None
    roles: frozenset[str] = field(default_factory=frozenset)
    permissions: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None

    @property
    def user_id(self) -> str | None:
        return str(self.user.id) if self.user is not None else None


ANONYMOUS = AuthContext()


def union_permissions(roles: Iterable[Any]) -> set[str]:
    permissions: set[str] = set()
    for role in roles:
        permissions.update(role.permissions or [])
    return permissions


def filter_structure(
    structure: dict[str, list[dict[str, str]]],
    permissions: set[str] | frozenset[str],
) -> dict[str, list[dict[str, str]]]:
    """只保留持有的权限，过滤后为空的分组不输出。"""

    result: dict[str, list[dict[str, str]]] = {}
    for group_key, items in structure.items():
        held = [item for item in items if item["name"] in permissions]
        if held:
            result[group_key] = held
    return result


async def _roles_for(user: User) -> list[Role]:
    if not user.role_ids:
        return []
    return await Role.find({"_id": {"$in": list(user.role_ids)}}).to_list()


async def _load_user(user_id: PydanticObjectId | str) -> User:
    user = await auth_service.get_user_by_id(str(user_id))
    if not user:
        raise NotFoundError("用户不存在", resource="user", resource_id=str(user_id))
    return user


async def effective_permissions(user_id: PydanticObjectId | str) -> set[str]:
    user = await _load_user(user_id)
    return union_permissions(await _roles_for(user))


async def effective_roles(user_id: PydanticObjectId | str) -> set[str]:
    user = await _load_user(user_id)
    return {role.name for role in await _roles_for(user)}


async def user_permissions_by_group(user_id: PydanticObjectId | str) -> dict[str, list[dict[str, str]]]:
    structure = await role_service.get_permission_structure()
    return filter_structure(structure, await effective_permissions(user_id))


async def can_access_group(user_id: PydanticObjectId | str, group_key: str) -> bool:
    return bool((await user_permissions_by_group(user_id)).get(group_key))


async def build_auth_context(user: User | None) -> AuthContext:
    """停用账号视为匿名。"""

    if user is None or not user.is_active:
        return ANONYMOUS
    roles = await _roles_for(user)
    return AuthContext(
        user=user,
        roles=frozenset(role.name for role in roles),
        permissions=frozenset(union_permissions(roles)),
    )


async def resolve_auth_context(request: Request) -> AuthContext:
    """解析当前会话账号的鉴权上下文并缓存到 request.state。"""

    cached = getattr(request.state, "auth", None)
    if cached is not None:
        return cached

    user = await auth_service.get_user_by_id(request.session.get("user_id"))
    context = await build_auth_context(user)
    request.state.auth = context
    return context


def invalidate_auth_context(request: Request) -> None:
    request.state.auth = None


def can(context: AuthContext | None, permission: str) -> bool:
    if context is None or not context.is_authenticated:
        return False
    return permission in context.permissions


def has_role(context: AuthContext | None, role_name: str) -> bool:
    if context is None or not context.is_authenticated:
        return False
    return role_name in context.roles


def build_flags(context: AuthContext | None, resource: str) -> dict[str, bool]:
    """页面按钮开关：view/create/edit/delete。"""

    return {action: can(context, f"{resource}.{action}") for action in ("view", "create", "edit", "delete")}


def required_permission(path: str, method: str) -> str | None:
    """将请求路径映射到所需权限。"""

    normalized = path.rstrip("/") or "/"
    for pattern, permission in iter_route_permissions(method.upper()):
        if pattern.fullmatch(normalized) or pattern.fullmatch(path):
            return permission
    return None


def ensure_panel_access(context: AuthContext | None, role_name: str) -> None:
    """缺少后台角色时抛出 SessionInvalidatedError，由调用方销毁会话。"""

    if not has_role(context, role_name):
        raise SessionInvalidatedError()
