"""后台导航与面包屑解析。

菜单项只在两个条件同时满足时展示：当前账号能访问该项所属的权限分组，
且持有该项入口所需的权限。
"""

from __future__ import annotations

from typing import Any

from rbac_panel.services import permission_service

DEFAULT_ITEM_ICON = "fa-regular fa-circle-dot"

NAV_SECTIONS: list[dict[str, Any]] = [
    {
        "key": "dashboard",
        "name": "首页",
        "icon": "fa-solid fa-house",
        "items": [
            {
                "key": "dashboard",
                "name": "仪表盘",
                "url": "/admin/dashboard",
                "icon": "fa-solid fa-gauge-high",
                "permission": "dashboard.view",
                "permission_group": "dashboard",
            },
        ],
    },
    {
        "key": "administration",
        "name": "权限管理",
        "icon": "fa-solid fa-user-shield",
        "items": [
            {
                "key": "users",
                "name": "用户管理",
                "url": "/admin/users",
                "icon": "fa-solid fa-users-gear",
                "permission": "users.view",
                "permission_group": "administration",
            },
            {
                "key": "roles",
                "name": "角色管理",
                "url": "/admin/roles",
                "icon": "fa-solid fa-id-badge",
                "permission": "roles.view",
                "permission_group": "administration",
            },
            {
                "key": "permissions",
                "name": "权限列表",
                "url": "/admin/permissions",
                "icon": "fa-solid fa-key",
                "permission": "permissions.view",
                "permission_group": "administration",
            },
        ],
    },
    {
        "key": "account",
        "name": "个人设置",
        "icon": "fa-regular fa-user",
        "items": [
            {
                "key": "profile",
                "name": "个人资料",
                "url": "/admin/profile",
                "icon": "fa-regular fa-id-card",
                "permission": "profile.edit",
                "permission_group": "profile",
                "match_prefixes": ["/admin/profile", "/admin/verify-email"],
            },
            {
                "key": "password",
                "name": "修改密码",
                "url": "/admin/password",
                "icon": "fa-solid fa-lock",
                "permission": "password.edit",
                "permission_group": "security",
            },
        ],
    },
]


def _normalize_path(path: str) -> str:
    """统一路径格式，避免尾斜杠影响匹配。"""

    normalized = str(path or "").strip().rstrip("/")
    return normalized or "/"


def _match_prefix_length(path: str, prefixes: list[str]) -> int:
    """返回最长匹配前缀长度，未命中时返回 -1。"""

    normalized_path = _normalize_path(path)
    best = -1
    for prefix in prefixes:
        normalized_prefix = _normalize_path(prefix)
        if normalized_path == normalized_prefix or normalized_path.startswith(f"{normalized_prefix}/"):
            best = max(best, len(normalized_prefix))
    return best


def build_navigation_context(
    path: str,
    auth: permission_service.AuthContext | None,
    permission_groups: dict[str, list[dict[str, str]]],
) -> dict[str, Any]:
    """按当前路径和权限构建菜单与面包屑上下文。"""

    matched_item: dict[str, Any] | None = None
    matched_section: dict[str, Any] | None = None
    matched_length = -1
    home_item: dict[str, Any] | None = None
    sections: list[dict[str, Any]] = []

    for section in NAV_SECTIONS:
        visible_items: list[dict[str, Any]] = []
        section_active = False

        for item in section["items"]:
            if not permission_groups.get(item["permission_group"]):
                continue
            if not permission_service.can(auth, item["permission"]):
                continue

            match_length = _match_prefix_length(path, item.get("match_prefixes", [item["url"]]))
            active = match_length >= 0
            if active:
                section_active = True
            if match_length > matched_length:
                matched_length = match_length
                matched_item = item
                matched_section = section

            visible_items.append(
                {
                    "key": item["key"],
                    "name": item["name"],
                    "url": item["url"],
                    "icon": item.get("icon") or DEFAULT_ITEM_ICON,
                    "active": active,
                }
            )

        if section["key"] == "dashboard":
            home_item = visible_items[0] if visible_items else None
            continue
        if not visible_items:
            continue

        sections.append(
            {
                "key": section["key"],
                "name": section["name"],
                "icon": section["icon"],
                "active": section_active,
                "items": visible_items,
            }
        )

    breadcrumb_parent = ""
    breadcrumb_title = home_item["name"] if home_item else "仪表盘"
    if matched_item:
        breadcrumb_title = matched_item["name"]
    if matched_section and matched_section["key"] != "dashboard":
        breadcrumb_parent = matched_section["name"]

    return {
        "home": home_item,
        "groups": sections,
        "breadcrumb_parent": breadcrumb_parent,
        "breadcrumb_title": breadcrumb_title,
    }
