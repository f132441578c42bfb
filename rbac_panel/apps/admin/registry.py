"""后台内置权限注册表（种子数据与路由权限映射）。"""

from __future__ import annotations

import re
from typing import Iterable

DEFAULT_PERMISSIONS: list[dict[str, str]] = [
    {"name": "dashboard.view", "label": "View Dashboard", "group": "Dashboard"},
    {"name": "profile.edit", "label": "Edit Profile", "group": "Profile"},
    {"name": "profile.update", "label": "Update Profile", "group": "Profile"},
    {"name": "profile.destroy", "label": "Delete Profile", "group": "Profile"},
    {"name": "password.edit", "label": "Edit Password", "group": "Security"},
    {"name": "password.update", "label": "Update Password", "group": "Security"},
    {"name": "appearance.edit", "label": "Edit Appearance", "group": "Settings"},
    {"name": "two-factor.show", "label": "View Two Factor", "group": "Security"},
    {"name": "roles.view", "label": "View Roles", "group": "Administration"},
    {"name": "roles.create", "label": "Create Roles", "group": "Administration"},
    {"name": "roles.edit", "label": "Edit Roles", "group": "Administration"},
    {"name": "roles.delete", "label": "Delete Roles", "group": "Administration"},
    {"name": "users.view", "label": "View Users", "group": "Administration"},
    {"name": "users.create", "label": "Create Users", "group": "Administration"},
    {"name": "users.edit", "label": "Edit Users", "group": "Administration"},
    {"name": "users.delete", "label": "Delete Users", "group": "Administration"},
    {"name": "permissions.view", "label": "View Permissions", "group": "Administration"},
    {"name": "permissions.create", "label": "Create Permissions", "group": "Administration"},
    {"name": "permissions.edit", "label": "Edit Permissions", "group": "Administration"},
    {"name": "permissions.delete", "label": "Delete Permissions", "group": "Administration"},
]

_ID = r"[^/]+"

# (方法, 路径正则, 所需权限)；未登记的 /admin 路由一律拒绝
ROUTE_PERMISSIONS: list[tuple[str, str, str]] = [
    ("GET", r"/admin/?", "dashboard.view"),
    ("GET", r"/admin/dashboard", "dashboard.view"),
    ("GET", r"/admin/profile", "profile.edit"),
    ("POST", r"/admin/profile", "profile.update"),
    ("POST", r"/admin/profile/delete", "profile.destroy"),
    ("GET", r"/admin/password", "password.edit"),
    ("POST", r"/admin/password", "password.update"),
    ("GET", r"/admin/verify-email", "profile.edit"),
    ("POST", r"/admin/verify-email(/send)?", "profile.update"),
    ("GET", r"/admin/roles", "roles.view"),
    ("GET", r"/admin/roles/data", "roles.view"),
    ("GET", r"/admin/roles/new", "roles.create"),
    ("POST", r"/admin/roles", "roles.create"),
    ("GET", rf"/admin/roles/{_ID}/edit", "roles.edit"),
    ("GET", rf"/admin/roles/{_ID}", "roles.view"),
    ("POST", rf"/admin/roles/{_ID}", "roles.edit"),
    ("DELETE", rf"/admin/roles/{_ID}", "roles.delete"),
    ("GET", r"/admin/permissions", "permissions.view"),
    ("GET", r"/admin/permissions/data", "permissions.view"),
    ("GET", r"/admin/permissions/new", "permissions.create"),
    ("POST", r"/admin/permissions", "permissions.create"),
    ("GET", rf"/admin/permissions/{_ID}/edit", "permissions.edit"),
    ("GET", rf"/admin/permissions/{_ID}", "permissions.view"),
    ("POST", rf"/admin/permissions/{_ID}", "permissions.edit"),
    ("DELETE", rf"/admin/permissions/{_ID}", "permissions.delete"),
    ("GET", r"/admin/users", "users.view"),
    ("GET", r"/admin/users/data", "users.view"),
    ("GET", r"/admin/users/new", "users.create"),
    ("POST", r"/admin/users", "users.create"),
    ("GET", rf"/admin/users/{_ID}/edit", "users.edit"),
    ("GET", rf"/admin/users/{_ID}", "users.view"),
    ("POST", rf"/admin/users/{_ID}", "users.edit"),
    ("DELETE", rf"/admin/users/{_ID}", "users.delete"),
]

_COMPILED_ROUTES = [(method, re.compile(pattern), permission) for method, pattern, permission in ROUTE_PERMISSIONS]


def iter_route_permissions(method: str) -> Iterable[tuple[re.Pattern[str], str]]:
    """按登记顺序遍历某个方法下的路由规则。"""

    for route_method, pattern, permission in _COMPILED_ROUTES:
        if route_method == method:
            yield pattern, permission
