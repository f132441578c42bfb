from __future__ import annotations

import pytest

from rbac_panel.models import Role, User
from rbac_panel.services import auth_service, permission_service, registry_service, role_service, user_service
from rbac_panel.services.exceptions import DuplicateNameError, NotFoundError, ProtectedRoleError


async def _user(email: str, *roles: Role) -> User:
    return await user_service.create_user(
        {
            "first_name": "Test",
            "last_name": email.split("@")[0],
            "email": email,
            "password_hash": auth_service.hash_password("password"),
            "role_ids": [role.id for role in roles],
        }
    )


async def _register(*names: str, group: str | None = None) -> None:
    for name in names:
        await registry_service.create_permission(name, "", group)


@pytest.mark.integration
async def test_editor_scenario(initialized_db) -> None:
    await _register("users.view", "users.edit", "users.delete", group="Administration")
    editor = await role_service.create_role("editor", ["users.view", "users.edit"])
    user = await _user("editor@example.com", editor)

    context = await permission_service.build_auth_context(await user_service.get_user(user.id))

    assert permission_service.can(context, "users.delete") is False
    assert permission_service.can(context, "users.view") is True
    assert await permission_service.effective_roles(user.id) == {"editor"}


@pytest.mark.integration
async def test_deleted_permission_disappears_everywhere(initialized_db) -> None:
    await _register("reports.view", "reports.export", group="Reports")
    analyst = await role_service.create_role("analyst", ["reports.view", "reports.export"])
    user = await _user("analyst@example.com", analyst)

    permission = await registry_service.get_permission_by_name("reports.export")
    assert permission is not None
    await registry_service.delete_permission(permission.id)

    structure = await role_service.get_permission_structure()
    listed = {item["name"] for items in structure.values() for item in items}
    assert "reports.export" not in listed
    assert await permission_service.effective_permissions(user.id) == {"reports.view"}
    assert (await role_service.get_role(analyst.id)).permissions == ["reports.view"]


@pytest.mark.integration
async def test_update_replaces_permission_set(initialized_db) -> None:
    await _register("a", "b", "c")
    ops = await role_service.create_role("ops", ["a", "b"])

    await role_service.update_role(ops.id, "ops", ["a", "b", "c"])
    assert set((await role_service.get_role(ops.id)).permissions) == {"a", "b", "c"}

    await role_service.update_role(ops.id, "ops", ["c"])
    assert (await role_service.get_role(ops.id)).permissions == ["c"]

    await role_service.update_role(ops.id, "ops", [])
    assert (await role_service.get_role(ops.id)).permissions == []


@pytest.mark.integration
async def test_unknown_permission_names_are_dropped(initialized_db) -> None:
    await _register("users.view")

    role = await role_service.create_role("viewer", ["users.view", "ghost.permission", "users.view"])

    assert role.permissions == ["users.view"]


@pytest.mark.integration
async def test_effective_permissions_union_across_roles(initialized_db) -> None:
    await _register("users.view", "roles.view", "roles.edit")
    first = await role_service.create_role("first", ["users.view", "roles.view"])
    second = await role_service.create_role("second", ["roles.view", "roles.edit"])
    user = await _user("multi@example.com", first, second)

    assert await permission_service.effective_permissions(user.id) == {"users.view", "roles.view", "roles.edit"}
    assert await permission_service.effective_roles(user.id) == {"first", "second"}


@pytest.mark.integration
async def test_user_without_role_has_no_permissions(initialized_db) -> None:
    await _register("users.view", group="Administration")
    user = await _user("nobody@example.com")

    assert await permission_service.effective_permissions(user.id) == set()
    assert await permission_service.user_permissions_by_group(user.id) == {}
    assert await permission_service.can_access_group(user.id, "administration") is False


@pytest.mark.integration
async def test_permissions_by_group_filters_structure(initialized_db) -> None:
    await _register("users.view", "users.delete", group="Administration")
    await _register("dashboard.view", group="Dashboard")
    viewer = await role_service.create_role("viewer", ["users.view"])
    user = await _user("viewer@example.com", viewer)

    grouped = await permission_service.user_permissions_by_group(user.id)

    assert grouped == {"administration": [{"name": "users.view", "label": "Users View"}]}
    assert await permission_service.can_access_group(user.id, "administration") is True
    assert await permission_service.can_access_group(user.id, "dashboard") is False


@pytest.mark.integration
async def test_reserved_roles_cannot_be_deleted_or_renamed(seeded_db) -> None:
    admin = await role_service.get_role_by_name("admin")
    member = await role_service.get_role_by_name("user")
    assert admin is not None and member is not None

    with pytest.raises(ProtectedRoleError):
        await role_service.delete_role(admin.id)
    with pytest.raises(ProtectedRoleError):
        await role_service.delete_role(member.id)
    with pytest.raises(ProtectedRoleError):
        await role_service.update_role(member.id, "member", [])

    updated = await role_service.update_role(member.id, "user", ["dashboard.view"])
    assert updated.permissions == ["dashboard.view"]


@pytest.mark.integration
async def test_role_delete_unassigns_users(initialized_db) -> None:
    await _register("users.view")
    temp = await role_service.create_role("temp", ["users.view"])
    user = await _user("temp@example.com", temp)

    await role_service.delete_role(temp.id)

    assert (await user_service.get_user(user.id)).role_ids == []
    assert await permission_service.effective_permissions(user.id) == set()
    with pytest.raises(NotFoundError):
        await role_service.get_role(temp.id)


@pytest.mark.integration
async def test_permission_rename_follows_into_roles(initialized_db) -> None:
    await _register("reports.view")
    role = await role_service.create_role("reader", ["reports.view"])
    permission = await registry_service.get_permission_by_name("reports.view")
    assert permission is not None

    await registry_service.update_permission(permission.id, "reports.read", "Read Reports", "Reports")

    assert (await role_service.get_role(role.id)).permissions == ["reports.read"]
    structure = await role_service.get_permission_structure()
    assert structure == {"reports": [{"name": "reports.read", "label": "Read Reports"}]}


@pytest.mark.integration
async def test_names_are_unique(initialized_db) -> None:
    await _register("users.view")
    await role_service.create_role("editor")
    await _user("dup@example.com")

    with pytest.raises(DuplicateNameError):
        await registry_service.create_permission("users.view")
    with pytest.raises(DuplicateNameError):
        await role_service.create_role("editor")
    with pytest.raises(DuplicateNameError) as exc_info:
        await _user("dup@example.com")
    assert exc_info.value.field == "email"


@pytest.mark.integration
async def test_seed_is_idempotent(seeded_db) -> None:
    from rbac_panel.main import seed_defaults

    await seed_defaults()

    admin = await role_service.get_role_by_name("admin")
    member = await role_service.get_role_by_name("user")
    assert admin is not None and member is not None
    assert len(admin.permissions) == 20
    assert member.permissions == []
    assert len(await registry_service.list_all()) == 20
    assert len(await user_service.users_with_role("admin")) == 1
