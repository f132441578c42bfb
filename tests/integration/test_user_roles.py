from __future__ import annotations

import pytest

from rbac_panel.services import auth_service, role_service, user_service
from rbac_panel.services.exceptions import LastAdminError, SelfDeletionError


async def _user(email: str, *role_names: str):
    role_ids = []
    for name in role_names:
        role = await role_service.get_role_by_name(name)
        assert role is not None
        role_ids.append(role.id)
    return await user_service.create_user(
        {
            "first_name": "Test",
            "last_name": "User",
            "email": email,
            "password_hash": auth_service.hash_password("password"),
            "role_ids": role_ids,
        }
    )


@pytest.mark.integration
async def test_set_single_role_replaces_assignments(seeded_db) -> None:
    editor = await role_service.create_role("editor", ["users.view"])
    user = await _user("single@example.com", "user")
    await user_service.assign_role(user.id, editor.id)
    assert len((await user_service.get_user(user.id)).role_ids) == 2

    await user_service.set_single_role(user.id, editor.id)
    assert (await user_service.get_user(user.id)).role_ids == [editor.id]

    await user_service.set_single_role(user.id, None)
    assert (await user_service.get_user(user.id)).role_ids == []


@pytest.mark.integration
async def test_assign_role_is_idempotent(seeded_db) -> None:
    member = await role_service.get_role_by_name("user")
    user = await _user("idem@example.com")

    await user_service.assign_role(user.id, member.id)
    await user_service.assign_role(user.id, member.id)

    assert (await user_service.get_user(user.id)).role_ids == [member.id]


@pytest.mark.integration
async def test_last_admin_cannot_lose_admin_role(seeded_db) -> None:
    admin = await user_service.first_user_with_role("admin")
    assert admin is not None

    with pytest.raises(LastAdminError):
        await user_service.set_single_role(admin.id, None)
    with pytest.raises(LastAdminError):
        await user_service.remove_all_roles(admin.id)
    with pytest.raises(LastAdminError):
        await user_service.delete_user(admin.id)
    with pytest.raises(LastAdminError):
        await user_service.update_user(admin, {"status": "inactive"})

    await _user("second-admin@example.com", "admin")
    await user_service.set_single_role(admin.id, None)
    assert (await user_service.get_user(admin.id)).role_ids == []


@pytest.mark.integration
async def test_cannot_delete_self(seeded_db) -> None:
    user = await _user("self@example.com", "user")

    with pytest.raises(SelfDeletionError):
        await user_service.delete_user(user.id, actor_id=str(user.id))

    deleted = await user_service.delete_user(user.id, actor_id="someone-else")
    assert deleted.email == "self@example.com"
    assert await user_service.get_user_by_email("self@example.com") is None


@pytest.mark.integration
async def test_authenticate_rejects_inactive_and_wrong_password(seeded_db) -> None:
    user = await _user("login@example.com", "user")

    assert await auth_service.authenticate(" LOGIN@example.com ", "password") is not None
    assert await auth_service.authenticate("login@example.com", "wrong") is None
    assert await auth_service.authenticate("missing@example.com", "password") is None

    await user_service.update_user(user, {"status": "inactive"})
    assert await auth_service.authenticate("login@example.com", "password") is None


@pytest.mark.integration
async def test_update_user_keeps_password_when_blank(seeded_db) -> None:
    user = await _user("keep@example.com", "user")
    original_hash = user.password_hash

    await user_service.update_user(user, {"first_name": "Renamed", "password_hash": ""})

    reloaded = await user_service.get_user(user.id)
    assert reloaded.first_name == "Renamed"
    assert reloaded.password_hash == original_hash


@pytest.mark.integration
async def test_update_user_checks_roles_before_writing_profile(seeded_db) -> None:
    admin = await user_service.first_user_with_role("admin")
    member = await role_service.get_role_by_name("user")

    with pytest.raises(LastAdminError):
        await user_service.update_user(
            admin,
            {"first_name": "Renamed", "email": "renamed@example.com", "role_ids": [member.id]},
        )

    stored = await user_service.get_user(admin.id)
    assert stored.first_name != "Renamed"
    assert stored.email == admin.email
    assert stored.role_ids == admin.role_ids


@pytest.mark.integration
async def test_update_user_writes_profile_and_roles_together(seeded_db) -> None:
    editor = await role_service.create_role("editor", ["users.view"])
    user = await _user("together@example.com", "user")

    await user_service.update_user(user, {"first_name": "Grace", "role_ids": [editor.id]})

    stored = await user_service.get_user(user.id)
    assert stored.first_name == "Grace"
    assert stored.role_ids == [editor.id]
