from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest

from rbac_panel.services import auth_service, permission_service, role_service, user_service


@pytest.fixture(scope="module")
def command_module():
    script_path = Path(__file__).resolve().parents[2] / "scripts/create_user.py"
    spec = importlib.util.spec_from_file_location("create_user_command", script_path)
    if spec is None or spec.loader is None:
        raise RuntimeError("无法加载 create_user 脚本")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _args(command_module, *extra: str, role: str = "user", email: str = "ada@example.com", password: str = "secret-pass"):
    argv = [
        "--role",
        role,
        "--first-name",
        "Ada",
        "--last-name",
        "Lovelace",
        "--email",
        email,
        "--password",
        password,
        *extra,
    ]
    return command_module.parse_args(argv)


@pytest.mark.integration
async def test_creates_verified_user_with_role(seeded_db, command_module) -> None:
    action, user = await command_module.run(_args(command_module))

    assert action == "created"
    assert user.email_verified_at is not None
    assert user.status == "active"
    assert await permission_service.effective_roles(user.id) == {"user"}
    assert await auth_service.authenticate("ada@example.com", "secret-pass") is not None


@pytest.mark.integration
async def test_existing_email_is_rejected_for_non_admin_role(seeded_db, command_module) -> None:
    await command_module.run(_args(command_module))

    with pytest.raises(command_module.CommandError, match="已被使用"):
        await command_module.run(_args(command_module))


@pytest.mark.integration
async def test_admin_role_promotes_existing_user(seeded_db, command_module) -> None:
    _, user = await command_module.run(_args(command_module))

    action, promoted = await command_module.run(_args(command_module, role="admin", password=""))
    assert action == "promoted"
    assert promoted.id == user.id
    assert await permission_service.effective_roles(user.id) == {"admin", "user"}

    action, _ = await command_module.run(_args(command_module, role="admin", password=""))
    assert action == "unchanged"


@pytest.mark.integration
async def test_new_user_requires_password(seeded_db, command_module) -> None:
    with pytest.raises(command_module.CommandError, match="必须提供密码"):
        await command_module.run(_args(command_module, password=""))

    assert await user_service.get_user_by_email("ada@example.com") is None


@pytest.mark.integration
async def test_update_admin_rewrites_existing_admin(seeded_db, command_module) -> None:
    admin = await user_service.first_user_with_role(role_service.ROLE_ADMIN)
    assert admin is not None

    action, updated = await command_module.run(
        _args(command_module, "--update-admin", role="admin", email="root@example.com", password="new-admin-pass")
    )

    assert action == "updated"
    assert updated.id == admin.id
    assert (await user_service.get_user(admin.id)).email == "root@example.com"
    assert await auth_service.authenticate("root@example.com", "new-admin-pass") is not None
    assert len(await user_service.users_with_role(role_service.ROLE_ADMIN)) == 1


@pytest.mark.integration
async def test_interactive_confirmation_updates_existing_admin(seeded_db, command_module) -> None:
    admin = await user_service.first_user_with_role(role_service.ROLE_ADMIN)
    questions: list[str] = []

    def accept(question: str) -> bool:
        questions.append(question)
        return True

    action, updated = await command_module.run(
        _args(command_module, role="admin", email="boss@example.com", password=""),
        confirm_update=accept,
    )

    assert action == "updated"
    assert updated.id == admin.id
    assert "admin@example.com" in questions[0]
    assert (await user_service.get_user(admin.id)).email == "boss@example.com"


@pytest.mark.integration
async def test_declined_confirmation_creates_another_admin(seeded_db, command_module) -> None:
    action, created = await command_module.run(
        _args(command_module, role="admin", email="second@example.com"),
        confirm_update=lambda question: False,
    )

    assert action == "created"
    assert len(await user_service.users_with_role(role_service.ROLE_ADMIN)) == 2
    assert await user_service.get_user_by_email("admin@example.com") is not None
