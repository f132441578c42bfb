from __future__ import annotations

import importlib.util
from pathlib import Path

import pytest


@pytest.fixture(scope="module")
def command_module():
    """加载命令行脚本模块。"""

    script_path = Path(__file__).resolve().parents[2] / "scripts/create_user.py"
    spec = importlib.util.spec_from_file_location("create_user", script_path)
    if spec is None or spec.loader is None:
        raise RuntimeError("无法加载 create_user 脚本")

    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _argv(**overrides: str) -> list[str]:
    values = {
        "--role": "user",
        "--first-name": "Ada",
        "--last-name": "Lovelace",
        "--email": " Ada@Example.com ",
        "--password": "secret-pass",
    }
    values.update(overrides)
    argv: list[str] = []
    for key, value in values.items():
        argv.extend([key, value])
    return argv


@pytest.mark.unit
def test_validate_args_normalizes_input(command_module) -> None:
    args = command_module.parse_args(_argv())

    data = command_module.validate_args(args, {"admin", "user"})

    assert data == {
        "role": "user",
        "first_name": "Ada",
        "last_name": "Lovelace",
        "email": "ada@example.com",
        "password": "secret-pass",
    }
    assert args.update_admin is False


@pytest.mark.unit
def test_validate_args_rejects_unknown_role(command_module) -> None:
    args = command_module.parse_args(_argv(**{"--role": "owner"}))

    with pytest.raises(command_module.CommandError) as exc_info:
        command_module.validate_args(args, {"admin", "user"})

    assert "admin, user" in str(exc_info.value)


@pytest.mark.unit
def test_validate_args_rejects_short_password(command_module) -> None:
    args = command_module.parse_args(_argv(**{"--password": "123"}))

    with pytest.raises(command_module.CommandError):
        command_module.validate_args(args, {"admin", "user"})


@pytest.mark.unit
def test_password_may_be_omitted_for_admin_update(command_module) -> None:
    args = command_module.parse_args(_argv(**{"--role": "admin", "--password": ""}) + ["--update-admin"])

    data = command_module.validate_args(args, {"admin", "user"})

    assert data["password"] == ""
    assert args.update_admin is True


@pytest.mark.unit
def test_missing_fields_are_reported_without_interactive(command_module) -> None:
    args = command_module.parse_args(["--role", "user"])

    with pytest.raises(command_module.CommandError) as exc_info:
        command_module.validate_args(args, {"admin", "user"})

    assert "--first-name --last-name --email" in str(exc_info.value)


@pytest.mark.unit
def test_prompt_missing_only_asks_for_absent_fields(command_module) -> None:
    args = command_module.parse_args(["-i", "--role", "user", "--first-name", "Ada"])
    answers = iter(["Lovelace", "ada@example.com"])
    asked: list[str] = []

    def ask(prompt: str) -> str:
        asked.append(prompt)
        return next(answers)

    command_module.prompt_missing(args, ask=ask, ask_secret=lambda prompt: "secret-pass")

    assert asked == ["姓: ", "邮箱: "]
    assert args.interactive is True
    assert command_module.validate_args(args, {"admin", "user"})["password"] == "secret-pass"


@pytest.mark.unit
def test_confirm_accepts_yes_only(command_module) -> None:
    assert command_module.confirm("更新?", ask=lambda prompt: " Y ") is True
    assert command_module.confirm("更新?", ask=lambda prompt: "yes") is True
    assert command_module.confirm("更新?", ask=lambda prompt: "") is False
    assert command_module.confirm("更新?", ask=lambda prompt: "n") is False
