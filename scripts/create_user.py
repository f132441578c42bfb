"""命令行创建用户或更新管理员账号。"""

from __future__ import annotations

import argparse
import asyncio
import getpass
import logging
from typing import Any, Callable

from rbac_panel.config import PASSWORD_MIN_LENGTH
from rbac_panel.db import close_db, init_db
from rbac_panel.models.user import utc_now
from rbac_panel.services import auth_service, role_service, user_service, validators
from rbac_panel.services.exceptions import AppError

logger = logging.getLogger("create_user")


REQUIRED_FIELDS: tuple[tuple[str, str], ...] = (
    ("role", "角色"),
    ("first_name", "名"),
    ("last_name", "姓"),
    ("email", "邮箱"),
)


class CommandError(Exception):
    """命令参数或数据状态不满足要求。"""


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """解析命令参数。"""

    parser = argparse.ArgumentParser(description="创建指定角色的用户，或更新已有管理员")
    parser.add_argument("--role", default="", help="角色名称（如 admin、user）")
    parser.add_argument("--first-name", default="", help="名")
    parser.add_argument("--last-name", default="", help="姓")
    parser.add_argument("--email", default="", help="邮箱")
    parser.add_argument("--password", default="", help="密码；更新管理员时留空表示不修改")
    parser.add_argument(
        "--update-admin",
        action="store_true",
        help="role 为 admin 且已有管理员时，更新该管理员而不是新建",
    )
    parser.add_argument(
        "-i",
        "--interactive",
        action="store_true",
        help="逐项询问缺少的参数，已有管理员时确认是否更新",
    )
    return parser.parse_args(argv)


def prompt_missing(
    args: argparse.Namespace,
    *,
    ask: Callable[[str], str] = input,
    ask_secret: Callable[[str], str] = getpass.getpass,
) -> argparse.Namespace:
    """交互模式下补齐未通过参数给出的字段。"""

    for field, label in REQUIRED_FIELDS:
        if not str(getattr(args, field) or "").strip():
            setattr(args, field, ask(f"{label}: ").strip())
    if not args.password:
        args.password = ask_secret("密码（更新管理员时可留空）: ")
    return args


def confirm(question: str, *, ask: Callable[[str], str] = input) -> bool:
    return ask(f"{question} [y/N]: ").strip().lower() in {"y", "yes"}


def validate_args(args: argparse.Namespace, role_names: set[str]) -> dict[str, str]:
    """校验并规范化参数，失败抛出 CommandError。"""

    missing = [
        f"--{field.replace('_', '-')}"
        for field, _ in REQUIRED_FIELDS
        if not str(getattr(args, field) or "").strip()
    ]
    if missing:
        raise CommandError(f"缺少参数：{' '.join(missing)}（可使用 --interactive 逐项输入）")

    role = args.role.strip()
    if role not in role_names:
        raise CommandError(f"角色不合法，可选角色：{', '.join(sorted(role_names))}")

    email = validators.normalize_email(args.email)
    email_error = validators.validate_email_address(email)
    if email_error:
        raise CommandError(email_error)

    first_name = args.first_name.strip()
    last_name = args.last_name.strip()
    if not first_name or not last_name:
        raise CommandError("姓名不能为空")

    password = args.password or ""
    if password:
        password_error = validators.validate_password(password, min_length=PASSWORD_MIN_LENGTH)
        if password_error:
            raise CommandError(password_error)

    return {
        "role": role,
        "first_name": first_name,
        "last_name": last_name,
        "email": email,
        "password": password,
    }


async def update_admin(admin: Any, data: dict[str, str]) -> tuple[str, Any]:
    payload: dict[str, Any] = {
        "first_name": data["first_name"],
        "last_name": data["last_name"],
        "email": data["email"],
        "status": "active",
        "email_verified_at": utc_now(),
    }
    if data["password"]:
        payload["password_hash"] = auth_service.hash_password(data["password"])
    await user_service.update_user(admin, payload)
    return "updated", admin


async def create_or_promote(data: dict[str, str]) -> tuple[str, Any]:
    """新建用户；role 为 admin 且邮箱已存在时直接提升为管理员。"""

    role = await role_service.get_role_by_name(data["role"])
    if role is None:
        raise CommandError(f"角色 {data['role']} 不存在")

    existing = await user_service.get_user_by_email(data["email"])
    if existing:
        if data["role"] != role_service.ROLE_ADMIN:
            raise CommandError(f"邮箱 {data['email']} 已被使用")
        if role.id in existing.role_ids:
            return "unchanged", existing
        await user_service.assign_role(existing.id, role.id)
        return "promoted", existing

    if not data["password"]:
        raise CommandError("新建用户必须提供密码")

    user = await user_service.create_user(
        {
            "first_name": data["first_name"],
            "last_name": data["last_name"],
            "email": data["email"],
            "password_hash": auth_service.hash_password(data["password"]),
            "status": "active",
            "email_verified_at": utc_now(),
            "role_ids": [role.id],
        }
    )
    return "created", user


async def run(
    args: argparse.Namespace,
    *,
    confirm_update: Callable[[str], bool] | None = None,
) -> tuple[str, Any]:
    """在已初始化的数据库上执行命令。

    confirm_update 仅在交互模式下传入：role 为 admin、未指定 --update-admin
    且已有管理员时询问是否改为更新该管理员。
    """

    data = validate_args(args, await role_service.list_role_names())
    if data["role"] == role_service.ROLE_ADMIN:
        admin = await user_service.first_user_with_role(role_service.ROLE_ADMIN)
        if admin is not None:
            if args.update_admin:
                return await update_admin(admin, data)
            if confirm_update is not None and admin.email != data["email"]:
                if confirm_update(f"已存在管理员 {admin.email}，是否更新该管理员而不是新建？"):
                    return await update_admin(admin, data)
    return await create_or_promote(data)


async def _main(args: argparse.Namespace) -> int:
    if args.interactive:
        prompt_missing(args)
    await init_db()
    try:
        action, user = await run(args, confirm_update=confirm if args.interactive else None)
    except (CommandError, AppError) as exc:
        print(f"[error] {exc}")
        return 1
    finally:
        await close_db()

    print(f"[ok] {action}: {user.name} <{user.email}> id={user.id}")
    return 0


def main(argv: list[str] | None = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    return asyncio.run(_main(parse_args(argv)))


if __name__ == "__main__":
    raise SystemExit(main())
