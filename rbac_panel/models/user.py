"""用户模型。"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from beanie import Document, Indexed, PydanticObjectId
from pydantic import Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class User(Document):
    """后台用户。

    role_ids 保持多对多能力，界面与命令行始终只分配一个角色。
    """

    first_name: str = Field(..., min_length=1, max_length=64)
    last_name: str = Field(..., min_length=1, max_length=64)
    email: Indexed(str, unique=True)  # type: ignore[valid-type]
    password_hash: str = ""
    status: Literal["active", "inactive"] = "active"
    email_verified_at: datetime | None = None
    otp_hash: str | None = None
    otp_expires_at: datetime | None = None
    otp_attempts: int = 0
    two_factor_secret: str | None = None
    role_ids: list[PydanticObjectId] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "users"

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_active(self) -> bool:
        return self.status == "active"
