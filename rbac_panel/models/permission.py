"""权限模型。"""

from __future__ import annotations

from datetime import datetime, timezone

from beanie import Document, Indexed
from pydantic import Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Permission(Document):
    """权限条目，角色通过 name 引用。"""

    name: Indexed(str, unique=True)  # type: ignore[valid-type]
    label: str = Field(default="", max_length=255)
    group: str | None = Field(default=None, max_length=255)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "permissions"
