"""角色模型。"""

from __future__ import annotations

from datetime import datetime, timezone

from beanie import Document, Indexed
from pydantic import Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Role(Document):
    """角色：一组权限名称的集合。"""

    name: Indexed(str, unique=True)  # type: ignore[valid-type]
    permissions: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    class Settings:
        name = "roles"
