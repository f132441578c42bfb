"""数据库初始化与连接管理。"""

from __future__ import annotations

from typing import Any, cast

from beanie import init_beanie
from motor.motor_asyncio import AsyncIOMotorClient

from .config import MONGO_DB, MONGO_URL
from .models import DOCUMENT_MODELS

_mongo_client: AsyncIOMotorClient | None = None


async def init_db(client: Any | None = None) -> None:
    """初始化 Beanie；测试可传入内存客户端替代真实连接。"""
    global _mongo_client
    _mongo_client = client or AsyncIOMotorClient(MONGO_URL)
    await init_beanie(
        # Motor 与 Beanie 的类型标注来源不同，这里显式转换避免类型检查误报。
        database=cast(Any, _mongo_client[MONGO_DB]),
        document_models=DOCUMENT_MODELS,
    )


async def close_db() -> None:
    """关闭 Mongo 连接。"""
    global _mongo_client
    if _mongo_client is not None:
        _mongo_client.close()
        _mongo_client = None
