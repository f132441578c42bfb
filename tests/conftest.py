from __future__ import annotations

from typing import AsyncIterator

import httpx
import pytest
from mongomock_motor import AsyncMongoMockClient

from rbac_panel.db import init_db
from rbac_panel.main import app, seed_defaults


@pytest.fixture
async def initialized_db() -> AsyncIterator[None]:
    """每个测试使用独立的内存 Mongo。"""

    await init_db(AsyncMongoMockClient())
    yield


@pytest.fixture
async def seeded_db(initialized_db) -> AsyncIterator[None]:
    """写入种子权限、保留角色与默认管理员。"""

    await seed_defaults()
    yield


@pytest.fixture
async def client() -> AsyncIterator[httpx.AsyncClient]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver", follow_redirects=False) as http:
        yield http
