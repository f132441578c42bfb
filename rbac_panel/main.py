"""FastAPI 应用入口。"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.responses import RedirectResponse
from fastapi.staticfiles import StaticFiles
from starlette.middleware.sessions import SessionMiddleware

from .apps.admin.controllers.auth import router as auth_router
from .apps.admin.controllers.dashboard import router as dashboard_router
from .apps.admin.controllers.permissions import router as permissions_router
from .apps.admin.controllers.roles import router as roles_router
from .apps.admin.controllers.users import router as users_router
from .apps.admin.errors import register_exception_handlers
from .apps.admin.registry import DEFAULT_PERMISSIONS
from .config import APP_NAME, SECRET_KEY, SESSION_COOKIE
from .db import close_db, init_db
from .middleware.auth import AdminAuthMiddleware
from .services import registry_service
from .services.auth_service import ensure_default_admin
from .services.role_service import ensure_default_roles

BASE_DIR = Path(__file__).resolve().parent
STATIC_DIR = BASE_DIR / "static"


async def seed_defaults() -> None:
    """补齐种子权限、保留角色与默认管理员，可重复执行。"""

    await registry_service.ensure_permissions(DEFAULT_PERMISSIONS)
    await ensure_default_roles()
    await ensure_default_admin()


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期：启动时初始化资源，退出时释放资源。"""

    await init_db()
    await seed_defaults()
    try:
        yield
    finally:
        await close_db()


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """测试可关闭 lifespan，自行初始化内存数据库。"""

    application = FastAPI(title=APP_NAME, lifespan=lifespan if use_lifespan else None)
    if STATIC_DIR.exists():
        application.mount("/static", StaticFiles(directory=STATIC_DIR), name="static")
    application.add_middleware(AdminAuthMiddleware)
    application.add_middleware(SessionMiddleware, secret_key=SECRET_KEY, session_cookie=SESSION_COOKIE)
    register_exception_handlers(application)
    application.include_router(auth_router)
    application.include_router(dashboard_router)
    application.include_router(roles_router)
    application.include_router(permissions_router)
    application.include_router(users_router)

    @application.get("/")
    async def root() -> RedirectResponse:
        return RedirectResponse(url="/admin/dashboard", status_code=302)

    return application


app = create_app()
