from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import make_asgi_app

from api.middleware.exception_handlers import register_exception_handlers
from api.middleware.request_context import RequestContextMiddleware
from api.routes import chat, conversations, health, tools
from api.services.auth_service import OAuthTokenService
from api.services.chat_service import ChatService
from api.services.conversation_log_service import ConversationLogService
from api.services.execution_service import ExecutionService
from api.websocket.manager import WebSocketManager
from core.constants import get_settings
from tools.executor import ToolExecutor
from tools.plugins import PluginToolRegistry
from tools.registry import build_default_catalog
from utils.client_factory import create_http_client
from utils.db_utils import PoolUnavailable, create_database_pool, graceful_pool_close
from utils.logger import configure_uvicorn_logging, logger

settings = get_settings()

# Log loaded settings in debug mode
if settings.debug:
    from core.constants import _get_env_files

    logger.info(f"Env files: {[f.name for f in _get_env_files()]}")
    logger.info(
        f"Settings: app_env={settings.app_env}, max_tool_rounds={settings.max_tool_rounds}, "
        f"tool_concurrency={settings.tool_concurrency}"
    )

# Configure uvicorn logging at module level to ensure workers use it
configure_uvicorn_logging()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: database pool, provider HTTP pool, tool catalog, chat service and WebSockets."""
    try:
        app.state.db_pool = await create_database_pool(
            dsn=settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=settings.db_command_timeout,
            connection_timeout=settings.db_connection_timeout,
        )
    except PoolUnavailable as e:
        # Chats still run; conversation logs and execution records are skipped
        logger.error(f"Database unavailable, persistence disabled: {e}")
        app.state.db_pool = None
    pool = app.state.db_pool

    plugin_registry = PluginToolRegistry(settings.plugin_dir)
    await plugin_registry.reload()
    catalog = build_default_catalog(plugin_registry)
    executor = ToolExecutor(
        catalog,
        timeout_seconds=settings.tool_timeout_seconds,
        token_provider=OAuthTokenService(pool) if pool is not None else None,
    )

    # One connection pool for every provider call
    http_client = create_http_client(
        enable_logging=settings.http_request_logging,
        read_timeout=settings.http_read_timeout,
    )

    app.state.tool_catalog = catalog
    app.state.chat_service = ChatService(
        catalog,
        executor,
        settings,
        log_service=ConversationLogService(pool) if pool is not None else None,
        execution_service=ExecutionService(pool) if pool is not None else None,
        http_client=http_client,
    )

    app.state.ws_manager = WebSocketManager(
        idle_timeout_seconds=settings.ws_idle_timeout,
        max_connections=settings.ws_max_connections,
        max_connections_per_conversation=settings.ws_max_connections_per_conversation,
    )
    await app.state.ws_manager.start_idle_checker()
    logger.info(f"agnt-core {settings.app_version} started with {len(catalog.all_tools())} tools")

    try:
        yield
    finally:
        await app.state.ws_manager.graceful_shutdown()
        await http_client.aclose()
        if pool is not None:
            await graceful_pool_close(pool)
        logger.info("agnt-core shutdown complete")


app = FastAPI(
    title="agnt-core",
    description="Chat orchestration engine with tool rounds, streaming and content offload",
    version=settings.app_version,
    lifespan=lifespan,
)

# Register global exception handlers for consistent error responses
register_exception_handlers(app)

# Note: Middleware is executed in reverse order of registration
app.add_middleware(RequestContextMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health.router, tags=["health"])
app.include_router(chat.router, tags=["chat"])
app.include_router(tools.router, tags=["tools"])
app.include_router(conversations.router, tags=["conversations"])

# Prometheus scrape endpoint
app.mount("/metrics", make_asgi_app())


def run() -> None:
    """Console entry point."""
    import uvicorn

    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_config=None,
    )


if __name__ == "__main__":
    import uvicorn

    # Only watch src/ directory - prevents reload when code interpreter writes to data/
    uvicorn.run(
        "api.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=True,
        reload_dirs=["src"],
        log_config=None,
    )
