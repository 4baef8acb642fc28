"""chatsync backend application.

Entry point for the real-time chat synchronization service.

Modules:
    - messages: message store, read receipts, unread counts, REST surface
    - rooms: room visibility (hidden/shown) and participants
    - realtime: WebSocket gateway and connection registry
    - auth: bearer-token identity resolution
"""
import asyncio
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chatsync.config import ChatSyncConfig, get_config
from chatsync.container import build_services
from chatsync.errors import AuthenticationError, ChatSyncError
from chatsync.messages.router import router as messages_router
from chatsync.realtime.router import router as realtime_router
from chatsync.rooms.router import router as rooms_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Per-request and per-frame logs from the server stack drown out the gateway's.
for _noisy in (
    "uvicorn.access",
    "websockets",
    "websockets.protocol",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def fatal_exception_handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    """Treat an unhandled fault on the event loop as fatal.

    In-memory connection state may be inconsistent after such a fault, so the
    process asks itself to stop and relies on its supervisor to restart it.
    Dropped client transports are not faults and go to the default handler.
    """
    exc = context.get("exception")
    if exc is None or isinstance(exc, (ConnectionError, asyncio.CancelledError)):
        loop.default_exception_handler(context)
        return
    logger.critical(
        "Unhandled fault in event loop: %s", context.get("message", exc), exc_info=exc
    )
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(config: Optional[ChatSyncConfig] = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        config: Configuration to use. Loaded from the YAML files when
            omitted, so the module-level ``app`` honours ``server.allowed_origins``.
    """
    config = config or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Startup
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        services = build_services(config)
        app.state.services = services

        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()
        if config.server.terminate_on_fault:
            loop.set_exception_handler(fatal_exception_handler)

        logger.info(
            f"chatsync ready on http://{config.server.host}:{config.server.port} "
            f"(database={config.database.path})"
        )

        yield  # Application runs here

        # Shutdown
        await services.gateway.shutdown()
        services.close()
        loop.set_exception_handler(previous_handler)
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="chatsync API",
        description="Real-time message synchronization for chat rooms",
        version="0.1.0",
        lifespan=lifespan,
    )

    origins = config.server.allowed_origins or ["*"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.exception_handler(ChatSyncError)
    async def chatsync_error_handler(request: Request, exc: ChatSyncError) -> JSONResponse:
        headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthenticationError) else None
        return JSONResponse(
            {"success": False, "error": exc.message},
            status_code=exc.status_code,
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        detail = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
        field = ".".join(str(p) for p in errors[0].get("loc", ())[1:]) if errors else ""
        return JSONResponse(
            {"success": False, "error": f"{field}: {detail}" if field else detail},
            status_code=400,
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse({"success": False, "error": "Something went wrong!"}, status_code=500)

    app.include_router(messages_router)
    app.include_router(rooms_router)
    app.include_router(realtime_router)

    @app.get("/health")
    async def health() -> dict:
        """Health check endpoint.

        Returns:
            dict: Status object indicating the server is running.
        """
        return {"status": "ok"}

    return app


app = create_app()


def run() -> None:
    """Serve the application with uvicorn using the configured host and port."""
    import uvicorn

    cfg = get_config()
    uvicorn.run(create_app(cfg), host=cfg.server.host, port=cfg.server.port)
