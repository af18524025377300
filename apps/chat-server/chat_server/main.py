"""FastAPI application for the multi-provider chat server.

Provides REST endpoints for chats, messages and shared links, and a
WebSocket stream per chat that forwards live message updates from Redis.
"""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from chat_server.config import get_settings
from chat_server.db import close_engine, get_engine, init_db
from chat_server.deps import build_services
from chat_server.errors import ChatServiceError
from chat_server.publisher import MessageEventPublisher
from chat_server.routers import chats, messages, preferences, shared

logger = structlog.get_logger()


def _configure_structlog() -> None:
    """Set up structlog with human-readable console output."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(0),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage startup / shutdown resources.

    When ``app.state.services`` is already set (tests) nothing is created
    or torn down here.
    """
    if getattr(app.state, "services", None) is not None:
        yield
        return

    _configure_structlog()
    settings = get_settings()

    # Startup ---------------------------------------------------------------
    engine = get_engine(
        settings.POSTGRES_URL,
        ssl=settings.DB_SSL.lower() in ("1", "true", "yes"),
    )
    await init_db(engine)
    logger.info("db_engine_ready")

    publisher: MessageEventPublisher | None = None
    if settings.REDIS_URL:
        publisher = MessageEventPublisher(settings.REDIS_URL)
        await publisher.connect()
    else:
        logger.info("redis_skipped", reason="REDIS_URL not configured")

    app.state.services = build_services(engine, settings, publisher)
    logger.info("chat_server_started")

    yield

    # Shutdown --------------------------------------------------------------
    await app.state.services.dispatcher.shutdown()
    app.state.services = None

    if publisher is not None:
        await publisher.close()

    await close_engine()
    logger.info("shutdown_complete")


# ---------------------------------------------------------------------------
# Application
# ---------------------------------------------------------------------------


async def chat_service_error_handler(request: Request, exc: ChatServiceError) -> JSONResponse:
    """Render a service error with its status code and a client-safe message."""
    logger.info(
        "request_rejected",
        path=request.url.path,
        error=exc.__class__.__name__,
        status=exc.status_code,
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


def create_app() -> FastAPI:
    app = FastAPI(title="Chat Server API", lifespan=lifespan)
    app.state.services = None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_exception_handler(ChatServiceError, chat_service_error_handler)

    app.include_router(chats.router)
    app.include_router(messages.router)
    app.include_router(shared.router)
    app.include_router(preferences.router)

    app.add_api_route("/health", health, methods=["GET"])
    app.add_api_websocket_route("/chats/{chat_id}/stream", stream_chat)
    return app


async def health() -> dict[str, str]:
    """Liveness / readiness probe."""
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# WebSocket stream
# ---------------------------------------------------------------------------


async def stream_chat(websocket: WebSocket, chat_id: int) -> None:
    """Push live message updates for one chat to the client.

    Sends the current message list first, then every ``message_*`` event
    published for the chat until the client disconnects.
    """
    services = websocket.app.state.services
    user_id = websocket.headers.get(services.auth_header, "").strip()

    try:
        current = await services.ledger.get_chat_messages(user_id, chat_id)
    except ChatServiceError as exc:
        await websocket.close(code=1008, reason=exc.message)
        return

    await websocket.accept()
    logger.info("websocket_connected", chat_id=chat_id, client=str(websocket.client))

    if services.publisher is None:
        logger.error("websocket_no_redis")
        await websocket.close(code=1011, reason="Redis not available")
        return

    pubsub = await services.publisher.subscribe(chat_id)
    listener_task: asyncio.Task | None = None

    try:
        await websocket.send_json({
            "event": "snapshot",
            "messages": [m.model_dump(mode="json") for m in current],
        })

        async def _forward_messages() -> None:
            """Read from Redis pubsub and forward to the WebSocket client."""
            try:
                async for item in pubsub.listen():
                    if item["type"] != "message":
                        continue
                    try:
                        parsed = json.loads(item["data"])
                    except (json.JSONDecodeError, TypeError):
                        logger.warning("pubsub_invalid_json", chat_id=chat_id)
                        continue
                    await websocket.send_json(parsed)
            except asyncio.CancelledError:
                pass
            except Exception:
                logger.exception("pubsub_listener_error", chat_id=chat_id)

        listener_task = asyncio.create_task(_forward_messages())

        # Keep the handler alive until the client goes away; inbound frames are ignored
        while True:
            await websocket.receive_text()

    except WebSocketDisconnect:
        logger.info("websocket_disconnected", chat_id=chat_id, client=str(websocket.client))
    except Exception:
        logger.exception("websocket_error", chat_id=chat_id)
    finally:
        if listener_task is not None:
            listener_task.cancel()
            try:
                await listener_task
            except asyncio.CancelledError:
                pass
        await pubsub.unsubscribe()
        await pubsub.aclose()
        logger.info("pubsub_cleaned_up", chat_id=chat_id)


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    import uvicorn

    settings = get_settings()
    uvicorn.run("chat_server.main:app", host=settings.API_HOST, port=settings.API_PORT)
