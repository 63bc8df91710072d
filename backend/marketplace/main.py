"""
FastAPI application: routers, error handlers and background services

Run with ``uvicorn marketplace.main:app`` from the ``backend`` directory.
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from .config import settings
from .core.logging import setup_logging, get_logger
from .database import SessionLocal, init_db
from .errors import MarketplaceError
from .realtime.rooms import RoomManager, RealtimeEventSubscriber
from .routes import posts, bids, chat, sale_chats, notifications, realtime
from .services.auction_expiration import AuctionExpirationService
from .services.chat_service import ChatStore
from .services.events import EventBus, event_bus
from .services.notifications import NotificationEventSubscriber

logger = get_logger(__name__)


def create_app(
    session_factory: sessionmaker = SessionLocal,
    bus: EventBus = event_bus,
    enable_sweeper: Optional[bool] = None,
) -> FastAPI:
    if enable_sweeper is None:
        enable_sweeper = settings.expiration_sweeper_enabled

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging()
        init_db(bind=session_factory.kw.get("bind"))

        rooms = RoomManager(ChatStore(session_factory))
        rooms.start()
        notification_subscriber = NotificationEventSubscriber(session_factory)
        realtime_subscriber = RealtimeEventSubscriber(rooms)
        bus.subscribe(notification_subscriber)
        bus.subscribe(realtime_subscriber)

        sweeper = AuctionExpirationService(session_factory) if enable_sweeper else None
        if sweeper is not None:
            await sweeper.start()

        app.state.session_factory = session_factory
        app.state.rooms = rooms
        app.state.sweeper = sweeper
        logger.info(f"{settings.app_name} started", extra={"event": "app_started"})

        try:
            yield
        finally:
            if sweeper is not None:
                await sweeper.stop()
            bus.unsubscribe(realtime_subscriber)
            bus.unsubscribe(notification_subscriber)
            await rooms.shutdown()
            logger.info(f"{settings.app_name} stopped", extra={"event": "app_stopped"})

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

    origins = settings.get_allowed_origins()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials="*" not in origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(MarketplaceError)
    async def marketplace_error_handler(request: Request, exc: MarketplaceError):
        return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})

    @app.exception_handler(SQLAlchemyError)
    async def database_error_handler(request: Request, exc: SQLAlchemyError):
        logger.error(
            f"Database error on {request.method} {request.url.path}: {exc}",
            exc_info=exc,
            extra={"event": "database_error"},
        )
        return JSONResponse(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "Server error"})

    app.include_router(posts.router, prefix="/posts", tags=["posts"])
    app.include_router(bids.router, prefix="/bids", tags=["bids"])
    app.include_router(chat.router, prefix="/chat", tags=["chat"])
    app.include_router(sale_chats.router, prefix="/sale-chats", tags=["sale-chats"])
    app.include_router(notifications.router, prefix="/notifications", tags=["notifications"])
    app.include_router(realtime.router, tags=["realtime"])

    @app.get("/health")
    def health_check(request: Request):
        rooms = getattr(request.app.state, "rooms", None)
        sweeper = getattr(request.app.state, "sweeper", None)
        return {
            "status": "healthy",
            "connections": rooms.connection_count if rooms else 0,
            "sweeper": bool(sweeper and sweeper.running),
            "lastSweepAt": sweeper.last_run_at if sweeper else None,
        }

    return app


app = create_app()
