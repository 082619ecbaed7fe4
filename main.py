# main.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Query, WebSocket, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.websockets import WebSocketState

from config import Settings, get_settings
from market_data import MarketDataSource, create_source
from models import PreviousRSIStore, snapshot_to_json
from scanner import UniverseScanner
from session import SCAN_FAILED_MESSAGE, SessionRegistry

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)


def create_app(
    settings: Optional[Settings] = None,
    source: Optional[MarketDataSource] = None,
) -> FastAPI:
    """Build the service. ``source`` overrides the one chosen by settings."""
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        data_source = source or create_source(settings)
        scanner = UniverseScanner(
            data_source,
            store=PreviousRSIStore(),
            bar_limit=settings.kline_limit,
            concurrency=settings.scan_concurrency,
        )
        app.state.scanner = scanner
        app.state.sessions = SessionRegistry(
            scanner,
            default_interval=settings.default_interval,
            cadence=settings.stream_interval_seconds,
        )
        logger.info(
            "Starting %s v%s (source=%s)",
            settings.app_name,
            settings.app_version,
            type(data_source).__name__,
        )

        yield

        logger.info("Shutting down, closing %d stream sessions", len(app.state.sessions))
        await app.state.sessions.close_all()
        await data_source.aclose()

    app = FastAPI(title=settings.app_name, version=settings.app_version, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- GET /api/indicators: one-shot snapshot ---

    @app.get("/api/indicators", tags=["Indicators"])
    async def get_indicators(interval: str = Query(default=settings.default_interval)):
        """RSI, RSI direction and ATR for every tradable symbol at ``interval``."""
        try:
            snapshot = await app.state.scanner.scan(interval)
        except Exception:
            logger.exception("Indicator scan at %s failed", interval)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": SCAN_FAILED_MESSAGE},
            )
        return snapshot_to_json(snapshot)

    # --- WS /ws: streaming snapshots ---

    @app.websocket("/ws")
    async def indicators_stream(websocket: WebSocket):
        """Push a snapshot every cadence; clients switch interval with {"timeframe": ...}."""
        await websocket.accept()
        try:
            await app.state.sessions.serve(websocket)
        finally:
            # Server-side stop (shutdown, failed push) leaves the socket open
            if (
                websocket.client_state == WebSocketState.CONNECTED
                and websocket.application_state == WebSocketState.CONNECTED
            ):
                await websocket.close()

    @app.get("/health", tags=["Health"])
    async def health_check():
        return {
            "status": "healthy",
            "app": settings.app_name,
            "version": settings.app_version,
            "active_sessions": len(app.state.sessions),
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(app, host=settings.host, port=settings.port)
