"""
FastAPI backend for the Fall Monitor
REST endpoints plus a websocket event stream for the UI
"""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional, Set

from fastapi import APIRouter, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import AppSettings, load_settings
from database import create_db_engine, create_session_factory, init_db
from errors import UrlValidationError
from models import (
    AlertEvent,
    AlertState,
    ConnectionState,
    DetectionEvent,
    DetectionResult,
    SessionStats,
)
from monitor import FallMonitor
from utils import setup_logging

logger = logging.getLogger(__name__)


class ConnectRequest(BaseModel):
    url: Optional[str] = None  # falls back to the configured server URL


class WarningRequest(BaseModel):
    message: str


class EventBroadcaster:
    """
    Fans component events out to websocket clients. Publishers run on
    component threads; delivery happens on the server's event loop.
    """

    def __init__(self):
        self._queues: Set[asyncio.Queue] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = threading.Lock()

    def bind(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    def register(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._queues.add(queue)
        return queue

    def unregister(self, queue: asyncio.Queue):
        with self._lock:
            self._queues.discard(queue)

    def publish(self, kind: str, value: BaseModel):
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        event = {"event": kind, "data": value.model_dump(mode="json")}
        with self._lock:
            queues = list(self._queues)
        for queue in queues:
            loop.call_soon_threadsafe(queue.put_nowait, event)


router = APIRouter()


def _monitor(request: Request) -> FallMonitor:
    return request.app.state.monitor


# ==================== API ENDPOINTS ====================

@router.get("/")
def root(request: Request):
    """Root endpoint - API status"""
    monitor = _monitor(request)
    return {
        "status": "running",
        "name": "Fall Monitor API",
        "version": "1.0.0",
        "connection": monitor.connection.state.phase.value,
    }


@router.get("/api/connection", response_model=ConnectionState)
def get_connection_state(request: Request):
    return _monitor(request).connection.state


@router.post("/api/connection/connect", response_model=ConnectionState)
def connect_sensor(body: ConnectRequest, request: Request):
    """
    Connect to the wearable.
    Uses the configured server URL when none is given.
    """
    monitor = _monitor(request)
    url = body.url or monitor.settings.server_url
    try:
        monitor.connection.connect(url)
    except UrlValidationError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return monitor.connection.state


@router.post("/api/connection/disconnect", response_model=ConnectionState)
def disconnect_sensor(request: Request):
    monitor = _monitor(request)
    monitor.connection.disconnect()
    return monitor.connection.state


@router.post("/api/connection/reconnect", response_model=ConnectionState)
def reconnect_sensor(request: Request):
    """Manual retry, also the way out of the failed state"""
    monitor = _monitor(request)
    monitor.connection.reconnect()
    return monitor.connection.state


@router.get("/api/detection/latest", response_model=Optional[DetectionResult])
def get_latest_detection(request: Request):
    return _monitor(request).latest_detection


@router.get("/api/stats", response_model=SessionStats)
def get_session_stats(request: Request):
    return _monitor(request).get_session_stats()


@router.post("/api/stats/reset")
def reset_session_stats(request: Request):
    """Reset the current session statistics"""
    _monitor(request).reset_stats()
    return {"message": "Session statistics reset successfully"}


@router.get("/api/alert", response_model=AlertState)
def get_alert_state(request: Request):
    return _monitor(request).alerts.state


@router.post("/api/alert/dismiss", response_model=AlertState)
def dismiss_alert(request: Request):
    monitor = _monitor(request)
    monitor.dismiss_alert()
    return monitor.alerts.state


@router.post("/api/alert/im-ok", response_model=AlertState)
def im_ok(request: Request):
    """User acknowledged the alert"""
    monitor = _monitor(request)
    monitor.handle_im_ok_response()
    return monitor.alerts.state


@router.post("/api/alert/warning", response_model=AlertState)
def trigger_warning(body: WarningRequest, request: Request):
    monitor = _monitor(request)
    monitor.trigger_warning_alert(body.message)
    return monitor.alerts.state


@router.get("/api/alerts/history", response_model=List[AlertEvent])
def get_alert_history(request: Request, limit: int = 20):
    return _monitor(request).recent_alerts(limit)


@router.get("/api/detections/history", response_model=List[DetectionEvent])
def get_detection_history(request: Request, limit: int = 50):
    return _monitor(request).recent_detections(limit)


@router.get("/api/settings")
def get_settings(request: Request) -> Dict[str, Any]:
    return _monitor(request).settings.model_dump(exclude={"database_url"})


@router.websocket("/ws")
async def event_stream(ws: WebSocket):
    """
    Pushes `connection`, `detection` and `alert` events.
    Current connection and alert state are sent first.
    """
    await ws.accept()
    monitor: FallMonitor = ws.app.state.monitor
    broadcaster: EventBroadcaster = ws.app.state.broadcaster
    queue = broadcaster.register()

    async def forward():
        while True:
            event = await queue.get()
            await ws.send_json(event)

    sender: Optional[asyncio.Task] = None
    try:
        await ws.send_json({"event": "connection", "data": monitor.connection.state.model_dump(mode="json")})
        await ws.send_json({"event": "alert", "data": monitor.alerts.state.model_dump(mode="json")})
        sender = asyncio.create_task(forward())
        # Client messages are ignored; this only notices the disconnect
        while True:
            await ws.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        if sender is not None:
            sender.cancel()
        broadcaster.unregister(queue)


def _build_monitor(settings: AppSettings) -> FallMonitor:
    engine = create_db_engine(settings.database_url)
    init_db(engine)
    return FallMonitor(settings, session_factory=create_session_factory(engine))


def create_app(monitor: Optional[FallMonitor] = None, settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the API. A ready monitor can be passed in (tests, embedding)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events"""
        logger.info("Starting Fall Monitor backend...")
        active = monitor or _build_monitor(settings or load_settings())

        broadcaster = EventBroadcaster()
        broadcaster.bind(asyncio.get_running_loop())
        unsubscribers = [
            active.connection.subscribe(lambda s: broadcaster.publish("connection", s)),
            active.subscribe_detections(lambda d: broadcaster.publish("detection", d)),
            active.alerts.subscribe(lambda a: broadcaster.publish("alert", a)),
        ]

        app.state.monitor = active
        app.state.broadcaster = broadcaster
        active.start()

        yield

        logger.info("Shutting down...")
        for unsubscribe in unsubscribers:
            unsubscribe()
        active.stop()

    app = FastAPI(
        title="Fall Monitor API",
        description="Real-time fall detection from a wearable accelerometer/gyroscope stream",
        version="1.0.0",
        lifespan=lifespan,
    )

    # Enable CORS for frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(router)
    return app


app = create_app()


# ==================== MAIN ====================

if __name__ == "__main__":
    import uvicorn

    setup_logging()
    settings = load_settings()
    uvicorn.run(
        "main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=False,
    )
