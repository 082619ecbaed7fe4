# session.py
"""Per-connection streaming sessions.

Each connected client gets a StreamSession running two tasks:
- a polling loop: scan at the current interval, push the snapshot, wait the cadence
- a receiver: applies {"timeframe": ...} control messages to the session

Disconnect cancels the polling task, which interrupts a pending wait or an
in-flight scan, so nothing more is pushed on that connection.
"""

import asyncio
import logging
import uuid
from enum import Enum
from typing import Dict, Optional

from pydantic import ValidationError
from starlette.websockets import WebSocketDisconnect

from models import TimeframeMessage, snapshot_to_json
from scanner import UniverseScanner

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL = "30m"
DEFAULT_CADENCE_SECONDS = 8.0
SCAN_FAILED_MESSAGE = "Failed to fetch indicator data"


class SessionState(str, Enum):
    IDLE = "idle"
    ACTIVE = "active"
    STOPPED = "stopped"


class StreamSession:
    """One client's polling loop. Idle -> Active -> Stopped, no re-entry."""

    def __init__(
        self,
        websocket,
        scanner: UniverseScanner,
        interval: str = DEFAULT_INTERVAL,
        cadence: float = DEFAULT_CADENCE_SECONDS,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.websocket = websocket
        self.scanner = scanner
        self.interval = interval
        self.cadence = cadence
        self.state = SessionState.IDLE
        self.pushes = 0
        self._poll_task: Optional[asyncio.Task] = None

    @property
    def active(self) -> bool:
        return self.state is SessionState.ACTIVE

    def start(self) -> None:
        if self.state is not SessionState.IDLE:
            raise RuntimeError(f"Session {self.session_id} already {self.state.value}")
        self.state = SessionState.ACTIVE
        self._poll_task = asyncio.create_task(self._poll_loop())

    async def run(self) -> None:
        """Serve the connection until the client leaves or pushing fails."""
        self.start()
        receiver = asyncio.create_task(self._receive_loop())
        try:
            await asyncio.wait({self._poll_task, receiver}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            receiver.cancel()
            await self.stop()
            for task in (self._poll_task, receiver):
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("Session %s: task failed", self.session_id)

    async def stop(self) -> None:
        if self.state is SessionState.STOPPED:
            return
        self.state = SessionState.STOPPED

        task = self._poll_task
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    def handle_message(self, raw: str) -> bool:
        """Apply a control message. Returns False when it was ignored."""
        try:
            message = TimeframeMessage.model_validate_json(raw)
        except ValidationError:
            logger.warning("Session %s: ignoring malformed control message %r", self.session_id, raw[:200])
            return False

        if message.timeframe != self.interval:
            logger.info(
                "Session %s: interval %s -> %s", self.session_id, self.interval, message.timeframe
            )
        # Read once per cycle by the polling loop, so a scan in flight keeps its interval
        self.interval = message.timeframe
        return True

    def handle_frame(self, message: dict) -> bool:
        """Apply one inbound websocket frame; only text frames carry control messages."""
        raw = message.get("text")
        if raw is None:
            logger.warning(
                "Session %s: ignoring malformed control message (binary frame of %d bytes)",
                self.session_id,
                len(message.get("bytes") or b""),
            )
            return False
        return self.handle_message(raw)

    async def _receive_loop(self) -> None:
        while self.active:
            try:
                message = await self.websocket.receive()
            except RuntimeError as exc:
                logger.debug("Session %s: receive failed: %s", self.session_id, exc)
                return
            if message["type"] == "websocket.disconnect":
                logger.debug("Session %s: client disconnected", self.session_id)
                return
            self.handle_frame(message)

    async def _poll_loop(self) -> None:
        while self.active:
            interval = self.interval
            try:
                snapshot = await self.scanner.scan(interval)
                payload = snapshot_to_json(snapshot)
            except Exception:
                logger.exception("Session %s: scan at %s failed", self.session_id, interval)
                payload = {"error": SCAN_FAILED_MESSAGE}

            if not self.active:
                break
            try:
                await self.websocket.send_json(payload)
            except (WebSocketDisconnect, RuntimeError, OSError) as exc:
                logger.info("Session %s: push failed, closing: %s", self.session_id, exc)
                self.state = SessionState.STOPPED
                break
            self.pushes += 1

            await asyncio.sleep(self.cadence)


class SessionRegistry:
    """Live sessions keyed by session id."""

    def __init__(
        self,
        scanner: UniverseScanner,
        default_interval: str = DEFAULT_INTERVAL,
        cadence: float = DEFAULT_CADENCE_SECONDS,
    ):
        self.scanner = scanner
        self.default_interval = default_interval
        self.cadence = cadence
        self._sessions: Dict[str, StreamSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def get(self, session_id: str) -> Optional[StreamSession]:
        return self._sessions.get(session_id)

    def open(self, websocket) -> StreamSession:
        session = StreamSession(
            websocket,
            self.scanner,
            interval=self.default_interval,
            cadence=self.cadence,
        )
        self._sessions[session.session_id] = session
        logger.info("Stream session %s opened (%d active)", session.session_id, len(self._sessions))
        return session

    def discard(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            logger.info("Stream session %s closed (%d active)", session_id, len(self._sessions))

    async def serve(self, websocket) -> None:
        session = self.open(websocket)
        try:
            await session.run()
        finally:
            self.discard(session.session_id)

    async def close_all(self) -> None:
        sessions = list(self._sessions.values())
        await asyncio.gather(*(session.stop() for session in sessions))
        for session in sessions:
            self.discard(session.session_id)
