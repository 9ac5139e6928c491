"""
Walk router: the phone app's view of the walk guardian.

Endpoints:
  POST /walk/start                   — start monitoring (needs an emergency contact)
  POST /walk/end                     — stop monitoring (idempotent)
  GET  /walk/status                  — current WalkStatus
  POST /walk/location                — position fix from the phone's GPS
  POST /walk/vitals                  — heart-rate sample relayed from the watch
  POST /walk/checkin/respond         — "I'm Safe" tapped
  POST /walk/checkin/authentication  — biometric outcome
  WS   /walk/ws                      — prompts, status, SMS hand-off, threshold pushes
"""

from __future__ import annotations

import asyncio
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Optional

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from core.alarms import LoopScheduler
from core.contact_channel import EmailChannel, SmsLinkChannel
from core.errors import ConfigurationError
from core.location_log import LocationLogClient
from core.session import WalkSession, status_text
from routers import settings as settings_router
from schemas.walk import (
    AuthenticationOutcome,
    CheckInRequest,
    CheckInState,
    PositionFix,
    StartWalkRequest,
    VitalsSample,
    WalkPhase,
    WalkSettings,
    WalkStatus,
)

logger = logging.getLogger("guardian.api")

router = APIRouter(prefix="/walk", tags=["walk"])


class WalkHub:
    """
    Fan-out of session output to every connected phone/watch socket.

    Session callbacks may run on the event loop or on escalation worker
    threads, so every message is handed to the loop with
    call_soon_threadsafe. The latest status, pending prompt and threshold are
    replayed to sockets that connect late.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._clients: set[asyncio.Queue] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.last_status: Optional[dict] = None
        self.pending_prompt: Optional[dict] = None
        self.heart_rate_threshold: Optional[float] = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        self._loop = loop

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._clients.add(queue)
            backlog = [self.last_status, self.pending_prompt]
            if self.heart_rate_threshold is not None:
                backlog.append({"type": "heart_rate_threshold", "bpm": self.heart_rate_threshold})
        for message in backlog:
            if message is not None:
                queue.put_nowait(message)
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._clients.discard(queue)

    # PromptSurface

    def present_check_in(self, request: CheckInRequest) -> None:
        message = {
            "type": "present_check_in",
            "prompt": request.prompt_text,
            "request": request.model_dump(mode="json"),
        }
        with self._lock:
            self.pending_prompt = message
        self._broadcast(message)

    def dismiss_check_in(self) -> None:
        with self._lock:
            self.pending_prompt = None
        self._broadcast({"type": "dismiss_check_in"})

    def status_changed(self, status: WalkStatus) -> None:
        message = {"type": "status", "status": status.model_dump(mode="json")}
        with self._lock:
            self.last_status = message
        self._broadcast(message)

    # WearableLink

    def send_heart_rate_threshold(self, bpm: float) -> None:
        with self._lock:
            self.heart_rate_threshold = bpm
        self._broadcast({"type": "heart_rate_threshold", "bpm": bpm})

    # SmsLinkChannel target

    def open_url(self, url: str) -> None:
        self._broadcast({"type": "open_url", "url": url})

    def _broadcast(self, message: dict[str, Any]) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        with self._lock:
            clients = list(self._clients)
        for queue in clients:
            loop.call_soon_threadsafe(queue.put_nowait, message)


hub = WalkHub()
_executor: Optional[ThreadPoolExecutor] = None
_session: Optional[WalkSession] = None


def _get_session() -> WalkSession:
    """Build the single walk session on first use, bound to the running loop."""
    global _session, _executor
    if _session is None:
        loop = asyncio.get_running_loop()
        hub.bind(loop)
        channels: list = [SmsLinkChannel(hub.open_url)]
        email = EmailChannel()
        if email.configured:
            channels.append(email)
        location_log = LocationLogClient.from_env()
        _executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="escalation")
        if location_log is None:
            logger.info("LOCATION_LOG_URL/TOKEN not set; escalations will not be logged remotely")
        _session = WalkSession(
            settings_router.current_settings(),
            LoopScheduler(loop),
            surface=hub,
            wearable=hub,
            channels=channels,
            location_log=location_log,
            executor=_executor,
        )
    return _session


def _apply_settings(settings: WalkSettings) -> None:
    if _session is not None:
        _session.update_settings(settings)


settings_router.on_change(_apply_settings)


def shutdown() -> None:
    """End any running walk and stop the escalation workers."""
    global _session, _executor
    if _session is not None:
        _session.end()
        _session = None
    if _executor is not None:
        _executor.shutdown(wait=False)
        _executor = None


def _active_session() -> WalkSession:
    session = _get_session()
    if not session.active:
        raise HTTPException(status_code=409, detail="no active walk")
    return session


@router.post("/start", response_model=WalkStatus)
async def start_walk(request: StartWalkRequest = StartWalkRequest()) -> WalkStatus:
    session = _get_session()
    try:
        return session.start(
            location_granted=request.location_granted,
            notifications_granted=request.notifications_granted,
            settings=settings_router.current_settings(),
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=400, detail=exc.reason)


@router.post("/end")
async def end_walk() -> dict:
    session = _get_session()
    ended = session.end()
    return {"ended": ended, "status": session.snapshot().model_dump(mode="json")}


@router.get("/status", response_model=WalkStatus)
async def walk_status() -> WalkStatus:
    if _session is None:
        settings = settings_router.current_settings()
        return WalkStatus(
            active=False,
            phase=WalkPhase.IDLE,
            status_text=status_text(
                phase=WalkPhase.IDLE,
                check_in_state=CheckInState.IDLE,
                has_contact=settings.emergency_contact is not None,
            ),
            check_in_state=CheckInState.IDLE,
        )
    return _session.snapshot()


@router.post("/location")
async def post_location(fix: PositionFix) -> dict:
    session = _active_session()
    return {"stationary_event": session.observe_fix(fix)}


@router.post("/vitals")
async def post_vitals(sample: VitalsSample) -> dict:
    session = _active_session()
    events = session.observe_vitals(sample)
    return {"events": [event.type.value for event in events]}


@router.post("/checkin/respond")
async def respond_safe() -> dict:
    session = _active_session()
    accepted = session.respond_safe()
    return {"accepted": accepted, "status": session.snapshot().model_dump(mode="json")}


@router.post("/checkin/authentication")
async def authentication_outcome(outcome: AuthenticationOutcome) -> dict:
    session = _active_session()
    accepted = session.record_authentication(outcome)
    return {"accepted": accepted, "status": session.snapshot().model_dump(mode="json")}


@router.websocket("/ws")
async def walk_ws(ws: WebSocket):
    _get_session()
    queue = hub.subscribe()
    await ws.accept()
    try:
        while True:
            message = await queue.get()
            await ws.send_json(message)
    except WebSocketDisconnect:
        pass
    finally:
        hub.unsubscribe(queue)
