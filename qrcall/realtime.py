"""
Socket.IO fan-out. Each client joins a room named after its identity
("<userId>" for owners, "caller_<callId>" for anonymous callers); the engine
publishes call lifecycle events into those rooms.
"""
import logging
from typing import Any, Callable, Optional

import socketio

from .constants import EVENT_EMERGENCY_ALERT

logger = logging.getLogger("qrcall")


class RealtimeHub:
    """Publishes events through a socketio.Server. Never raises into callers."""

    def __init__(self, sio: socketio.Server):
        self.sio = sio

    def publish(self, room: str, event: str, data: dict) -> bool:
        if not room:
            return False
        try:
            self.sio.emit(event, data, to=room)
            return True
        except Exception as e:
            logger.error(f"[SOCKET] Failed to emit {event} to {room}: {e}")
            return False

    def broadcast(self, event: str, data: dict) -> bool:
        try:
            self.sio.emit(event, data)
            return True
        except Exception as e:
            logger.error(f"[SOCKET] Failed to broadcast {event}: {e}")
            return False


def create_socket_server(
    cors_allowed_origins="*",
    ping_timeout: int = 60,
    ping_interval: int = 25,
    authenticate: Optional[Callable[[str], Optional[str]]] = None,
    require_auth: bool = False,
) -> socketio.Server:
    sio = socketio.Server(
        async_mode="threading",
        cors_allowed_origins=cors_allowed_origins,
        ping_timeout=ping_timeout,
        ping_interval=ping_interval,
    )
    register_handlers(sio, authenticate=authenticate, require_auth=require_auth)
    return sio


def register_handlers(sio, authenticate=None, require_auth: bool = False):
    """
    ``authenticate`` maps a bearer token to a user id (or None). When
    ``require_auth`` is set, a socket may only join its own user room or an
    anonymous caller room.
    """

    @sio.event
    def connect(sid, environ, auth=None):
        user_id = None
        token = (auth or {}).get("token") if isinstance(auth, dict) else None
        if token and authenticate:
            user_id = authenticate(token)
        sio.save_session(sid, {"userId": user_id})
        logger.info(f"[SOCKET] Connected: {sid} user={user_id}")

    @sio.on("join-user")
    def join_user(sid, identity):
        if not isinstance(identity, str) or not identity:
            sio.emit("error", {"error": "invalid_identity"}, to=sid)
            return
        if require_auth and not identity.startswith("caller_"):
            session = sio.get_session(sid)
            if session.get("userId") != identity:
                logger.warning(f"[SOCKET] {sid} refused join for {identity}")
                sio.emit("error", {"error": "not_authorized", "identity": identity}, to=sid)
                return
        sio.enter_room(sid, identity)
        logger.info(f"[SOCKET] {identity} joined room")
        sio.emit("joined", {"userId": identity, "socketId": sid}, to=sid)

    @sio.on("leave-user")
    def leave_user(sid, identity):
        if isinstance(identity, str) and identity:
            sio.leave_room(sid, identity)
            logger.info(f"[SOCKET] {identity} left room")

    @sio.on(EVENT_EMERGENCY_ALERT)
    def emergency_alert(sid, data: Any):
        logger.warning(f"[SOCKET] Emergency alert from {sid}")
        sio.emit(EVENT_EMERGENCY_ALERT, data, skip_sid=sid)

    @sio.event
    def disconnect(sid, *args):
        logger.info(f"[SOCKET] Disconnected: {sid}")

    return sio
