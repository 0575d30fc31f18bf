import hmac
import logging
from typing import Optional

import jwt
from django.conf import settings

from .errors import AuthError, NotCallParticipant

logger = logging.getLogger("qrcall")

CALLER_KEY_HEADER = "HTTP_X_CALLER_KEY"
SYSTEM_KEY_HEADER = "HTTP_X_SYSTEM_KEY"


def decode_user_token(token: str, secret: Optional[str] = None) -> str:
    """Verify an HS256 bearer token and return the user id it names."""
    secret = secret or settings.QRCALL_JWT_SECRET
    if not secret:
        raise AuthError("Authentication is not configured")
    try:
        claims = jwt.decode(token, secret, algorithms=["HS256"])
    except jwt.ExpiredSignatureError:
        raise AuthError("Token expired")
    except jwt.InvalidTokenError as e:
        logger.warning(f"[AUTH] Invalid token: {e}")
        raise AuthError("Invalid token")

    user_id = claims.get("user_id") or claims.get("sub")
    if not user_id:
        raise AuthError("Token has no user id")
    return str(user_id)


def socket_user(token: str) -> Optional[str]:
    try:
        return decode_user_token(token)
    except AuthError:
        return None


def bearer_token(request) -> Optional[str]:
    header = request.META.get("HTTP_AUTHORIZATION", "")
    if header.lower().startswith("bearer "):
        return header[7:].strip() or None
    return None


def authenticate_user(request) -> str:
    token = bearer_token(request)
    if not token:
        raise AuthError("Access token required")
    return decode_user_token(token)


def optional_user(request) -> Optional[str]:
    token = bearer_token(request)
    if not token:
        return None
    return decode_user_token(token)


def is_system_request(request) -> bool:
    expected = settings.QRCALL_SYSTEM_API_KEY
    provided = request.META.get(SYSTEM_KEY_HEADER, "")
    return bool(expected) and hmac.compare_digest(expected, provided)


def require_system(request) -> None:
    if not is_system_request(request):
        raise AuthError("System key required")


def end_actor(request, call: dict, requested_by: Optional[str] = None) -> str:
    """
    Which participant is ending ``call``: the receiver (bearer token), the
    anonymous caller (per-call key) or the system (system key).
    """
    user_id = optional_user(request)
    if user_id:
        if user_id == call.get("receiverId"):
            return "receiver"
        raise NotCallParticipant("Not a participant of this call")

    caller_key = request.META.get(CALLER_KEY_HEADER, "")
    if caller_key and call.get("callerKey") and hmac.compare_digest(call["callerKey"], caller_key):
        return "caller"

    if is_system_request(request):
        return "timeout" if requested_by == "timeout" else "system"

    raise NotCallParticipant("Not a participant of this call")
