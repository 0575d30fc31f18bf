# Models are stored in Firebase Firestore (or the in-memory store), not the Django DB.
#
# Firestore Collections:
# - qrCodes/{qrId}: QR status, linkedTo {userId, deviceId, linkedAt}, emergencyInfo, stats
# - devices/{deviceId}: owner {userId, userName, phone}, status, settings
# - users/{uid}: push endpoints (platform, fcmToken, voipToken, deviceTokens) and phone
# - calls/{callId}: call lifecycle record built by build_call_record()
#
# See firebase_service.py / memory_store.py for the store operations.
import secrets

from django.utils import timezone

from .constants import (
    ANONYMOUS_CALLER_NAME,
    EMERGENCY_GENERAL,
    METHOD_DIRECT,
    STATUS_INITIATED,
)
from .utils import generate_channel_name


def build_call_record(
    call_id: str,
    qr_code: dict,
    device: dict,
    call_type: str,
    call_method: str,
    caller_info: dict,
    emergency_type: str,
    urgency_level: str,
    metadata: dict = None,
) -> dict:
    """
    Build a new call document in ``initiated`` status.

    Document structure at calls/{callId}:
    {
        "callId": "uuid",
        "receiverId": "owner user id",
        "qrCodeId": "QR id",
        "channelName": "emergency_<callId>",
        "callType": "audio" | "video",
        "callMethod": "direct" | "masked",
        "requestedCallMethod": "direct" | "masked",
        "status": "initiated",
        "callerInfo": {name, phone, location, description, additionalInfo,
                       emergencyType, urgencyLevel},
        "deviceInfo": {"deviceId": ...},
        "timing": {initiatedAt, answeredAt, endedAt, duration},
        "endedBy": null,
        "maskedCallInfo": null,
        "callQuality": null,
        "callerKey": "per-call secret held by the anonymous caller",
        ...
    }
    """
    caller_info = caller_info or {}
    now = timezone.now()
    return {
        "callId": call_id,
        "callerId": None,
        "receiverId": qr_code["linkedTo"]["userId"],
        "qrCodeId": qr_code["qrId"],
        "channelName": generate_channel_name(call_id),
        "callType": call_type,
        "callMethod": call_method or METHOD_DIRECT,
        "requestedCallMethod": call_method or METHOD_DIRECT,
        "status": STATUS_INITIATED,
        "callerInfo": {
            "name": caller_info.get("name") or ANONYMOUS_CALLER_NAME,
            "phone": caller_info.get("phone") or None,
            "location": caller_info.get("location") or "Unknown location",
            "description": caller_info.get("description") or "",
            "additionalInfo": caller_info.get("additionalInfo") or "",
            "emergencyType": emergency_type,
            "urgencyLevel": urgency_level,
        },
        "deviceInfo": {
            "deviceId": device["deviceId"],
        },
        "anonymousCall": True,
        "isEmergency": emergency_type != EMERGENCY_GENERAL,
        "timing": {
            "initiatedAt": now,
            "answeredAt": None,
            "endedAt": None,
            "duration": 0,
        },
        "endedBy": None,
        "maskedCallInfo": None,
        "callQuality": None,
        "callerKey": secrets.token_urlsafe(24),
        "metadata": metadata or {},
        "createdAt": now,
    }


def public_call_view(call: dict) -> dict:
    """Call document without secrets, for receiver-facing responses."""
    view = dict(call)
    view.pop("callerKey", None)
    return view
