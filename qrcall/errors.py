"""
Typed errors for the call engine.

Every error carries a stable ``code`` and the HTTP status the views answer
with. ``extra`` fields are merged into the JSON error body.
"""
from typing import Any, Dict, Optional


class CallError(Exception):
    code = "CALL_ERROR"
    status = 500

    def __init__(self, error: str, **extra: Any):
        super().__init__(error)
        self.message = error
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.message, "code": self.code}
        body.update(self.extra)
        return body


# Admission errors

class QRNotFound(CallError):
    code = "QR_NOT_FOUND"
    status = 404


class QRNotLinked(CallError):
    code = "QR_NOT_LINKED"
    status = 400


class DeviceNotFound(CallError):
    code = "DEVICE_NOT_FOUND"
    status = 404


class AnonymousCallsDisabled(CallError):
    code = "ANONYMOUS_CALLS_DISABLED"
    status = 403


class MaskedCallingUnavailable(CallError):
    code = "MASKED_CALLING_UNAVAILABLE"
    status = 400


class CallerPhoneRequired(CallError):
    code = "CALLER_PHONE_REQUIRED"
    status = 400


class ValidationFailed(CallError):
    code = "VALIDATION_ERROR"
    status = 400


class RateLimited(CallError):
    code = "RATE_LIMITED"
    status = 429


class StoreUnavailable(CallError):
    code = "STORE_UNAVAILABLE"
    status = 503


class CallCreationFailed(CallError):
    code = "CALL_INITIATION_ERROR"
    status = 500


# State-transition errors

class CallNotFound(CallError):
    code = "CALL_NOT_FOUND"
    status = 404


class InvalidCallStatus(CallError):
    code = "INVALID_CALL_STATUS"
    status = 400

    def __init__(self, current_status: Optional[str], message: Optional[str] = None):
        super().__init__(
            message or f"Call cannot change state from its current status: {current_status}",
            currentStatus=current_status,
        )
        self.current_status = current_status


class NotCallParticipant(CallError):
    code = "NOT_CALL_PARTICIPANT"
    status = 403


class AuthError(CallError):
    code = "INVALID_TOKEN"
    status = 401


# Collaborator errors

class RtcTokenError(CallError):
    code = "AGORA_TOKEN_ERROR"
    status = 500


class MaskedCallingError(CallError):
    code = "MASKED_CALLING_ERROR"
    status = 502


class WebhookPayloadError(CallError):
    code = "INVALID_WEBHOOK_PAYLOAD"
    status = 400


class WebhookSignatureError(CallError):
    code = "INVALID_WEBHOOK_SIGNATURE"
    status = 401
