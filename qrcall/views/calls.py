import logging

from django.conf import settings
from django.http import HttpResponseNotAllowed, JsonResponse
from django.views.decorators.csrf import csrf_exempt

from ..apps import get_services
from ..auth import authenticate_user, end_actor, require_system
from ..constants import (
    CALL_METHODS,
    CALL_TYPES,
    CALLER_INFO_LIMITS,
    EMERGENCY_GENERAL,
    EMERGENCY_TYPES,
    METHOD_DIRECT,
    URGENCY_LEVELS,
)
from ..engine import InitiateRequest
from ..errors import CallNotFound, StoreUnavailable, ValidationFailed
from ..http import handles_call_errors, json_body
from ..ratelimit import check_call_rate, client_ip

logger = logging.getLogger("qrcall")


def _choice(data: dict, key: str, choices, default, errors: list):
    value = data.get(key, default)
    if value is None:
        value = default
    if value not in choices:
        errors.append({"field": key, "message": f"Must be one of: {', '.join(choices)}"})
    return value


def parse_initiate_request(data: dict, metadata: dict) -> InitiateRequest:
    errors = []

    qr_id = data.get("qrId")
    if not isinstance(qr_id, str) or not qr_id.strip():
        errors.append({"field": "qrId", "message": "QR code ID is required"})

    call_type = _choice(data, "callType", CALL_TYPES, "audio", errors)
    call_method = _choice(data, "callMethod", CALL_METHODS, METHOD_DIRECT, errors)
    emergency_type = _choice(data, "emergencyType", EMERGENCY_TYPES, EMERGENCY_GENERAL, errors)
    urgency_level = _choice(data, "urgencyLevel", URGENCY_LEVELS, "medium", errors)

    caller_info = data.get("callerInfo") or {}
    if not isinstance(caller_info, dict):
        errors.append({"field": "callerInfo", "message": "Must be an object"})
        caller_info = {}
    cleaned = {}
    for key, limit in CALLER_INFO_LIMITS.items():
        value = caller_info.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            errors.append({"field": f"callerInfo.{key}", "message": "Must be a string"})
        elif len(value) > limit:
            errors.append({"field": f"callerInfo.{key}", "message": f"Must be at most {limit} characters"})
        else:
            cleaned[key] = value.strip()

    if errors:
        raise ValidationFailed("Validation failed", details=errors)

    return InitiateRequest(
        qr_id=qr_id.strip(),
        call_type=call_type,
        call_method=call_method,
        caller_info=cleaned,
        emergency_type=emergency_type,
        urgency_level=urgency_level,
        metadata=metadata,
    )


def _require_store(services) -> None:
    if not services.store.is_available():
        raise StoreUnavailable("Firebase Firestore is not configured")


@csrf_exempt
@handles_call_errors
def call_initiate(request):
    """
    Anonymous caller scanned a QR code: resolve the owner, open a channel
    and ring the owner's devices.
    """
    ip = client_ip(request)
    logger.info(f"[CALL/INITIATE] {request.method} from {ip}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    call_request = parse_initiate_request(data, {
        "ipAddress": ip,
        "userAgent": request.META.get("HTTP_USER_AGENT", ""),
    })
    check_call_rate(ip, call_request.qr_id, settings.CALL_RATE_LIMIT_MAX, settings.CALL_RATE_LIMIT_WINDOW)

    services = get_services()
    _require_store(services)
    return JsonResponse(services.engine.initiate(call_request))


@csrf_exempt
@handles_call_errors
def call_answer(request, call_id):
    logger.info(f"[CALL/ANSWER] {request.method} {call_id} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    user_id = authenticate_user(request)
    services = get_services()
    _require_store(services)
    return JsonResponse(services.engine.answer(call_id, user_id))


@csrf_exempt
@handles_call_errors
def call_reject(request, call_id):
    logger.info(f"[CALL/REJECT] {request.method} {call_id} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    reason = data.get("reason")
    if reason is not None and (not isinstance(reason, str) or len(reason) > 200):
        raise ValidationFailed("Validation failed", details=[{"field": "reason", "message": "Must be a string of at most 200 characters"}])

    user_id = authenticate_user(request)
    services = get_services()
    _require_store(services)
    return JsonResponse(services.engine.reject(call_id, user_id, reason))


def _parse_call_quality(value):
    if value is None:
        return None
    if not isinstance(value, dict):
        raise ValidationFailed("Validation failed", details=[{"field": "callQuality", "message": "Must be an object"}])
    rating = value.get("rating")
    if rating is not None and (isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5):
        raise ValidationFailed("Validation failed", details=[{"field": "callQuality.rating", "message": "Must be an integer from 1 to 5"}])
    feedback = value.get("feedback")
    if feedback is not None and (not isinstance(feedback, str) or len(feedback) > 500):
        raise ValidationFailed("Validation failed", details=[{"field": "callQuality.feedback", "message": "Must be at most 500 characters"}])
    return {"rating": rating, "feedback": feedback or ""}


@csrf_exempt
@handles_call_errors
def call_end(request, call_id):
    """Any participant may end: receiver (bearer), caller (X-Caller-Key) or system (X-System-Key)."""
    logger.info(f"[CALL/END] {request.method} {call_id} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    data, error = json_body(request)
    if error:
        return error

    call_quality = _parse_call_quality(data.get("callQuality"))

    services = get_services()
    _require_store(services)
    call = services.store.get_call_record(call_id)
    if not call:
        raise CallNotFound("Call not found")

    ended_by = end_actor(request, call, data.get("endedBy"))
    return JsonResponse(services.engine.end(call_id, ended_by, call_quality))


@csrf_exempt
@handles_call_errors
def call_status(request, call_id):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    services = get_services()
    _require_store(services)
    return JsonResponse(services.engine.status(call_id))


@csrf_exempt
@handles_call_errors
def call_detail(request, call_id):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    user_id = authenticate_user(request)
    services = get_services()
    _require_store(services)
    return JsonResponse(services.engine.detail(call_id, user_id))


def _positive_int(value, default, maximum=None):
    try:
        value = int(value)
    except (TypeError, ValueError):
        return default
    if value < 1:
        return default
    return min(value, maximum) if maximum else value


@csrf_exempt
@handles_call_errors
def call_history(request):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])

    user_id = authenticate_user(request)

    page = _positive_int(request.GET.get("page"), 1)
    limit = _positive_int(request.GET.get("limit"), 20, maximum=100)
    call_method = request.GET.get("callMethod") or None
    if call_method and call_method not in CALL_METHODS:
        raise ValidationFailed("Validation failed", details=[{"field": "callMethod", "message": f"Must be one of: {', '.join(CALL_METHODS)}"}])
    emergency_only = request.GET.get("emergencyOnly", "").lower() in ("1", "true", "yes")

    services = get_services()
    _require_store(services)
    return JsonResponse(services.engine.history(
        user_id,
        page=page,
        limit=limit,
        call_method=call_method,
        emergency_only=emergency_only,
    ))


@csrf_exempt
@handles_call_errors
def call_methods(request):
    if request.method != "GET":
        return HttpResponseNotAllowed(["GET"])
    return JsonResponse(get_services().engine.methods())


@csrf_exempt
@handles_call_errors
def call_timeout_sweep(request):
    """
    Mark initiated calls older than the ring timeout as missed.
    Intended for a cron job; requires the system key.
    """
    logger.info(f"[CALL/SWEEP] {request.method} from {request.META.get('REMOTE_ADDR')}")

    if request.method != "POST":
        return HttpResponseNotAllowed(["POST"])

    require_system(request)

    data, error = json_body(request)
    if error:
        return error

    timeout_seconds = _positive_int(data.get("timeout_seconds"), settings.CALL_RING_TIMEOUT)
    services = get_services()
    _require_store(services)
    return JsonResponse(services.engine.sweep_expired(timeout_seconds))
