"""
Masked-calling provider webhooks.

Payloads are parsed into a closed set of event types at the boundary; the
reconciler then applies each one as a single lifecycle transition. Duplicate
or out-of-order deliveries are accepted and dropped so the provider stops
retrying.
"""
import hashlib
import hmac
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone as dt_timezone
from typing import Any, ClassVar, Dict, Optional

from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .constants import (
    EVENT_CALL_ENDED,
    EVENT_MASKED_CALL_UPDATE,
    METHOD_MASKED,
    STATUS_ANSWERED,
    STATUS_ENDED,
    STATUS_FAILED,
)
from .errors import CallNotFound, InvalidCallStatus, WebhookPayloadError, WebhookSignatureError
from .lifecycle import can_transition, compute_duration, has_reached
from .utils import caller_uid, format_timestamp, normalize_datetime

logger = logging.getLogger("qrcall")

SIGNATURE_HEADER = "HTTP_X_MASKED_SIGNATURE"


@dataclass(frozen=True)
class MaskedEvent:
    event_type: ClassVar[str] = ""
    target_status: ClassVar[Optional[str]] = None

    call_id: str
    timestamp: datetime
    masked_call_id: Optional[str] = None
    duration: Optional[int] = None
    provider_status: Optional[str] = None
    participants: Any = None
    raw_type: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CallAnswered(MaskedEvent):
    event_type: ClassVar[str] = "call_answered"
    target_status: ClassVar[Optional[str]] = STATUS_ANSWERED


@dataclass(frozen=True)
class CallEnded(MaskedEvent):
    event_type: ClassVar[str] = "call_ended"
    target_status: ClassVar[Optional[str]] = STATUS_ENDED


@dataclass(frozen=True)
class CallFailed(MaskedEvent):
    event_type: ClassVar[str] = "call_failed"
    target_status: ClassVar[Optional[str]] = STATUS_FAILED


@dataclass(frozen=True)
class IgnoredEvent(MaskedEvent):
    """Known provider event that does not drive the call lifecycle."""


EVENT_CLASSES = {
    "call_answered": CallAnswered,
    "call_ended": CallEnded,
    "call_failed": CallFailed,
    "call_initiated": IgnoredEvent,
    "call_ringing": IgnoredEvent,
}


def verify_signature(body: bytes, signature: Optional[str], secret: Optional[str], allow_unsigned: bool = False) -> None:
    """HMAC-SHA256 of the raw body, hex encoded, optionally prefixed with 'sha256='."""
    if not secret:
        if allow_unsigned:
            return
        raise WebhookSignatureError("Webhook secret is not configured")
    if not signature:
        raise WebhookSignatureError("Missing webhook signature")
    if signature.startswith("sha256="):
        signature = signature[len("sha256="):]
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    if not hmac.compare_digest(expected, signature):
        raise WebhookSignatureError("Invalid webhook signature")


def _parse_timestamp(value) -> datetime:
    if value in (None, ""):
        return timezone.now()
    if isinstance(value, bool):
        raise WebhookPayloadError("Invalid timestamp")
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 1e12 else value
        try:
            return datetime.fromtimestamp(seconds, tz=dt_timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise WebhookPayloadError("Invalid timestamp")
    if isinstance(value, str):
        try:
            parsed = parse_datetime(value)
        except ValueError:
            raise WebhookPayloadError("Invalid timestamp")
        if parsed is not None:
            return normalize_datetime(parsed)
    raise WebhookPayloadError("Invalid timestamp")


def _parse_duration(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return max(0, int(value))
    except (TypeError, ValueError, OverflowError):
        raise WebhookPayloadError("Invalid duration")


def parse_masked_event(payload) -> MaskedEvent:
    if not isinstance(payload, dict):
        raise WebhookPayloadError("Webhook payload must be an object")

    raw_type = payload.get("event_type")
    event_cls = EVENT_CLASSES.get(raw_type) if isinstance(raw_type, str) else None
    if event_cls is None:
        raise WebhookPayloadError(f"Unknown event_type: {raw_type}", eventType=raw_type)

    call_id = payload.get("call_id")
    if not isinstance(call_id, str) or not call_id:
        raise WebhookPayloadError("Missing call_id")

    return event_cls(
        call_id=call_id,
        timestamp=_parse_timestamp(payload.get("timestamp")),
        masked_call_id=payload.get("masked_call_id"),
        duration=_parse_duration(payload.get("duration")),
        provider_status=payload.get("status"),
        participants=payload.get("participants"),
        raw_type=raw_type,
    )


class WebhookReconciler:
    def __init__(self, store, hub, timeouts=None):
        self.store = store
        self.hub = hub
        self.timeouts = timeouts

    def _updates_for(self, event: MaskedEvent, call: dict) -> Dict[str, Any]:
        timing = call.get("timing") or {}
        updates = {"status": event.target_status}

        if isinstance(event, CallAnswered):
            updates["timing.answeredAt"] = event.timestamp
            return updates

        answered_at = normalize_datetime(timing.get("answeredAt"))
        ended_at = event.timestamp
        if answered_at and ended_at < answered_at:
            ended_at = answered_at
        updates["timing.endedAt"] = ended_at
        updates["timing.duration"] = compute_duration(answered_at, ended_at)
        updates["endedBy"] = "system"
        if event.duration is not None and isinstance(call.get("maskedCallInfo"), dict):
            updates["maskedCallInfo.reportedDuration"] = event.duration
        return updates

    def reconcile(self, event: MaskedEvent) -> Dict[str, Any]:
        if isinstance(event, IgnoredEvent):
            logger.info(f"[WEBHOOK] {event.raw_type} for {event.call_id} does not change call state")
            return {"applied": False, "reason": "ignored_event_type"}

        call = self.store.get_call_record(event.call_id)
        if not call:
            logger.warning(f"[WEBHOOK] Unknown call {event.call_id} for {event.raw_type}")
            return {"applied": False, "reason": "call_not_found"}

        masked_call_id = (call.get("maskedCallInfo") or {}).get("maskedCallId")
        if call.get("callMethod") != METHOD_MASKED or not masked_call_id:
            logger.warning(f"[WEBHOOK] {event.raw_type} for {event.call_id} but the call has no masked session")
            return {"applied": False, "reason": "not_masked_call"}
        if event.masked_call_id != masked_call_id:
            logger.warning(f"[WEBHOOK] Masked call id mismatch for {event.call_id}: {event.masked_call_id}")
            return {"applied": False, "reason": "masked_call_mismatch"}

        target = event.target_status
        updated = None
        # A lost race is re-evaluated once against the fresh record
        for _ in range(2):
            current = call.get("status")
            if has_reached(current, target):
                logger.info(f"[WEBHOOK] Duplicate {event.raw_type} for {event.call_id} (status={current})")
                return {"applied": False, "reason": "duplicate", "status": current}
            if not can_transition(current, target):
                logger.warning(f"[WEBHOOK] Ignoring {event.raw_type} for {event.call_id}: {current} -> {target} not allowed")
                return {"applied": False, "reason": "invalid_transition", "status": current}
            try:
                updated = self.store.transition_call(event.call_id, [current], self._updates_for(event, call))
                break
            except InvalidCallStatus:
                call = self.store.get_call_record(event.call_id)
            except CallNotFound:
                return {"applied": False, "reason": "call_not_found"}
            if not call:
                return {"applied": False, "reason": "call_not_found"}

        if updated is None:
            return {"applied": False, "reason": "conflict", "status": call.get("status")}

        logger.info(f"[WEBHOOK] Call {event.call_id} {current} -> {target} via {event.raw_type}")
        if self.timeouts:
            self.timeouts.cancel(event.call_id)
        self._publish(updated, event)
        return {"applied": True, "status": target}

    def _publish(self, call: dict, event: MaskedEvent) -> None:
        update = {
            "callId": call["callId"],
            "status": call["status"],
            "eventType": event.raw_type,
            "timestamp": format_timestamp(event.timestamp),
        }
        self.hub.publish(call["receiverId"], EVENT_MASKED_CALL_UPDATE, update)

        if call["status"] in (STATUS_ENDED, STATUS_FAILED):
            timing = call.get("timing") or {}
            ended = {
                "callId": call["callId"],
                "status": call["status"],
                "endedBy": call.get("endedBy"),
                "duration": timing.get("duration", 0),
            }
            self.hub.publish(call["receiverId"], EVENT_CALL_ENDED, ended)
            self.hub.publish(caller_uid(call["callId"]), EVENT_CALL_ENDED, ended)
