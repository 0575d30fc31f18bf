"""
Call orchestration: admission, channel establishment and lifecycle
transitions. Collaborators are injected; nothing here reaches for globals.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, Optional

from django.utils import timezone

from .constants import (
    CALL_METHODS,
    EMERGENCY_GENERAL,
    EVENT_CALL_ACCEPTED,
    EVENT_CALL_ENDED,
    EVENT_CALL_REJECTED,
    EVENT_EMERGENCY_ALERT,
    EVENT_INCOMING_CALL,
    METHOD_DIRECT,
    METHOD_MASKED,
    PUBLIC_OWNER_NAME,
    STATUS_ANSWERED,
    STATUS_ENDED,
    STATUS_FAILED,
    STATUS_INITIATED,
    STATUS_MISSED,
    STATUS_REJECTED,
)
from .errors import (
    CallCreationFailed,
    CallerPhoneRequired,
    CallNotFound,
    InvalidCallStatus,
    MaskedCallingError,
    MaskedCallingUnavailable,
    RtcTokenError,
    StoreUnavailable,
)
from .lifecycle import compute_duration, sources_for
from .models import build_call_record, public_call_view
from .notifications import build_incoming_call_notification
from .timeouts import RingTimeoutScheduler
from .utils import apply_updates, caller_uid, format_timestamp, mask_phone_number, normalize_datetime, receiver_uid

logger = logging.getLogger("qrcall")

END_ATTEMPTS = 3


def _contact_priority(contact: dict) -> int:
    priority = contact.get("priority")
    if isinstance(priority, int) and not isinstance(priority, bool):
        return priority
    return 99


@dataclass
class InitiateRequest:
    qr_id: str
    call_type: str = "audio"
    call_method: str = METHOD_DIRECT
    caller_info: Dict[str, Any] = field(default_factory=dict)
    emergency_type: str = EMERGENCY_GENERAL
    urgency_level: str = "medium"
    metadata: Dict[str, Any] = field(default_factory=dict)


class CallEngine:
    def __init__(
        self,
        store,
        resolver,
        token_issuer,
        masked_client,
        notifier,
        hub,
        callback_url: str = "",
        ring_timeout: int = 30,
    ):
        self.store = store
        self.resolver = resolver
        self.token_issuer = token_issuer
        self.masked_client = masked_client
        self.notifier = notifier
        self.hub = hub
        self.callback_url = callback_url
        self.ring_timeout = ring_timeout
        self.timeouts = RingTimeoutScheduler(self.expire_call, ring_timeout) if ring_timeout > 0 else None

    # Admission

    def initiate(self, request: InitiateRequest) -> Dict[str, Any]:
        if not self.store.is_available():
            raise StoreUnavailable("Call store is not configured")

        resolution = self.resolver.resolve(request.qr_id)

        caller_info = request.caller_info or {}
        if request.call_method == METHOD_MASKED:
            if not self.masked_client.is_available():
                raise MaskedCallingUnavailable(
                    "Masked calling is not available",
                    availableMethods=[METHOD_DIRECT],
                )
            if not caller_info.get("phone"):
                raise CallerPhoneRequired("Caller phone number is required for masked calling")

        call_id = str(uuid.uuid4())
        call = build_call_record(
            call_id=call_id,
            qr_code=resolution.qr_code,
            device=resolution.device,
            call_type=request.call_type,
            call_method=request.call_method,
            caller_info=caller_info,
            emergency_type=request.emergency_type,
            urgency_level=request.urgency_level,
            metadata=request.metadata,
        )
        if not self.store.create_call_record(call):
            raise CallCreationFailed("Failed to create call record")

        self.store.increment_qr_stats(request.qr_id, call=True, emergency=call["isEmergency"])
        logger.info(
            f"[CALL/INITIATE] {call_id} qr={request.qr_id} method={request.call_method} "
            f"emergency={request.emergency_type}/{request.urgency_level}"
        )

        call, channel, fallback = self._establish_channel(call, resolution)

        if self.timeouts:
            self.timeouts.schedule(call_id)

        self._announce(call, channel)

        emergency_info = resolution.qr_code.get("emergencyInfo") or {}
        owner = resolution.device.get("owner") or {}
        response = {
            "success": True,
            "callId": call_id,
            "callMethod": call["callMethod"],
            "requestedCallMethod": call["requestedCallMethod"],
            "callType": call["callType"],
            "callerUID": caller_uid(call_id),
            "callerKey": call["callerKey"],
            "receiver": {
                "name": owner.get("userName") if emergency_info.get("showOwnerName", True) else PUBLIC_OWNER_NAME,
            },
            "deviceInfo": call["deviceInfo"],
            "emergencyInfo": {
                "emergencyContact": emergency_info.get("emergencyContact", ""),
                "specialInstructions": emergency_info.get("specialInstructions", ""),
            },
            "isEmergency": call["isEmergency"],
            "emergencyType": request.emergency_type,
            "urgencyLevel": request.urgency_level,
        }
        response.update(channel)
        if fallback:
            response["fallback"] = fallback
        return response

    def _establish_channel(self, call: dict, resolution):
        fallback = None
        if call["callMethod"] == METHOD_MASKED:
            try:
                session = self._start_masked_session(call, resolution)
                masked_info = session.to_dict()
                updates = {"maskedCallInfo": masked_info}
                call = self.store.update_call_fields(call["callId"], updates) or apply_updates(call, updates)
                logger.info(f"[CALL/INITIATE] {call['callId']} connected through masked relay")
                return call, {
                    "maskedCallInfo": masked_info,
                    "message": "Masked call initiated. Both parties will receive a call shortly.",
                }, None
            except MaskedCallingError as e:
                reason = e.message
                logger.error(f"[CALL/INITIATE] Masked call failed for {call['callId']}, falling back to direct: {reason}")
                additional = f"{call['callerInfo'].get('additionalInfo') or ''} (Masked call failed: {reason})".strip()
                updates = {"callMethod": METHOD_DIRECT, "callerInfo.additionalInfo": additional}
                call = self.store.update_call_fields(call["callId"], updates) or apply_updates(call, updates)
                fallback = {"from": METHOD_MASKED, "reason": reason}

        try:
            caller_credential = self.token_issuer.issue(call["channelName"], caller_uid(call["callId"]))
        except RtcTokenError:
            self._fail_call(call["callId"])
            raise

        return call, {
            "channelName": call["channelName"],
            "token": caller_credential.token,
            "uid": caller_credential.uid,
            "appId": caller_credential.app_id,
            "expireAt": caller_credential.expire_at,
            "message": "Call initiated. Waiting for the vehicle owner to answer.",
        }, fallback

    def _start_masked_session(self, call: dict, resolution):
        receiver_phone = self._receiver_phone(resolution)
        if not receiver_phone:
            raise MaskedCallingError("No receiver phone number on file")
        return self.masked_client.initiate(
            call_id=call["callId"],
            caller_phone=call["callerInfo"]["phone"],
            receiver_phone=receiver_phone,
            callback_url=self.callback_url,
            metadata={
                "qr_id": call["qrCodeId"],
                "emergency_type": call["callerInfo"]["emergencyType"],
                "urgency_level": call["callerInfo"]["urgencyLevel"],
            },
        )

    def _receiver_phone(self, resolution) -> Optional[str]:
        settings = resolution.device.get("settings") or {}
        contacts = [c for c in settings.get("emergencyContacts") or [] if c.get("phone")]
        if contacts:
            contact = min(contacts, key=_contact_priority)
            return contact["phone"]
        owner_phone = (resolution.device.get("owner") or {}).get("phone")
        if owner_phone:
            return owner_phone
        user = self.store.get_user(resolution.owner_id) or {}
        return user.get("phone")

    def _fail_call(self, call_id: str) -> None:
        try:
            self.store.transition_call(call_id, [STATUS_INITIATED], {
                "status": STATUS_FAILED,
                "timing.endedAt": timezone.now(),
                "endedBy": "system",
            })
        except (CallNotFound, InvalidCallStatus, StoreUnavailable) as e:
            logger.error(f"[CALL/INITIATE] Could not mark {call_id} failed: {e}")

    def _announce(self, call: dict, channel: dict) -> None:
        receiver_token = ""
        if call["callMethod"] == METHOD_DIRECT:
            try:
                receiver_token = self.token_issuer.issue(call["channelName"], receiver_uid(call["receiverId"])).token
            except RtcTokenError as e:
                logger.warning(f"[CALL/INITIATE] Receiver token for push not issued: {e}")

        notification = build_incoming_call_notification(call, caller_uid(call["callId"]), receiver_token)
        self.notifier.notify(call["receiverId"], notification)

        caller_info = {key: value for key, value in call["callerInfo"].items() if key != "phone"}
        self.hub.publish(call["receiverId"], EVENT_INCOMING_CALL, {
            "callId": call["callId"],
            "callType": call["callType"],
            "callMethod": call["callMethod"],
            "channelName": call["channelName"],
            "callerInfo": caller_info,
            "deviceInfo": call["deviceInfo"],
            "isEmergency": call["isEmergency"],
            "initiatedAt": format_timestamp(call["timing"]["initiatedAt"]),
        })

        if call["isEmergency"]:
            self.hub.broadcast(EVENT_EMERGENCY_ALERT, {
                "callId": call["callId"],
                "qrId": call["qrCodeId"],
                "emergencyType": call["callerInfo"]["emergencyType"],
                "urgencyLevel": call["callerInfo"]["urgencyLevel"],
                "location": call["callerInfo"]["location"],
                "initiatedAt": format_timestamp(call["timing"]["initiatedAt"]),
            })

    # Transitions

    def _receiver_call(self, call_id: str, user_id: str) -> dict:
        call = self.store.get_call_record(call_id)
        if not call or call.get("receiverId") != user_id:
            raise CallNotFound("Call not found or access denied")
        return call

    def _teardown_masked(self, call: dict) -> Optional[dict]:
        masked_info = call.get("maskedCallInfo") or {}
        if call.get("callMethod") != METHOD_MASKED or not masked_info.get("maskedCallId"):
            return None
        try:
            return self.masked_client.end(masked_info["maskedCallId"])
        except MaskedCallingError as e:
            logger.error(f"[MASKED] Teardown failed for {call['callId']}: {e}")
            return None

    def answer(self, call_id: str, user_id: str) -> Dict[str, Any]:
        call = self._receiver_call(call_id, user_id)
        if call["status"] != STATUS_INITIATED:
            raise InvalidCallStatus(call["status"], "Call cannot be answered in its current status")

        credential = None
        if call["callMethod"] == METHOD_DIRECT:
            credential = self.token_issuer.issue(call["channelName"], receiver_uid(user_id))

        answered_at = timezone.now()
        call = self.store.transition_call(call_id, [STATUS_INITIATED], {
            "status": STATUS_ANSWERED,
            "timing.answeredAt": answered_at,
        })
        if self.timeouts:
            self.timeouts.cancel(call_id)
        logger.info(f"[CALL/ANSWER] {call_id} answered by {user_id}")

        self.hub.publish(caller_uid(call_id), EVENT_CALL_ACCEPTED, {
            "callId": call_id,
            "status": STATUS_ANSWERED,
            "answeredAt": format_timestamp(answered_at),
        })

        response = {
            "success": True,
            "message": "Call answered successfully",
            "callId": call_id,
            "status": STATUS_ANSWERED,
            "callMethod": call["callMethod"],
            "callerInfo": {key: value for key, value in call["callerInfo"].items() if key != "phone"},
            "deviceInfo": call["deviceInfo"],
        }
        if credential:
            response.update({
                "channelName": call["channelName"],
                "token": credential.token,
                "uid": credential.uid,
                "appId": credential.app_id,
                "expireAt": credential.expire_at,
            })
        else:
            response["maskedCallInfo"] = call.get("maskedCallInfo")
        return response

    def reject(self, call_id: str, user_id: str, reason: Optional[str] = None) -> Dict[str, Any]:
        call = self._receiver_call(call_id, user_id)
        if call["status"] != STATUS_INITIATED:
            raise InvalidCallStatus(call["status"], "Call cannot be rejected in its current status")

        updates = {
            "status": STATUS_REJECTED,
            "timing.endedAt": timezone.now(),
            "endedBy": "receiver",
        }
        if reason:
            updates["callerInfo.additionalInfo"] = f"Rejected: {reason}"
        call = self.store.transition_call(call_id, [STATUS_INITIATED], updates)
        if self.timeouts:
            self.timeouts.cancel(call_id)
        self._teardown_masked(call)
        logger.info(f"[CALL/REJECT] {call_id} rejected by {user_id} reason={reason}")

        self.hub.publish(caller_uid(call_id), EVENT_CALL_REJECTED, {
            "callId": call_id,
            "status": STATUS_REJECTED,
            "reason": reason or "",
        })
        return {
            "success": True,
            "message": "Call rejected successfully",
            "callId": call_id,
            "status": STATUS_REJECTED,
            "endedBy": "receiver",
        }

    def end(self, call_id: str, ended_by: str, call_quality: Optional[dict] = None) -> Dict[str, Any]:
        call = self.store.get_call_record(call_id)
        if not call:
            raise CallNotFound("Call not found")

        valid_sources = sources_for(STATUS_ENDED)
        for attempt in range(1, END_ATTEMPTS + 1):
            if call["status"] not in valid_sources:
                raise InvalidCallStatus(call["status"], "Call cannot be ended in its current status")

            answered_at = normalize_datetime(call["timing"].get("answeredAt"))
            ended_at = timezone.now()
            if answered_at and ended_at < answered_at:
                ended_at = answered_at
            updates = {
                "status": STATUS_ENDED,
                "timing.endedAt": ended_at,
                "timing.duration": compute_duration(answered_at, ended_at),
                "endedBy": ended_by,
            }
            if call_quality:
                updates["callQuality"] = call_quality
            try:
                call = self.store.transition_call(call_id, [call["status"]], updates)
                break
            except InvalidCallStatus:
                if attempt == END_ATTEMPTS:
                    raise
                call = self.store.get_call_record(call_id)
                if not call:
                    raise CallNotFound("Call not found")

        if self.timeouts:
            self.timeouts.cancel(call_id)

        teardown = self._teardown_masked(call)
        if teardown and teardown.get("duration") is not None:
            self.store.update_call_fields(call_id, {"maskedCallInfo.reportedDuration": teardown["duration"]})

        duration = call["timing"]["duration"]
        logger.info(f"[CALL/END] {call_id} ended by {ended_by}, duration={duration}s")
        self._publish_ended(call)
        return {
            "success": True,
            "message": "Call ended successfully",
            "callId": call_id,
            "status": STATUS_ENDED,
            "duration": duration,
            "endedBy": ended_by,
        }

    def expire_call(self, call_id: str) -> bool:
        """Ring timeout: an unanswered call becomes missed."""
        try:
            call = self.store.transition_call(call_id, [STATUS_INITIATED], {
                "status": STATUS_MISSED,
                "timing.endedAt": timezone.now(),
                "endedBy": "timeout",
            })
        except (CallNotFound, InvalidCallStatus) as e:
            logger.debug(f"[CALL/TIMEOUT] {call_id} not expired: {e}")
            return False

        if self.timeouts:
            self.timeouts.cancel(call_id)
        self._teardown_masked(call)
        logger.info(f"[CALL/TIMEOUT] {call_id} marked missed")
        self._publish_ended(call)
        return True

    def sweep_expired(self, timeout_seconds: Optional[int] = None) -> Dict[str, Any]:
        timeout_seconds = timeout_seconds or self.ring_timeout
        cutoff = timezone.now() - timedelta(seconds=timeout_seconds)
        call_ids = self.store.list_expired_call_ids(cutoff)
        updated = sum(1 for call_id in call_ids if self.expire_call(call_id))
        logger.info(f"[CALL/TIMEOUT] Sweep: {updated}/{len(call_ids)} calls marked missed")
        return {"success": True, "checked": len(call_ids), "updated": updated, "timeoutSeconds": timeout_seconds}

    def _publish_ended(self, call: dict) -> None:
        data = {
            "callId": call["callId"],
            "status": call["status"],
            "endedBy": call.get("endedBy"),
            "duration": call["timing"].get("duration", 0),
        }
        self.hub.publish(call["receiverId"], EVENT_CALL_ENDED, data)
        self.hub.publish(caller_uid(call["callId"]), EVENT_CALL_ENDED, data)

    # Reads

    def _masked_status(self, call: dict) -> Optional[dict]:
        masked_info = call.get("maskedCallInfo") or {}
        if call.get("callMethod") != METHOD_MASKED or not masked_info.get("maskedCallId"):
            return None
        try:
            return self.masked_client.status(masked_info["maskedCallId"])
        except MaskedCallingError as e:
            logger.warning(f"[MASKED] Status lookup failed for {call['callId']}: {e}")
            return None

    def status(self, call_id: str) -> Dict[str, Any]:
        call = self.store.get_call_record(call_id)
        if not call:
            raise CallNotFound("Call not found")

        timing = call.get("timing") or {}
        result = {
            "callId": call_id,
            "status": call["status"],
            "callType": call.get("callType"),
            "callMethod": call.get("callMethod"),
            "isEmergency": call.get("isEmergency", False),
            "initiatedAt": timing.get("initiatedAt"),
            "answeredAt": timing.get("answeredAt"),
            "endedAt": timing.get("endedAt"),
            "duration": timing.get("duration", 0),
            "endedBy": call.get("endedBy"),
        }
        masked_status = self._masked_status(call)
        if masked_status:
            result["maskedCallStatus"] = masked_status
        return result

    def detail(self, call_id: str, user_id: str) -> Dict[str, Any]:
        call = self._receiver_call(call_id, user_id)
        result = {"call": public_call_view(call)}
        masked_status = self._masked_status(call)
        if masked_status:
            result["maskedCallDetails"] = masked_status
        return result

    def history(
        self,
        user_id: str,
        page: int = 1,
        limit: int = 20,
        call_method: Optional[str] = None,
        emergency_only: bool = False,
    ) -> Dict[str, Any]:
        offset = (page - 1) * limit
        calls, total = self.store.list_calls_for_receiver(
            user_id,
            call_method=call_method,
            emergency_only=emergency_only,
            limit=limit,
            offset=offset,
        )
        calls = [public_call_view(call) for call in calls]
        for call in calls:
            phone = (call.get("callerInfo") or {}).get("phone")
            if phone:
                call["callerInfo"]["phone"] = mask_phone_number(phone)

        pages = (total + limit - 1) // limit if limit else 0
        return {
            "calls": calls,
            "pagination": {
                "page": page,
                "limit": limit,
                "total": total,
                "pages": pages,
                "hasNext": page < pages,
                "hasPrev": page > 1,
            },
            "summary": {
                "totalCalls": total,
                "directCalls": sum(1 for c in calls if c.get("callMethod") == METHOD_DIRECT),
                "maskedCalls": sum(1 for c in calls if c.get("callMethod") == METHOD_MASKED),
                "emergencyCalls": sum(1 for c in calls if c.get("isEmergency")),
                "answeredCalls": sum(1 for c in calls if (c.get("timing") or {}).get("answeredAt")),
            },
        }

    def methods(self) -> Dict[str, Any]:
        available = [METHOD_DIRECT]
        if self.masked_client.is_available():
            available.append(METHOD_MASKED)
        return {
            "availableMethods": available,
            "supportedMethods": list(CALL_METHODS),
            "defaultMethod": METHOD_DIRECT,
            "directCalling": {"available": self.token_issuer.is_configured()},
            "maskedCallingConfig": self.masked_client.get_config(),
        }
