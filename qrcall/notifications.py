"""
Best-effort push dispatch for call events.

notify() hands the delivery to a worker thread and returns at once; the
request path never waits on it and never sees its errors.
"""
import asyncio
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, Optional

from .constants import EMERGENCY_GENERAL, HIGH_URGENCY_LEVELS
from .push_service import DeliveryResult
from .utils import stringify_values

logger = logging.getLogger("qrcall")

NON_RETRYABLE_ERRORS = frozenset({"user_not_found", "no_endpoints"})


def build_incoming_call_notification(
    call: dict,
    caller_uid: str = "",
    receiver_token: str = "",
) -> Dict[str, Any]:
    """Title/body/data for the receiver's incoming-call push."""
    caller_info = call.get("callerInfo") or {}
    emergency_type = caller_info.get("emergencyType") or EMERGENCY_GENERAL
    urgency_level = caller_info.get("urgencyLevel") or "medium"
    is_emergency = emergency_type != EMERGENCY_GENERAL

    if is_emergency:
        title = "CRITICAL EMERGENCY" if urgency_level == "critical" else "Emergency Call"
        body = f"URGENT: {emergency_type.upper()} involving your vehicle."
    else:
        title = "Vehicle Contact"
        body = f"{caller_info.get('name') or 'Someone'} wants to contact you about your vehicle."

    public_caller_info = {key: value for key, value in caller_info.items() if key != "phone"}
    data = {
        "type": "incoming_call",
        "callId": call["callId"],
        "callerUID": caller_uid,
        "channelName": call["channelName"],
        "callType": call["callType"],
        "callMethod": call["callMethod"],
        "token": receiver_token,
        "callerInfo": public_caller_info,
        "deviceInfo": call.get("deviceInfo") or {},
        "emergencyType": emergency_type,
        "urgencyLevel": urgency_level,
        "priority": "high" if urgency_level in HIGH_URGENCY_LEVELS else "normal",
        "qrId": call.get("qrCodeId"),
    }
    return {"title": title, "body": body, "data": stringify_values(data)}


class NotificationDispatcher:
    def __init__(
        self,
        gateway,
        enabled: bool = True,
        timeout: float = 10.0,
        retries: int = 3,
        max_workers: int = 4,
        executor: Optional[ThreadPoolExecutor] = None,
    ):
        self.gateway = gateway
        self.enabled = enabled
        self.timeout = timeout
        self.retries = max(1, retries)
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="qrcall-push")

    def notify(self, identity: str, notification: Dict[str, Any]) -> Optional[Future]:
        if not self.enabled:
            logger.info(f"[PUSH] Notifications disabled, skipping {identity}")
            return None
        try:
            future = self._executor.submit(self._deliver, identity, notification)
        except RuntimeError as e:
            logger.error(f"[PUSH] Could not schedule notification for {identity}: {e}")
            return None
        future.add_done_callback(self._drain)
        return future

    def _deliver(self, identity: str, notification: Dict[str, Any]) -> DeliveryResult:
        result = DeliveryResult(success=False, error="not_attempted")
        for attempt in range(1, self.retries + 1):
            try:
                result = asyncio.run(
                    asyncio.wait_for(self.gateway.deliver(identity, notification), self.timeout)
                )
            except asyncio.TimeoutError:
                result = DeliveryResult(success=False, error="timeout")
            except Exception as e:
                logger.exception(f"[PUSH] Delivery attempt {attempt} to {identity} raised: {e}")
                result = DeliveryResult(success=False, error=str(e))

            if result.success or result.error in NON_RETRYABLE_ERRORS:
                break
            logger.warning(f"[PUSH] Delivery attempt {attempt}/{self.retries} to {identity} failed: {result.error}")
        return result

    @staticmethod
    def _drain(future: Future) -> None:
        error = future.exception()
        if error is not None:
            logger.error(f"[PUSH] Notification task failed: {error}")
            return
        result = future.result()
        if not result.success:
            logger.warning(f"[PUSH] Notification not delivered: {result.error}")

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
