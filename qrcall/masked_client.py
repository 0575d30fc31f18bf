"""
Client for the masked-number (PSTN relay) calling provider.

Every provider call is bounded by a per-attempt timeout. Network errors, 429
and 5xx answers are retried with exponential backoff; exhausting the attempts
or any other 4xx raises MaskedCallingError. Status lookups make one short
attempt since they sit on the polling path.
"""
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlsplit

import requests
from django.utils import timezone

from .errors import MaskedCallingError
from .utils import format_phone_number, mask_phone_number

logger = logging.getLogger("qrcall")

STATUS_LOOKUP_TIMEOUT = 5.0


def _is_retryable(status_code: Optional[int]) -> bool:
    # A 4xx other than 429 will not change on retry
    return status_code is None or status_code == 429 or status_code >= 500


@dataclass
class MaskedSession:
    masked_call_id: str
    caller_masked_number: Optional[str]
    receiver_masked_number: Optional[str]
    status: Optional[str] = None
    estimated_connect_time: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "maskedCallId": self.masked_call_id,
            "callerMaskedNumber": self.caller_masked_number,
            "receiverMaskedNumber": self.receiver_masked_number,
            "status": self.status,
            "estimatedConnectTime": self.estimated_connect_time,
        }


class MaskedRelayClient:
    USER_AGENT = "QR-Vehicle-Emergency/2.0"

    def __init__(
        self,
        enabled: bool,
        api_url: Optional[str],
        api_key: Optional[str],
        timeout: float = 30.0,
        retry_attempts: int = 3,
        backoff_base: float = 1.0,
        max_duration: int = 3600,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.enabled = enabled
        self.api_url = (api_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.retry_attempts = max(1, retry_attempts)
        self.backoff_base = backoff_base
        self.max_duration = max_duration
        self.session = session or requests.Session()
        self._sleep = sleep

    def is_available(self) -> bool:
        return bool(self.enabled and self.api_url and self.api_key)

    def get_config(self) -> Dict[str, Any]:
        api_host = None
        if self.api_url:
            parts = urlsplit(self.api_url)
            api_host = f"{parts.scheme}://{parts.netloc}"
        return {
            "enabled": self.enabled,
            "available": self.is_available(),
            "apiUrl": api_host,
            "timeout": self.timeout,
            "retryAttempts": self.retry_attempts,
        }

    def _request(
        self,
        method: str,
        endpoint: str,
        payload: Optional[dict] = None,
        attempts: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> dict:
        url = f"{self.api_url}{endpoint}"
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}",
            "User-Agent": self.USER_AGENT,
        }
        attempts = attempts or self.retry_attempts

        attempt = 0
        while True:
            attempt += 1
            status_code = None
            try:
                response = self.session.request(
                    method,
                    url,
                    json=payload if method in ("POST", "PUT", "PATCH") else None,
                    headers=headers,
                    timeout=timeout or self.timeout,
                )
                status_code = response.status_code
                if status_code >= 400:
                    raise MaskedCallingError(f"HTTP {status_code}: {response.text}")
                try:
                    return response.json()
                except ValueError:
                    raise MaskedCallingError("Provider returned a non-JSON response")
            except (requests.exceptions.RequestException, MaskedCallingError) as e:
                logger.error(f"[MASKED] {method} {endpoint} attempt {attempt} failed: {e}")
                if attempt >= attempts or not _is_retryable(status_code):
                    if isinstance(e, MaskedCallingError):
                        raise
                    raise MaskedCallingError(str(e))
                self._sleep(self.backoff_base * (2 ** (attempt - 1)))

    def initiate(
        self,
        call_id: str,
        caller_phone: str,
        receiver_phone: str,
        callback_url: str,
        metadata: Optional[dict] = None,
    ) -> MaskedSession:
        if not self.is_available():
            raise MaskedCallingError("Masked calling service is not configured or disabled")
        if not caller_phone or not receiver_phone:
            raise MaskedCallingError("Both caller and receiver phone numbers are required for masked calling")

        payload = {
            "call_id": call_id,
            "caller_number": format_phone_number(caller_phone),
            "receiver_number": format_phone_number(receiver_phone),
            "callback_url": callback_url,
            "call_type": "emergency",
            "max_duration": self.max_duration,
            "metadata": {
                **(metadata or {}),
                "initiated_at": timezone.now().isoformat(),
                "service": "qr-vehicle-emergency",
            },
        }

        logger.info(
            f"[MASKED] Initiating call {call_id}: caller={mask_phone_number(caller_phone)}, "
            f"receiver={mask_phone_number(receiver_phone)}"
        )
        response = self._request("POST", "/initiate-call", payload)

        masked_call_id = response.get("masked_call_id")
        if not masked_call_id:
            raise MaskedCallingError("Provider response missing masked_call_id")

        logger.info(f"[MASKED] Call {call_id} initiated as {masked_call_id}")
        return MaskedSession(
            masked_call_id=masked_call_id,
            caller_masked_number=response.get("caller_masked_number"),
            receiver_masked_number=response.get("receiver_masked_number"),
            status=response.get("status"),
            estimated_connect_time=response.get("estimated_connect_time"),
        )

    def end(self, masked_call_id: str) -> Dict[str, Any]:
        if not self.is_available():
            raise MaskedCallingError("Masked calling service is not configured")
        logger.info(f"[MASKED] Ending call {masked_call_id}")
        response = self._request("POST", f"/end-call/{masked_call_id}")
        return {
            "maskedCallId": masked_call_id,
            "status": response.get("status"),
            "duration": response.get("duration"),
            "endedAt": response.get("ended_at"),
        }

    def status(self, masked_call_id: str) -> Dict[str, Any]:
        if not self.is_available():
            raise MaskedCallingError("Masked calling service is not configured")
        response = self._request(
            "GET",
            f"/call-status/{masked_call_id}",
            attempts=1,
            timeout=min(self.timeout, STATUS_LOOKUP_TIMEOUT),
        )
        return {
            "maskedCallId": masked_call_id,
            "status": response.get("status"),
            "duration": response.get("duration"),
            "startedAt": response.get("started_at"),
            "endedAt": response.get("ended_at"),
            "participants": response.get("participants"),
        }
