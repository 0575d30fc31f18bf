"""
In-process store with the same surface as FirestoreStore.

Used for local development (QRCALL_STORE_BACKEND=memory) and tests. A single
lock serialises writes, which is what makes transition_call a real
compare-and-swap.
"""
import copy
import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.utils import timezone

from .constants import STATUS_INITIATED
from .errors import CallNotFound, InvalidCallStatus
from .utils import apply_updates, normalize_datetime

logger = logging.getLogger("qrcall")


class MemoryStore:
    def __init__(self):
        self._lock = threading.RLock()
        self._qr_codes: Dict[str, dict] = {}
        self._devices: Dict[str, dict] = {}
        self._users: Dict[str, dict] = {}
        self._calls: Dict[str, dict] = {}

    def is_available(self) -> bool:
        return True

    # Seeding (admin tooling / fixtures)

    def put_qr_code(self, qr_code: dict) -> None:
        with self._lock:
            self._qr_codes[qr_code["qrId"]] = copy.deepcopy(qr_code)

    def put_device(self, device: dict) -> None:
        with self._lock:
            self._devices[device["deviceId"]] = copy.deepcopy(device)

    def put_user(self, user_id: str, user: dict) -> None:
        with self._lock:
            self._users[user_id] = copy.deepcopy(user)

    # Reads

    def _read(self, table: Dict[str, dict], key: str) -> Optional[dict]:
        with self._lock:
            record = table.get(key)
            return copy.deepcopy(record) if record is not None else None

    def get_qr_code(self, qr_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self._qr_codes, qr_id)

    def get_device(self, device_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self._devices, device_id)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self._users, user_id)

    def get_user_tokens(self, user_id: str) -> Optional[Dict[str, Any]]:
        data = self.get_user(user_id)
        if data is None:
            return {"exists": False}
        return {
            "exists": True,
            "fcmToken": data.get("fcmToken"),
            "voipToken": data.get("voipToken"),
            "platform": data.get("platform"),
            "deviceTokens": list(data.get("deviceTokens") or []),
        }

    def increment_qr_stats(self, qr_id: str, scan: bool = False, call: bool = False, emergency: bool = False) -> bool:
        with self._lock:
            qr_code = self._qr_codes.get(qr_id)
            if qr_code is None:
                return False
            stats = qr_code.setdefault("stats", {})
            now = timezone.now()
            if scan:
                stats["scanCount"] = stats.get("scanCount", 0) + 1
                stats["lastScanned"] = now
            if call:
                stats["callCount"] = stats.get("callCount", 0) + 1
                stats["lastCalled"] = now
            if emergency:
                stats["emergencyCallCount"] = stats.get("emergencyCallCount", 0) + 1
            return True

    # Calls

    def create_call_record(self, call: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            if call["callId"] in self._calls:
                logger.error(f"Call record already exists: {call['callId']}")
                return None
            self._calls[call["callId"]] = copy.deepcopy(call)
        logger.info(f"Created call record: {call['callId']}")
        return call

    def get_call_record(self, call_id: str) -> Optional[Dict[str, Any]]:
        return self._read(self._calls, call_id)

    def update_call_fields(self, call_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._calls.get(call_id)
            if record is None:
                return None
            apply_updates(record, copy.deepcopy(updates))
            return copy.deepcopy(record)

    def transition_call(self, call_id: str, expected_statuses: Iterable[str], updates: Dict[str, Any]) -> Dict[str, Any]:
        expected = frozenset(expected_statuses)
        with self._lock:
            record = self._calls.get(call_id)
            if record is None:
                raise CallNotFound("Call not found")
            if record.get("status") not in expected:
                raise InvalidCallStatus(record.get("status"))
            apply_updates(record, copy.deepcopy(updates))
            return copy.deepcopy(record)

    def list_calls_for_receiver(
        self,
        receiver_id: str,
        call_method: Optional[str] = None,
        emergency_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        with self._lock:
            calls = [
                call for call in self._calls.values()
                if call.get("receiverId") == receiver_id
                and (not call_method or call.get("callMethod") == call_method)
                and (not emergency_only or call.get("isEmergency"))
            ]
            calls.sort(key=lambda c: normalize_datetime(c.get("createdAt")), reverse=True)
            page = calls[offset:offset + limit]
            return copy.deepcopy(page), len(calls)

    def list_expired_call_ids(self, cutoff_time: datetime) -> List[str]:
        with self._lock:
            return [
                call_id for call_id, call in self._calls.items()
                if call.get("status") == STATUS_INITIATED
                and normalize_datetime(call.get("createdAt")) <= cutoff_time
            ]
