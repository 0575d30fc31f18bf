"""
Firebase service - Firestore-backed store for QR codes, devices, users and calls.

Firestore Collections:
- qrCodes/{qrId}: QR status, link target, privacy flags, usage counters
- devices/{deviceId}: owner, status, call settings
- users/{uid}: fcmToken, voipToken, deviceTokens for push notifications
- calls/{callId}: Call records with status, participants, timestamps
"""
import json
import logging
import os
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from django.utils import timezone

from .constants import (
    CALLS_COLLECTION,
    DEVICES_COLLECTION,
    QR_CODES_COLLECTION,
    STATUS_INITIATED,
    USERS_COLLECTION,
)
from .errors import CallError, CallNotFound, InvalidCallStatus, StoreUnavailable
from .utils import apply_updates

logger = logging.getLogger("qrcall")


class FirebaseHandle:
    """
    Lazily initialised Firebase Admin app + Firestore client.

    Constructed once at startup and shared by the store and the FCM sender.
    """

    def __init__(
        self,
        use_emulator: bool = False,
        project_id: Optional[str] = None,
        service_account_json: Optional[str] = None,
        service_account_path: Optional[str] = None,
        emulator_host: Optional[str] = None,
    ):
        self.use_emulator = use_emulator
        self.project_id = project_id
        self.service_account_json = service_account_json
        self.service_account_path = service_account_path
        self.emulator_host = emulator_host
        self._app = None
        self._db = None
        self._init_attempted = False

    @property
    def app(self):
        if self._app is not None or self._init_attempted:
            return self._app
        self._init_attempted = True
        self._app = self._initialize()
        return self._app

    def _initialize(self):
        import firebase_admin
        from firebase_admin import credentials

        logger.info(f"Firebase init: use_emulator={self.use_emulator}, project_id={self.project_id}")

        if self.use_emulator:
            # Must be set before the Firestore client is created
            os.environ["FIRESTORE_EMULATOR_HOST"] = self.emulator_host or "localhost:8080"
            try:
                app = firebase_admin.initialize_app(
                    credential=None,
                    options={"projectId": self.project_id or "demo-project"},
                )
                logger.info(f"Firebase Admin initialized with EMULATOR ({os.environ['FIRESTORE_EMULATOR_HOST']})")
                return app
            except ValueError:
                return firebase_admin.get_app()

        cred = None
        if self.service_account_json:
            try:
                cred = credentials.Certificate(json.loads(self.service_account_json))
                logger.info("Using FIREBASE_SERVICE_ACCOUNT env var")
            except json.JSONDecodeError as e:
                logger.error(f"Invalid FIREBASE_SERVICE_ACCOUNT JSON: {e}")
        elif self.service_account_path and os.path.exists(self.service_account_path):
            cred = credentials.Certificate(self.service_account_path)
            logger.info(f"Using service account from {self.service_account_path}")

        if cred is None:
            logger.warning("Firebase credentials not found - Firestore operations will fail")
            return None

        try:
            app = firebase_admin.initialize_app(cred)
            logger.info("Firebase Admin initialized (production)")
            return app
        except ValueError:
            return firebase_admin.get_app()

    @property
    def db(self):
        if self._db is not None:
            return self._db
        app = self.app
        if app is None:
            return None
        from firebase_admin import firestore

        self._db = firestore.client(app)
        return self._db


class FirestoreStore:
    """Firestore implementation of the call session / identity store."""

    def __init__(self, firebase: FirebaseHandle):
        self.firebase = firebase

    @property
    def db(self):
        return self.firebase.db

    def is_available(self) -> bool:
        return self.db is not None

    def _doc(self, collection: str, doc_id: str):
        return self.db.collection(collection).document(doc_id)

    def _get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        if not self.db:
            return None
        try:
            doc = self._doc(collection, doc_id).get()
            return doc.to_dict() if doc.exists else None
        except Exception as e:
            logger.error(f"Error reading {collection}/{doc_id}: {e}")
            return None

    # =========================================================================
    # QR / Device / User reads
    # =========================================================================

    def get_qr_code(self, qr_id: str) -> Optional[Dict[str, Any]]:
        return self._get(QR_CODES_COLLECTION, qr_id)

    def get_device(self, device_id: str) -> Optional[Dict[str, Any]]:
        return self._get(DEVICES_COLLECTION, device_id)

    def get_user(self, user_id: str) -> Optional[Dict[str, Any]]:
        return self._get(USERS_COLLECTION, user_id)

    def get_user_tokens(self, user_id: str) -> Optional[Dict[str, Any]]:
        """
        Push endpoints for a user.

        Expected document structure at users/{uid}:
        {
            "fcmToken": "android_fcm_token",
            "voipToken": "ios_voip_token",
            "platform": "ios" | "android",
            "deviceTokens": ["fcm_token", ...],
        }
        """
        if not self.db:
            logger.warning("Firestore not available")
            return None
        data = self.get_user(user_id)
        if data is None:
            logger.info(f"User document not found: {user_id}")
            return {"exists": False}
        return {
            "exists": True,
            "fcmToken": data.get("fcmToken"),
            "voipToken": data.get("voipToken"),
            "platform": data.get("platform"),
            "deviceTokens": list(data.get("deviceTokens") or []),
        }

    def increment_qr_stats(self, qr_id: str, scan: bool = False, call: bool = False, emergency: bool = False) -> bool:
        """Atomically bump QR usage counters."""
        if not self.db:
            return False

        from firebase_admin import firestore as fb_firestore

        update_data = {}
        now = timezone.now()
        if scan:
            update_data["stats.scanCount"] = fb_firestore.Increment(1)
            update_data["stats.lastScanned"] = now
        if call:
            update_data["stats.callCount"] = fb_firestore.Increment(1)
            update_data["stats.lastCalled"] = now
        if emergency:
            update_data["stats.emergencyCallCount"] = fb_firestore.Increment(1)
        if not update_data:
            return True

        try:
            self._doc(QR_CODES_COLLECTION, qr_id).update(update_data)
            return True
        except Exception as e:
            logger.error(f"Error incrementing stats for QR {qr_id}: {e}")
            return False

    # =========================================================================
    # Call Record Operations
    # =========================================================================

    def create_call_record(self, call: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        if not self.db:
            logger.warning("Firestore not available")
            return None
        try:
            self._doc(CALLS_COLLECTION, call["callId"]).create(call)
            logger.info(f"Created call record: {call['callId']}")
            return call
        except Exception as e:
            logger.error(f"Error creating call record: {e}")
            return None

    def get_call_record(self, call_id: str) -> Optional[Dict[str, Any]]:
        return self._get(CALLS_COLLECTION, call_id)

    def update_call_fields(self, call_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Update non-status fields (channel outcome, masked correlation)."""
        if not self.db:
            return None
        try:
            doc_ref = self._doc(CALLS_COLLECTION, call_id)
            doc_ref.update(updates)
            return doc_ref.get().to_dict()
        except Exception as e:
            logger.error(f"Error updating call {call_id}: {e}")
            return None

    def transition_call(
        self,
        call_id: str,
        expected_statuses: Iterable[str],
        updates: Dict[str, Any],
    ) -> Dict[str, Any]:
        """
        Compare-and-swap on (callId, status).

        Applies ``updates`` only if the stored status is one of
        ``expected_statuses`` at commit time. Raises CallNotFound or
        InvalidCallStatus otherwise; nothing is written in that case.
        """
        if not self.db:
            raise StoreUnavailable("Firestore is not configured")

        from firebase_admin import firestore as fb_firestore

        expected = frozenset(expected_statuses)
        doc_ref = self._doc(CALLS_COLLECTION, call_id)

        @fb_firestore.transactional
        def _txn(transaction):
            snapshot = doc_ref.get(transaction=transaction)
            if not snapshot.exists:
                raise CallNotFound("Call not found")
            data = snapshot.to_dict() or {}
            if data.get("status") not in expected:
                raise InvalidCallStatus(data.get("status"))
            transaction.update(doc_ref, updates)
            return apply_updates(data, updates)

        try:
            return _txn(self.db.transaction())
        except CallError:
            raise
        except Exception as e:
            logger.error(f"Error in status transition for {call_id}: {e}")
            raise StoreUnavailable(f"Failed to update call: {e}")

    def list_calls_for_receiver(
        self,
        receiver_id: str,
        call_method: Optional[str] = None,
        emergency_only: bool = False,
        limit: int = 20,
        offset: int = 0,
    ) -> Tuple[List[Dict[str, Any]], int]:
        if not self.db:
            return [], 0

        from firebase_admin import firestore as fb_firestore

        try:
            query = self.db.collection(CALLS_COLLECTION).where("receiverId", "==", receiver_id)
            if call_method:
                query = query.where("callMethod", "==", call_method)
            if emergency_only:
                query = query.where("isEmergency", "==", True)
            total = query.count().get()[0][0].value
            page = (
                query.order_by("createdAt", direction=fb_firestore.Query.DESCENDING)
                .offset(offset)
                .limit(limit)
            )
            return [doc.to_dict() for doc in page.stream()], int(total)
        except Exception as e:
            logger.error(f"Error listing calls for {receiver_id}: {e}")
            return [], 0

    def list_expired_call_ids(self, cutoff_time: datetime) -> List[str]:
        """Ids of calls still initiated whose createdAt <= cutoff_time."""
        if not self.db:
            return []
        try:
            query = (
                self.db.collection(CALLS_COLLECTION)
                .where("status", "==", STATUS_INITIATED)
                .where("createdAt", "<=", cutoff_time)
            )
            return [doc.id for doc in query.stream()]
        except Exception as e:
            logger.error(f"Error listing expired calls: {e}")
            return []
