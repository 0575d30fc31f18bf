"""
Push notification gateway for iOS (APNs VoIP) and Android (FCM via Firebase Admin SDK)
"""
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
import jwt

from .utils import stringify_values

logger = logging.getLogger("qrcall")


@dataclass
class PushResult:
    """Result of a push notification attempt"""
    success: bool
    platform: str
    message_id: Optional[str] = None
    error: Optional[str] = None
    error_code: Optional[str] = None


@dataclass
class DeliveryResult:
    """Aggregate result of delivering one payload to all of a user's endpoints"""
    success: bool
    total_sent: int = 0
    total_failed: int = 0
    results: List[PushResult] = field(default_factory=list)
    error: Optional[str] = None


class APNsVoIPService:
    """
    Apple Push Notification service for VoIP pushes.
    Uses HTTP/2 with JWT authentication.
    """

    APNS_PRODUCTION_HOST = "api.push.apple.com"
    APNS_SANDBOX_HOST = "api.sandbox.push.apple.com"

    def __init__(
        self,
        team_id: Optional[str] = None,
        key_id: Optional[str] = None,
        bundle_id: Optional[str] = None,
        key_path: Optional[str] = None,
        key_content: Optional[str] = None,
        use_sandbox: bool = False,
        timeout: float = 30.0,
    ):
        self.team_id = team_id
        self.key_id = key_id
        self.bundle_id = bundle_id
        self.use_sandbox = use_sandbox
        self.timeout = timeout

        # Private key can be provided as file path or direct content
        self.private_key = None
        if key_path and os.path.exists(key_path):
            with open(key_path, "r") as f:
                self.private_key = f.read()
        elif key_content:
            # Handle escaped newlines in env var
            self.private_key = key_content.replace("\\n", "\n")

    def is_configured(self) -> bool:
        return all([self.team_id, self.key_id, self.bundle_id, self.private_key])

    def _generate_token(self) -> str:
        headers = {"alg": "ES256", "kid": self.key_id}
        payload = {"iss": self.team_id, "iat": int(time.time())}
        return jwt.encode(payload, self.private_key, algorithm="ES256", headers=headers)

    async def send_voip_push(self, device_token: str, payload: Dict[str, Any], collapse_id: str) -> PushResult:
        if not self.is_configured():
            return PushResult(success=False, platform="ios", error="APNs not configured", error_code="not_configured")

        host = self.APNS_SANDBOX_HOST if self.use_sandbox else self.APNS_PRODUCTION_HOST
        url = f"https://{host}/3/device/{device_token}"

        headers = {
            "authorization": f"bearer {self._generate_token()}",
            "apns-topic": f"{self.bundle_id}.voip",
            "apns-push-type": "voip",
            "apns-priority": "10",
            "apns-expiration": "0",
            "apns-collapse-id": collapse_id,
        }

        try:
            async with httpx.AsyncClient(http2=True) as client:
                response = await client.post(url, headers=headers, json=payload, timeout=self.timeout)
        except httpx.TimeoutException:
            logger.error("[APNs] Push timeout")
            return PushResult(success=False, platform="ios", error="Request timeout", error_code="timeout")
        except httpx.HTTPError as e:
            logger.error(f"[APNs] Push exception: {e}")
            return PushResult(success=False, platform="ios", error=str(e), error_code="exception")

        if response.status_code == 200:
            apns_id = response.headers.get("apns-id")
            logger.info(f"[APNs] VoIP push sent successfully: {apns_id}")
            return PushResult(success=True, platform="ios", message_id=apns_id)

        try:
            reason = response.json().get("reason", "Unknown")
        except ValueError:
            reason = response.text or "Unknown error"
        logger.error(f"[APNs] Push failed: {response.status_code} - {reason}")
        return PushResult(success=False, platform="ios", error=reason, error_code=str(response.status_code))


class FCMService:
    """
    Firebase Cloud Messaging service.
    Uses Firebase Admin SDK for sending messages.
    """

    def __init__(self, firebase, android_channel_id: str = "emergency_calls", ttl: int = 60):
        self.firebase = firebase
        self.android_channel_id = android_channel_id
        self.ttl = ttl

    def is_configured(self) -> bool:
        return self.firebase is not None and self.firebase.app is not None

    async def send_message(
        self,
        device_token: str,
        title: str,
        body: str,
        data: Dict[str, str],
        high_priority: bool = True,
    ) -> PushResult:
        if not self.is_configured():
            return PushResult(success=False, platform="android", error="FCM not configured", error_code="not_configured")

        from firebase_admin import exceptions as fb_exceptions
        from firebase_admin import messaging

        message = messaging.Message(
            token=device_token,
            notification=messaging.Notification(title=title, body=body),
            data=stringify_values(data),
            android=messaging.AndroidConfig(
                priority="high" if high_priority else "normal",
                ttl=self.ttl,
                direct_boot_ok=True,
                notification=messaging.AndroidNotification(
                    sound="default",
                    channel_id=self.android_channel_id,
                ),
            ),
            apns=messaging.APNSConfig(
                payload=messaging.APNSPayload(
                    aps=messaging.Aps(sound="default", badge=1, content_available=True),
                ),
            ),
        )

        try:
            # Synchronous, but fast
            response = messaging.send(message, app=self.firebase.app)
            logger.info(f"[FCM] Message sent successfully: {response}")
            return PushResult(success=True, platform="android", message_id=response)
        except messaging.UnregisteredError:
            logger.warning(f"[FCM] Token unregistered: {device_token[:20]}...")
            return PushResult(success=False, platform="android", error="Token unregistered", error_code="UNREGISTERED")
        except messaging.SenderIdMismatchError:
            logger.error("[FCM] Sender ID mismatch")
            return PushResult(success=False, platform="android", error="Sender ID mismatch", error_code="SENDER_ID_MISMATCH")
        except (fb_exceptions.FirebaseError, ValueError) as e:
            logger.error(f"[FCM] Send error: {e}")
            return PushResult(success=False, platform="android", error=str(e), error_code="exception")


class PushGateway:
    """
    Delivers a {title, body, data} payload to every push endpoint registered
    for a user identity.
    """

    def __init__(self, store, apns: APNsVoIPService, fcm: FCMService):
        self.store = store
        self.apns = apns
        self.fcm = fcm

    async def deliver(self, identity: str, payload: Dict[str, Any]) -> DeliveryResult:
        tokens = self.store.get_user_tokens(identity)
        if tokens is None:
            return DeliveryResult(success=False, error="store_unavailable")
        if not tokens.get("exists"):
            return DeliveryResult(success=False, error="user_not_found")

        data = stringify_values(payload.get("data") or {})
        title = payload.get("title", "")
        body = payload.get("body", "")
        high_priority = data.get("priority") == "high"
        collapse_id = data.get("callId") or identity

        results = []
        voip_token = tokens.get("voipToken")
        if tokens.get("platform") == "ios" and voip_token:
            apns_payload = {
                "aps": {"alert": {"title": title, "body": body}, "sound": "default"},
                **data,
            }
            results.append(await self.apns.send_voip_push(voip_token, apns_payload, collapse_id))

        fcm_tokens = []
        if tokens.get("platform") != "ios" and tokens.get("fcmToken"):
            fcm_tokens.append(tokens["fcmToken"])
        for token in tokens.get("deviceTokens") or []:
            if token and token not in fcm_tokens:
                fcm_tokens.append(token)
        for token in fcm_tokens:
            results.append(await self.fcm.send_message(token, title, body, data, high_priority=high_priority))

        if not results:
            return DeliveryResult(success=False, error="no_endpoints")

        sent = sum(1 for r in results if r.success)
        failed = len(results) - sent
        logger.info(f"[PUSH] Delivery to {identity}: {sent} successful, {failed} failed")
        return DeliveryResult(
            success=sent > 0,
            total_sent=sent,
            total_failed=failed,
            results=results,
            error=None if sent else "; ".join(r.error or "unknown" for r in results),
        )
