import logging
from dataclasses import dataclass
from typing import Any

from django.apps import AppConfig, apps
from django.conf import settings

logger = logging.getLogger("qrcall")


@dataclass
class Services:
    store: Any
    resolver: Any
    token_issuer: Any
    masked_client: Any
    notifier: Any
    sio: Any
    hub: Any
    engine: Any
    reconciler: Any


def build_services(config=settings) -> Services:
    """Construct every collaborator once and wire them together."""
    from .auth import socket_user
    from .demo import seed_store
    from .engine import CallEngine
    from .firebase_service import FirebaseHandle, FirestoreStore
    from .masked_client import MaskedRelayClient
    from .memory_store import MemoryStore
    from .notifications import NotificationDispatcher
    from .push_service import APNsVoIPService, FCMService, PushGateway
    from .realtime import RealtimeHub, create_socket_server
    from .resolver import IdentityResolver
    from .rtc import AgoraTokenIssuer
    from .webhooks import WebhookReconciler

    firebase = FirebaseHandle(
        use_emulator=config.FIREBASE_USE_EMULATOR,
        project_id=config.FIREBASE_PROJECT_ID,
        service_account_json=config.FIREBASE_SERVICE_ACCOUNT,
        service_account_path=config.FIREBASE_SERVICE_ACCOUNT_PATH,
        emulator_host=config.FIRESTORE_EMULATOR_HOST,
    )
    if config.QRCALL_STORE_BACKEND == "memory":
        store = MemoryStore()
        if config.QRCALL_SEED_DEMO:
            seed_store(store)
    else:
        store = FirestoreStore(firebase)
    logger.info(f"Call store backend: {config.QRCALL_STORE_BACKEND}")

    token_issuer = AgoraTokenIssuer(config.AGORA_APP_ID, config.AGORA_APP_CERT, config.AGORA_TOKEN_EXPIRE)
    masked_client = MaskedRelayClient(
        enabled=config.MASKED_CALLING_ENABLED,
        api_url=config.MASKED_CALLING_API_URL,
        api_key=config.MASKED_CALLING_API_KEY,
        timeout=config.MASKED_CALLING_TIMEOUT,
        retry_attempts=config.MASKED_CALLING_RETRIES,
        backoff_base=config.MASKED_CALLING_BACKOFF,
        max_duration=config.MAX_CALL_DURATION,
    )

    gateway = PushGateway(
        store,
        apns=APNsVoIPService(
            team_id=config.APNS_TEAM_ID,
            key_id=config.APNS_KEY_ID,
            bundle_id=config.APNS_BUNDLE_ID,
            key_path=config.APNS_KEY_PATH,
            key_content=config.APNS_KEY_CONTENT,
            use_sandbox=config.APNS_USE_SANDBOX,
        ),
        fcm=FCMService(firebase),
    )
    notifier = NotificationDispatcher(
        gateway,
        enabled=config.NOTIFICATIONS_ENABLED,
        timeout=config.NOTIFICATION_TIMEOUT,
        retries=config.NOTIFICATION_RETRIES,
        max_workers=config.NOTIFICATION_WORKERS,
    )

    sio = create_socket_server(
        cors_allowed_origins=config.SOCKETIO_CORS_ORIGINS,
        ping_timeout=config.SOCKETIO_PING_TIMEOUT,
        ping_interval=config.SOCKETIO_PING_INTERVAL,
        authenticate=socket_user,
        require_auth=config.SOCKETIO_REQUIRE_AUTH,
    )
    hub = RealtimeHub(sio)

    engine = CallEngine(
        store=store,
        resolver=IdentityResolver(store),
        token_issuer=token_issuer,
        masked_client=masked_client,
        notifier=notifier,
        hub=hub,
        callback_url=f"{config.QRCALL_API_URL.rstrip('/')}/calls/webhook/masked",
        ring_timeout=config.CALL_RING_TIMEOUT,
    )
    reconciler = WebhookReconciler(store, hub, timeouts=engine.timeouts)

    return Services(
        store=store,
        resolver=engine.resolver,
        token_issuer=token_issuer,
        masked_client=masked_client,
        notifier=notifier,
        sio=sio,
        hub=hub,
        engine=engine,
        reconciler=reconciler,
    )


class QrcallConfig(AppConfig):
    name = "qrcall"
    verbose_name = "QR vehicle calls"
    services = None

    def ready(self):
        self.services = build_services()


def get_services() -> Services:
    return apps.get_app_config("qrcall").services
