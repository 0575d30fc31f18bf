from unittest import mock

import jwt
import pytest
from django.apps import apps
from django.core.cache import cache

from qrcall.apps import Services
from qrcall.engine import CallEngine, InitiateRequest
from qrcall.masked_client import MaskedSession
from qrcall.memory_store import MemoryStore
from qrcall.resolver import IdentityResolver
from qrcall.rtc import RtcCredential
from qrcall.webhooks import WebhookReconciler

JWT_SECRET = "test-jwt-secret"
SYSTEM_KEY = "test-system-key"
WEBHOOK_SECRET = "test-webhook-secret"


def make_qr(qr_id, status="linked", user_id="U1", device_id="D1", **overrides):
    linked = status == "linked"
    qr_code = {
        "qrId": qr_id,
        "status": status,
        "isActive": True,
        "linkedTo": {
            "userId": user_id if linked else None,
            "deviceId": device_id if linked else None,
            "linkedAt": None,
        },
        "emergencyInfo": {
            "showOwnerName": True,
            "showVehiclePlate": True,
            "emergencyContact": "555-0100",
            "alternateContact": "",
            "specialInstructions": "Blue sedan",
        },
        "stats": {"scanCount": 0, "callCount": 0, "emergencyCallCount": 0},
    }
    qr_code.update(overrides)
    return qr_code


def make_device(device_id="D1", user_id="U1", **overrides):
    device = {
        "deviceId": device_id,
        "owner": {"userId": user_id, "userName": "Pat Owner", "phone": "+12025550123"},
        "vehicle": {"plateNumber": "7ABC123"},
        "status": "active",
        "settings": {"allowAnonymousCalls": True, "emergencyContacts": []},
    }
    device.update(overrides)
    return device


def bearer(user_id, secret=JWT_SECRET):
    token = jwt.encode({"user_id": user_id}, secret, algorithm="HS256")
    return {"HTTP_AUTHORIZATION": f"Bearer {token}"}


@pytest.fixture
def store():
    store = MemoryStore()
    store.put_qr_code(make_qr("Q1"))
    store.put_qr_code(make_qr("Q2", status="available"))
    store.put_device(make_device())
    store.put_user("U1", {"platform": "android", "fcmToken": "fcm-U1", "phone": "+12025550123"})
    return store


@pytest.fixture
def token_issuer():
    issuer = mock.Mock()
    issuer.is_configured.return_value = True

    def _issue(channel, uid, role="publisher", ttl=None):
        return RtcCredential(
            token=f"tok-{uid}",
            uid=uid,
            channel=channel,
            app_id="app-id",
            expire_at=2_000_000_000,
            expire_in=3600,
        )

    issuer.issue.side_effect = _issue
    return issuer


@pytest.fixture
def masked_client():
    client = mock.Mock()
    client.is_available.return_value = False
    client.get_config.return_value = {"enabled": False, "available": False}
    return client


@pytest.fixture
def notifier():
    return mock.Mock()


@pytest.fixture
def hub():
    return mock.Mock()


@pytest.fixture
def engine(store, token_issuer, masked_client, notifier, hub):
    return CallEngine(
        store=store,
        resolver=IdentityResolver(store),
        token_issuer=token_issuer,
        masked_client=masked_client,
        notifier=notifier,
        hub=hub,
        callback_url="http://testserver/calls/webhook/masked",
        ring_timeout=0,
    )


@pytest.fixture
def reconciler(store, hub):
    return WebhookReconciler(store, hub)


@pytest.fixture
def services(store, engine, reconciler, token_issuer, masked_client, notifier, hub):
    return Services(
        store=store,
        resolver=engine.resolver,
        token_issuer=token_issuer,
        masked_client=masked_client,
        notifier=notifier,
        sio=mock.Mock(),
        hub=hub,
        engine=engine,
        reconciler=reconciler,
    )


@pytest.fixture(autouse=True)
def app_services(services, monkeypatch, settings):
    monkeypatch.setattr(apps.get_app_config("qrcall"), "services", services)
    settings.QRCALL_JWT_SECRET = JWT_SECRET
    settings.QRCALL_SYSTEM_API_KEY = SYSTEM_KEY
    settings.MASKED_CALLING_WEBHOOK_SECRET = WEBHOOK_SECRET
    settings.DEBUG = False
    cache.clear()
    return services


@pytest.fixture
def start_call(engine):
    def _start(**overrides):
        params = {"qr_id": "Q1", "caller_info": {"name": "Good Samaritan", "location": "Main St"}}
        params.update(overrides)
        return engine.initiate(InitiateRequest(**params))

    return _start


MASKED_CALL_ID = "M-1"


@pytest.fixture
def start_masked_call(start_call, masked_client):
    masked_client.is_available.return_value = True
    masked_client.initiate.return_value = MaskedSession(MASKED_CALL_ID, "+15550001", "+15550002")

    def _start(**overrides):
        params = {"call_method": "masked", "caller_info": {"name": "Good Samaritan", "phone": "2025550199"}}
        params.update(overrides)
        return start_call(**params)

    return _start
