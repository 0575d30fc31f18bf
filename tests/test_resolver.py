import pytest

from qrcall.errors import AnonymousCallsDisabled, DeviceNotFound, QRNotFound, QRNotLinked
from qrcall.resolver import IdentityResolver

from .conftest import make_device, make_qr


@pytest.fixture
def resolver(store):
    return IdentityResolver(store)


def test_resolve_linked_qr(resolver):
    resolution = resolver.resolve("Q1")
    assert resolution.owner_id == "U1"
    assert resolution.device["deviceId"] == "D1"
    assert resolution.qr_code["qrId"] == "Q1"


def test_resolve_unknown_qr(resolver):
    with pytest.raises(QRNotFound):
        resolver.resolve("nope")


def test_resolve_inactive_qr(resolver, store):
    store.put_qr_code(make_qr("Q3", isActive=False))
    with pytest.raises(QRNotFound):
        resolver.resolve("Q3")


def test_resolve_unlinked_qr_reports_status(resolver):
    with pytest.raises(QRNotLinked) as exc_info:
        resolver.resolve("Q2")
    body = exc_info.value.to_dict()
    assert body["code"] == "QR_NOT_LINKED"
    assert body["status"] == "available"
    assert "not been activated" in body["message"]


def test_resolve_suspended_qr(resolver, store):
    store.put_qr_code(make_qr("Q4", status="suspended"))
    with pytest.raises(QRNotLinked) as exc_info:
        resolver.resolve("Q4")
    assert exc_info.value.to_dict()["status"] == "suspended"


def test_resolve_missing_device(resolver, store):
    store.put_qr_code(make_qr("Q5", device_id="D404"))
    with pytest.raises(DeviceNotFound):
        resolver.resolve("Q5")


def test_resolve_inactive_device(resolver, store):
    store.put_device(make_device("D2", status="maintenance"))
    store.put_qr_code(make_qr("Q6", device_id="D2"))
    with pytest.raises(DeviceNotFound):
        resolver.resolve("Q6")


def test_resolve_anonymous_calls_disabled(resolver, store):
    store.put_device(make_device("D3", settings={"allowAnonymousCalls": False}))
    store.put_qr_code(make_qr("Q7", device_id="D3"))
    with pytest.raises(AnonymousCallsDisabled):
        resolver.resolve("Q7")


def test_resolve_does_not_touch_counters(resolver, store):
    resolver.resolve("Q1")
    assert store.get_qr_code("Q1")["stats"] == {"scanCount": 0, "callCount": 0, "emergencyCallCount": 0}


def test_lookup_counts_scan(resolver, store):
    info = resolver.lookup("Q1")
    assert info["isLinked"] is True
    assert info["owner"]["name"] == "Pat Owner"
    assert info["vehicle"]["plateNumber"] == "7ABC123"
    assert info["allowAnonymousCalls"] is True
    assert store.get_qr_code("Q1")["stats"]["scanCount"] == 1


def test_lookup_honours_privacy_flags(resolver, store):
    qr_code = make_qr("Q8")
    qr_code["emergencyInfo"].update(showOwnerName=False, showVehiclePlate=False)
    store.put_qr_code(qr_code)

    info = resolver.lookup("Q8")
    assert info["owner"]["name"] == "Vehicle Owner"
    assert info["vehicle"]["plateNumber"] == "Hidden"


def test_lookup_unlinked_qr(resolver, store):
    info = resolver.lookup("Q2")
    assert info["isLinked"] is False
    assert info["status"] == "available"
    assert store.get_qr_code("Q2")["stats"]["scanCount"] == 1
