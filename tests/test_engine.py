import threading
from datetime import timedelta

import pytest
from django.utils import timezone

from qrcall.engine import InitiateRequest
from qrcall.errors import (
    CallerPhoneRequired,
    CallNotFound,
    InvalidCallStatus,
    MaskedCallingError,
    MaskedCallingUnavailable,
    QRNotLinked,
    RtcTokenError,
)
from qrcall.masked_client import MaskedSession
from qrcall.webhooks import CallEnded

from .conftest import MASKED_CALL_ID, make_device, make_qr


def _stats(store, qr_id="Q1"):
    return store.get_qr_code(qr_id)["stats"]


def test_initiate_direct_emergency(start_call, store, notifier, hub):
    response = start_call(call_type="audio", emergency_type="medical", urgency_level="critical")

    assert response["success"] is True
    assert response["callMethod"] == "direct"
    assert response["isEmergency"] is True
    assert response["token"] == f"tok-caller_{response['callId']}"
    assert response["channelName"] == f"emergency_{response['callId']}"
    assert response["receiver"]["name"] == "Pat Owner"
    assert "fallback" not in response

    stats = _stats(store)
    assert stats["callCount"] == 1
    assert stats["emergencyCallCount"] == 1

    call = store.get_call_record(response["callId"])
    assert call["status"] == "initiated"
    assert call["receiverId"] == "U1"
    assert call["callerKey"] == response["callerKey"]

    identity, notification = notifier.notify.call_args[0]
    assert identity == "U1"
    assert notification["title"] == "CRITICAL EMERGENCY"
    assert notification["data"]["token"] == "tok-owner_U1"

    events = [c[0][1] for c in hub.publish.call_args_list]
    assert "incoming-call" in events
    hub.broadcast.assert_called_once()
    assert hub.broadcast.call_args[0][0] == "emergency-alert"


def test_initiate_general_call_is_not_emergency(start_call, store, hub):
    response = start_call()
    assert response["isEmergency"] is False
    assert _stats(store)["callCount"] == 1
    assert _stats(store)["emergencyCallCount"] == 0
    hub.broadcast.assert_not_called()


def test_initiate_unlinked_qr_creates_nothing(engine, store):
    with pytest.raises(QRNotLinked):
        engine.initiate(InitiateRequest(qr_id="Q2"))
    assert store.list_calls_for_receiver("U1") == ([], 0)


def test_masked_without_caller_phone(start_call, store, masked_client):
    masked_client.is_available.return_value = True
    with pytest.raises(CallerPhoneRequired):
        start_call(call_method="masked")

    assert store.list_calls_for_receiver("U1") == ([], 0)
    assert _stats(store)["callCount"] == 0
    masked_client.initiate.assert_not_called()


def test_masked_when_relay_unavailable(start_call, store):
    with pytest.raises(MaskedCallingUnavailable) as exc_info:
        start_call(call_method="masked", caller_info={"phone": "2025550199"})
    assert exc_info.value.to_dict()["availableMethods"] == ["direct"]
    assert _stats(store)["callCount"] == 0


def test_masked_call_established(start_call, store, masked_client, token_issuer):
    masked_client.is_available.return_value = True
    masked_client.initiate.return_value = MaskedSession(
        masked_call_id="M-1",
        caller_masked_number="+15550001",
        receiver_masked_number="+15550002",
        status="initiated",
    )

    response = start_call(call_method="masked", caller_info={"phone": "2025550199"})

    assert response["callMethod"] == "masked"
    assert response["maskedCallInfo"]["maskedCallId"] == "M-1"
    assert "token" not in response
    call = store.get_call_record(response["callId"])
    assert call["maskedCallInfo"]["maskedCallId"] == "M-1"
    kwargs = masked_client.initiate.call_args.kwargs
    assert kwargs["receiver_phone"] == "+12025550123"
    assert kwargs["callback_url"] == "http://testserver/calls/webhook/masked"
    token_issuer.issue.assert_not_called()


def test_masked_uses_first_emergency_contact(start_call, store, masked_client):
    store.put_device(make_device(settings={
        "allowAnonymousCalls": True,
        "emergencyContacts": [
            {"name": "B", "phone": "+12025550300", "priority": 2},
            {"name": "A", "phone": "+12025550200", "priority": 1},
        ],
    }))
    masked_client.is_available.return_value = True
    masked_client.initiate.return_value = MaskedSession("M-2", None, None)

    start_call(call_method="masked", caller_info={"phone": "2025550199"})
    assert masked_client.initiate.call_args.kwargs["receiver_phone"] == "+12025550200"


def test_contact_without_numeric_priority_sorts_last(start_call, store, masked_client):
    store.put_device(make_device(settings={
        "allowAnonymousCalls": True,
        "emergencyContacts": [
            {"name": "B", "phone": "+12025550300", "priority": None},
            {"name": "C", "phone": "+12025550400"},
            {"name": "A", "phone": "+12025550200", "priority": 5},
        ],
    }))
    masked_client.is_available.return_value = True
    masked_client.initiate.return_value = MaskedSession("M-3", None, None)

    response = start_call(call_method="masked", caller_info={"phone": "2025550199"})

    assert response["callMethod"] == "masked"
    assert masked_client.initiate.call_args.kwargs["receiver_phone"] == "+12025550200"


def test_masked_failure_falls_back_to_direct(start_call, store, masked_client):
    masked_client.is_available.return_value = True
    masked_client.initiate.side_effect = MaskedCallingError("HTTP 503: unavailable")

    response = start_call(call_method="masked", caller_info={"phone": "2025550199"})

    assert response["callMethod"] == "direct"
    assert response["requestedCallMethod"] == "masked"
    assert response["token"] == f"tok-caller_{response['callId']}"
    assert response["fallback"] == {"from": "masked", "reason": "HTTP 503: unavailable"}

    call = store.get_call_record(response["callId"])
    assert call["callMethod"] == "direct"
    assert call["maskedCallInfo"] is None
    assert "(Masked call failed: HTTP 503: unavailable)" in call["callerInfo"]["additionalInfo"]


def test_masked_without_receiver_phone_falls_back(start_call, store, masked_client):
    store.put_device(make_device(owner={"userId": "U1", "userName": "Pat Owner"}))
    store.put_user("U1", {"platform": "android"})
    masked_client.is_available.return_value = True

    response = start_call(call_method="masked", caller_info={"phone": "2025550199"})
    assert response["callMethod"] == "direct"
    masked_client.initiate.assert_not_called()


def test_rtc_failure_marks_call_failed(start_call, store, token_issuer):
    token_issuer.issue.side_effect = RtcTokenError("Agora credentials not configured")
    with pytest.raises(RtcTokenError):
        start_call()

    calls, total = store.list_calls_for_receiver("U1")
    assert total == 1
    assert calls[0]["status"] == "failed"


def test_answer(start_call, engine, store, hub):
    call_id = start_call()["callId"]
    response = engine.answer(call_id, "U1")

    assert response["status"] == "answered"
    assert response["token"] == "tok-owner_U1"
    assert "phone" not in response["callerInfo"]
    call = store.get_call_record(call_id)
    assert call["status"] == "answered"
    assert call["timing"]["answeredAt"] is not None
    room, event, data = hub.publish.call_args[0]
    assert (room, event) == (f"caller_{call_id}", "call-accepted")
    assert data["status"] == "answered"


def test_answer_by_someone_else(start_call, engine):
    call_id = start_call()["callId"]
    with pytest.raises(CallNotFound):
        engine.answer(call_id, "U2")


def test_reject_then_answer(start_call, engine, store):
    call_id = start_call()["callId"]

    response = engine.reject(call_id, "U1", reason="busy")
    assert response["status"] == "rejected"
    assert response["endedBy"] == "receiver"

    call = store.get_call_record(call_id)
    assert call["status"] == "rejected"
    assert call["endedBy"] == "receiver"
    assert "Rejected: busy" in call["callerInfo"]["additionalInfo"]

    with pytest.raises(InvalidCallStatus) as exc_info:
        engine.answer(call_id, "U1")
    assert exc_info.value.to_dict()["currentStatus"] == "rejected"
    assert store.get_call_record(call_id) == call


def test_end_answered_call_computes_duration(start_call, engine, store):
    call_id = start_call()["callId"]
    engine.answer(call_id, "U1")
    store.update_call_fields(call_id, {"timing.answeredAt": timezone.now() - timedelta(seconds=42)})

    response = engine.end(call_id, "caller", {"rating": 5, "feedback": "thanks"})

    assert response["endedBy"] == "caller"
    assert 42 <= response["duration"] <= 44
    call = store.get_call_record(call_id)
    assert call["status"] == "ended"
    assert call["callQuality"] == {"rating": 5, "feedback": "thanks"}
    assert call["timing"]["answeredAt"] <= call["timing"]["endedAt"]


def test_end_unanswered_call_has_zero_duration(start_call, engine):
    call_id = start_call()["callId"]
    assert engine.end(call_id, "receiver")["duration"] == 0


def test_end_twice(start_call, engine):
    call_id = start_call()["callId"]
    engine.end(call_id, "system")
    with pytest.raises(InvalidCallStatus):
        engine.end(call_id, "system")


def test_end_masked_call_tears_down_relay(start_call, engine, store, masked_client):
    masked_client.is_available.return_value = True
    masked_client.initiate.return_value = MaskedSession("M-3", None, None)
    masked_client.end.return_value = {"maskedCallId": "M-3", "duration": 61}
    call_id = start_call(call_method="masked", caller_info={"phone": "2025550199"})["callId"]

    engine.end(call_id, "receiver")

    masked_client.end.assert_called_once_with("M-3")
    assert store.get_call_record(call_id)["maskedCallInfo"]["reportedDuration"] == 61


def test_teardown_failure_does_not_fail_end(start_call, engine, store, masked_client):
    masked_client.is_available.return_value = True
    masked_client.initiate.return_value = MaskedSession("M-4", None, None)
    masked_client.end.side_effect = MaskedCallingError("timeout")
    call_id = start_call(call_method="masked", caller_info={"phone": "2025550199"})["callId"]

    assert engine.end(call_id, "receiver")["status"] == "ended"
    assert store.get_call_record(call_id)["status"] == "ended"


def test_expire_call(start_call, engine, store):
    call_id = start_call()["callId"]
    assert engine.expire_call(call_id) is True

    call = store.get_call_record(call_id)
    assert call["status"] == "missed"
    assert call["endedBy"] == "timeout"
    assert engine.expire_call(call_id) is False


def test_expire_skips_answered_call(start_call, engine, store):
    call_id = start_call()["callId"]
    engine.answer(call_id, "U1")
    assert engine.expire_call(call_id) is False
    assert store.get_call_record(call_id)["status"] == "answered"


def test_sweep_expired(start_call, engine, store):
    old_id = start_call()["callId"]
    fresh_id = start_call()["callId"]
    store.update_call_fields(old_id, {"createdAt": timezone.now() - timedelta(minutes=5)})

    result = engine.sweep_expired(timeout_seconds=60)

    assert result["updated"] == 1
    assert store.get_call_record(old_id)["status"] == "missed"
    assert store.get_call_record(fresh_id)["status"] == "initiated"


def test_answer_loses_to_webhook_end(start_masked_call, engine, reconciler, store):
    call_id = start_masked_call()["callId"]
    reconciler.reconcile(
        CallEnded(call_id=call_id, timestamp=timezone.now(), masked_call_id=MASKED_CALL_ID, raw_type="call_ended")
    )

    with pytest.raises(InvalidCallStatus):
        engine.answer(call_id, "U1")

    call = store.get_call_record(call_id)
    assert call["status"] == "ended"
    assert call["timing"]["answeredAt"] is None


def test_concurrent_answers_have_one_winner(start_call, engine, store):
    call_id = start_call()["callId"]
    barrier = threading.Barrier(8)
    outcomes = []
    lock = threading.Lock()

    def _answer():
        barrier.wait()
        try:
            engine.answer(call_id, "U1")
            result = "won"
        except InvalidCallStatus:
            result = "lost"
        with lock:
            outcomes.append(result)

    threads = [threading.Thread(target=_answer) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert outcomes.count("won") == 1
    assert outcomes.count("lost") == 7


def test_status_hides_caller_key(start_call, engine):
    call_id = start_call()["callId"]
    status = engine.status(call_id)
    assert status["status"] == "initiated"
    assert "callerKey" not in status


def test_status_survives_masked_lookup_failure(start_call, engine, masked_client):
    masked_client.is_available.return_value = True
    masked_client.initiate.return_value = MaskedSession("M-5", None, None)
    masked_client.status.side_effect = MaskedCallingError("down")
    call_id = start_call(call_method="masked", caller_info={"phone": "2025550199"})["callId"]

    status = engine.status(call_id)
    assert status["callMethod"] == "masked"
    assert "maskedCallStatus" not in status


def test_detail_is_receiver_only(start_call, engine):
    call_id = start_call()["callId"]
    assert engine.detail(call_id, "U1")["call"]["callId"] == call_id
    assert "callerKey" not in engine.detail(call_id, "U1")["call"]
    with pytest.raises(CallNotFound):
        engine.detail(call_id, "U2")


def test_history(start_call, engine, store):
    start_call(caller_info={"phone": "2025550199"})
    start_call(emergency_type="accident", urgency_level="high")
    start_call()
    store.put_qr_code(make_qr("Q9", user_id="U2", device_id="D9"))
    store.put_device(make_device("D9", user_id="U2"))
    engine.initiate(InitiateRequest(qr_id="Q9"))

    page = engine.history("U1", page=1, limit=2)
    assert page["pagination"] == {"page": 1, "limit": 2, "total": 3, "pages": 2, "hasNext": True, "hasPrev": False}
    assert len(page["calls"]) == 2
    assert all("callerKey" not in call for call in page["calls"])

    emergencies = engine.history("U1", emergency_only=True)
    assert emergencies["pagination"]["total"] == 1
    assert emergencies["summary"]["emergencyCalls"] == 1

    everything = engine.history("U1")
    phones = [call["callerInfo"]["phone"] for call in everything["calls"] if call["callerInfo"]["phone"]]
    assert phones == ["******0199"]


def test_methods(engine, masked_client):
    assert engine.methods()["availableMethods"] == ["direct"]
    masked_client.is_available.return_value = True
    assert engine.methods()["availableMethods"] == ["direct", "masked"]
