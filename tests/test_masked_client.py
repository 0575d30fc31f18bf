from unittest import mock

import pytest
import requests

from qrcall.errors import MaskedCallingError
from qrcall.masked_client import MaskedRelayClient


def _response(status_code=200, payload=None):
    response = mock.Mock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    response.text = str(payload)
    return response


@pytest.fixture
def session():
    return mock.Mock()


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def client(session, sleeps):
    return MaskedRelayClient(
        enabled=True,
        api_url="https://relay.example.com/v1/",
        api_key="secret-key",
        timeout=5,
        retry_attempts=3,
        backoff_base=0.5,
        session=session,
        sleep=sleeps.append,
    )


def test_availability():
    assert not MaskedRelayClient(enabled=False, api_url="https://x", api_key="k").is_available()
    assert not MaskedRelayClient(enabled=True, api_url=None, api_key="k").is_available()
    assert MaskedRelayClient(enabled=True, api_url="https://x", api_key="k").is_available()


def test_config_never_exposes_key(client):
    config = client.get_config()
    assert config["apiUrl"] == "https://relay.example.com"
    assert "secret-key" not in str(config)


def test_initiate(client, session):
    session.request.return_value = _response(payload={
        "masked_call_id": "M-1",
        "caller_masked_number": "+15550001",
        "receiver_masked_number": "+15550002",
        "status": "initiated",
    })

    result = client.initiate("call-1", "(202) 555-0199", "+44 20 7946 0000", "https://cb", {"qr_id": "Q1"})

    assert result.masked_call_id == "M-1"
    assert result.to_dict()["receiverMaskedNumber"] == "+15550002"
    method, url = session.request.call_args[0]
    kwargs = session.request.call_args.kwargs
    assert (method, url) == ("POST", "https://relay.example.com/v1/initiate-call")
    assert kwargs["headers"]["Authorization"] == "Bearer secret-key"
    assert kwargs["timeout"] == 5
    assert kwargs["json"]["caller_number"] == "+12025550199"
    assert kwargs["json"]["receiver_number"] == "+442079460000"
    assert kwargs["json"]["metadata"]["qr_id"] == "Q1"


def test_retries_with_exponential_backoff(client, session, sleeps):
    session.request.side_effect = [
        requests.exceptions.ConnectionError("refused"),
        _response(503, {"error": "busy"}),
        _response(payload={"masked_call_id": "M-2"}),
    ]

    result = client.initiate("call-2", "2025550199", "2025550100", "https://cb")

    assert result.masked_call_id == "M-2"
    assert sleeps == [0.5, 1.0]


def test_exhausted_retries_raise(client, session, sleeps):
    session.request.side_effect = requests.exceptions.Timeout("slow")

    with pytest.raises(MaskedCallingError):
        client.initiate("call-3", "2025550199", "2025550100", "https://cb")
    assert session.request.call_count == 3
    assert sleeps == [0.5, 1.0]


def test_missing_masked_call_id(client, session):
    session.request.return_value = _response(payload={"status": "ok"})
    with pytest.raises(MaskedCallingError):
        client.initiate("call-4", "2025550199", "2025550100", "https://cb")


def test_initiate_requires_both_numbers(client, session):
    with pytest.raises(MaskedCallingError):
        client.initiate("call-5", "2025550199", "", "https://cb")
    session.request.assert_not_called()


def test_end_and_status(client, session):
    session.request.return_value = _response(payload={"status": "completed", "duration": 42, "ended_at": "t"})
    assert client.end("M-1")["duration"] == 42
    assert session.request.call_args[0] == ("POST", "https://relay.example.com/v1/end-call/M-1")

    session.request.return_value = _response(payload={"status": "in_progress", "participants": 2})
    status = client.status("M-1")
    assert status["status"] == "in_progress"
    assert session.request.call_args[0] == ("GET", "https://relay.example.com/v1/call-status/M-1")
    assert session.request.call_args.kwargs["json"] is None


def test_disabled_client_refuses(session):
    client = MaskedRelayClient(enabled=False, api_url="https://x", api_key="k", session=session)
    with pytest.raises(MaskedCallingError):
        client.initiate("c", "2025550199", "2025550100", "https://cb")
    with pytest.raises(MaskedCallingError):
        client.end("M-1")
    session.request.assert_not_called()


@pytest.mark.parametrize("status_code", [400, 401, 403, 404])
def test_client_errors_are_not_retried(client, session, sleeps, status_code):
    session.request.return_value = _response(status_code, {"error": "rejected"})

    with pytest.raises(MaskedCallingError):
        client.initiate("call-6", "2025550199", "2025550100", "https://cb")
    assert session.request.call_count == 1
    assert sleeps == []


def test_throttling_is_retried(client, session, sleeps):
    session.request.side_effect = [
        _response(429, {"error": "slow down"}),
        _response(payload={"masked_call_id": "M-7"}),
    ]

    assert client.initiate("call-7", "2025550199", "2025550100", "https://cb").masked_call_id == "M-7"
    assert sleeps == [0.5]


def test_status_makes_one_short_attempt(session, sleeps):
    client = MaskedRelayClient(
        enabled=True,
        api_url="https://relay.example.com/v1",
        api_key="secret-key",
        timeout=30,
        retry_attempts=3,
        session=session,
        sleep=sleeps.append,
    )
    session.request.side_effect = requests.exceptions.ConnectionError("refused")

    with pytest.raises(MaskedCallingError):
        client.status("M-1")
    assert session.request.call_count == 1
    assert session.request.call_args.kwargs["timeout"] == 5.0
    assert sleeps == []
