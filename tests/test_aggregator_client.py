from unittest import mock

import pytest
import requests

from evv_compliance.exceptions import AggregatorTransportError
from evv_compliance.services.aggregator_client import AggregatorClient


def fake_response(status_code=200, body=None, content=None, invalid_json=False):
    response = mock.Mock(status_code=status_code)
    response.content = content if content is not None else (b"{}" if body is None else b"{...}")
    response.text = "<html>gateway error</html>"
    if invalid_json:
        response.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        response.json.return_value = body if body is not None else {}
    return response


@pytest.fixture
def session():
    return mock.Mock(spec=requests.Session)


def test_session_retries_transient_failures():
    client = AggregatorClient("Sandata", "https://sandata.example.test", max_retries=4, backoff_factor=0.25)

    retry = client.session.get_adapter("https://sandata.example.test/visits").max_retries
    assert retry.total == 4
    assert retry.backoff_factor == 0.25
    assert 503 in retry.status_forcelist
    assert 429 in retry.status_forcelist
    assert "POST" in retry.allowed_methods


def test_from_settings():
    client = AggregatorClient.from_settings("Sandata", auth_style="subscription")

    assert client.base_url == "https://sandata.example.test"
    assert client.account_id == "ACCT-1"
    assert client.provider_id == "211108"
    assert client.timeout == 30


def test_from_settings_per_aggregator_timeout():
    assert AggregatorClient.from_settings("HHAeXchange").timeout == 5


@pytest.mark.parametrize("auth_style,header,value", [
    ("bearer", "Authorization", "Bearer secret"),
    ("subscription", "Ocp-Apim-Subscription-Key", "secret"),
    ("api_key", "X-API-Key", "secret"),
])
def test_headers(auth_style, header, value, session):
    client = AggregatorClient("X", "https://x.test", api_key="secret", auth_style=auth_style, session=session)
    headers = client._get_headers()
    assert headers[header] == value
    assert headers["Content-Type"] == "application/json"


def test_subscription_headers_carry_account(session):
    client = AggregatorClient("Sandata", "https://x.test", api_key="k", account_id="ACCT-9",
                              auth_style="subscription", session=session)
    assert client._get_headers()["Account"] == "ACCT-9"


def test_send_posts_json(session):
    session.post.return_value = fake_response(201, {"transactionId": "T-1"})
    client = AggregatorClient("Sandata", "https://x.test/", timeout=12, provider_id="P-1", session=session)

    result = client.send("/visits/upload", "POST", [{"VisitOtherID": "visit-1"}])

    session.post.assert_called_once()
    args, kwargs = session.post.call_args
    assert args == ("https://x.test/visits/upload",)
    assert kwargs["json"] == [{"VisitOtherID": "visit-1"}]
    assert kwargs["timeout"] == 12
    assert result["status_code"] == 201
    assert result["response"] == {"transactionId": "T-1"}
    assert result["provider_id_used"] == "P-1"


def test_rejection_is_returned_not_raised(session):
    session.post.return_value = fake_response(400, {"errorCode": "INVALID_MEMBER"})
    client = AggregatorClient("HHAeXchange", "https://x.test", session=session)

    result = client.send("/evv/visits", "POST", {})

    assert result["status_code"] == 400
    assert result["response"]["errorCode"] == "INVALID_MEMBER"


def test_connection_error_raises_transport_error(session):
    session.post.side_effect = requests.exceptions.ConnectionError("connection refused")
    client = AggregatorClient("HHAeXchange", "https://x.test", session=session)

    with pytest.raises(AggregatorTransportError) as excinfo:
        client.send("/evv/visits", "POST", {})

    assert excinfo.value.aggregator == "HHAeXchange"
    assert isinstance(excinfo.value.__cause__, requests.exceptions.ConnectionError)


def test_exhausted_retries_raise_transport_error(session):
    session.post.return_value = fake_response(503, {"message": "unavailable"})
    client = AggregatorClient("Netsmart", "https://x.test", session=session)

    with pytest.raises(AggregatorTransportError) as excinfo:
        client.send("/api/v1/evv/submissions", "POST", {})

    assert excinfo.value.status_code == 503


def test_empty_and_invalid_bodies(session):
    client = AggregatorClient("Sandata", "https://x.test", session=session)

    session.post.return_value = fake_response(200, content=b"")
    assert client.send("/visits/upload")["response"] == {"message": "Empty response received"}

    session.post.return_value = fake_response(200, invalid_json=True)
    body = client.send("/visits/upload")["response"]
    assert body["error"] == "Invalid JSON response"
    assert body["content_preview"].startswith("<html>")


def test_get_status(session):
    session.get.return_value = fake_response(200, {"status": "ACCEPTED"})
    client = AggregatorClient("Sandata", "https://x.test", session=session)

    result = client.get_status("visits", "abc-123")

    args, kwargs = session.get.call_args
    assert args == ("https://x.test/visits/status",)
    assert kwargs["params"] == {"id": "abc-123"}
    assert result["response"] == {"status": "ACCEPTED"}


def test_retry_budget_covers_every_attempt_and_backoff(session):
    client = AggregatorClient("Sandata", "https://x.test", timeout=2, max_retries=3, backoff_factor=0.5,
                              session=session)

    # 4 attempts of 2s, then 0.5 + 1 + 2 of backoff
    assert client.retry_budget == pytest.approx(11.5)


def test_retry_budget_without_retries(session):
    client = AggregatorClient("Sandata", "https://x.test", timeout=2, max_retries=0, session=session)
    assert client.retry_budget == 2
