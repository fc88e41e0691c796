"""Transport ladder: which failures advance a tier, headers per tier."""

import ssl
from unittest.mock import MagicMock

import pytest
import requests

from forever_paws.net.http_client import (
    HttpRequest,
    ResilientHttpClient,
    classify_transport_error,
)
from forever_paws.net.retry_policy import RetryPolicy
from forever_paws.net.tunnel import has_tunnel_interface
from forever_paws.utils.exceptions import NetworkError

URL = "https://gw.foreverpaws.test/api/auth/login"


def make_response(status, body=b"{}"):
    response = requests.Response()
    response.status_code = status
    response._content = body
    response.url = URL
    return response


class SessionFactory:
    """Hands out MagicMock sessions that share one scripted `request`."""

    def __init__(self, side_effect):
        self.request = MagicMock(side_effect=side_effect)
        self.created = []

    def __call__(self):
        session = MagicMock()
        session.request = self.request
        self.created.append(session)
        return session


def client_for(side_effect, tunnel=False):
    factory = SessionFactory(side_effect)
    client = ResilientHttpClient(
        policy=RetryPolicy.default(),
        tunnel_detector=lambda: tunnel,
        session_factory=factory,
    )
    return client, factory


def test_http_error_is_returned_after_one_attempt():
    client, factory = client_for([make_response(401, b'{"message": "bad"}')])

    response = client.execute(HttpRequest("POST", URL, json_body={"email": "a@pawmail.com"}))

    assert response.status_code == 401
    assert response.json() == {"message": "bad"}
    assert factory.request.call_count == 1


def test_server_error_is_not_retried():
    client, factory = client_for([make_response(503)])

    assert client.execute(HttpRequest("GET", URL)).status_code == 503
    assert factory.request.call_count == 1


def test_tls_failure_walks_all_three_tiers():
    client, factory = client_for(requests.exceptions.SSLError("handshake failure"))

    with pytest.raises(NetworkError) as info:
        client.execute(HttpRequest("GET", URL))

    assert info.value.kind == NetworkError.TLS_HANDSHAKE
    assert info.value.attempts == 3
    assert factory.request.call_count == 3
    timeouts = [c.kwargs["timeout"] for c in factory.request.call_args_list]
    assert timeouts == [30.0, 15.0, 60.0]


def test_timeout_then_success_uses_second_tier():
    client, factory = client_for([requests.exceptions.ConnectTimeout("slow"), make_response(200, b'{"ok": true}')])

    response = client.execute(HttpRequest("GET", URL))

    assert response.ok
    assert factory.request.call_count == 2
    assert factory.request.call_args_list[1].kwargs["timeout"] == 15.0


def test_conservative_tier_sends_close_and_no_cache_on_fresh_session():
    client, factory = client_for(
        [
            requests.exceptions.ConnectionError("refused"),
            requests.exceptions.ConnectionError("refused"),
            make_response(200),
        ]
    )

    client.execute(HttpRequest("GET", URL))

    first, _, last = factory.request.call_args_list
    assert first.kwargs["headers"]["Connection"] == "keep-alive"
    assert "Cache-Control" not in first.kwargs["headers"]
    assert last.kwargs["headers"]["Connection"] == "close"
    assert last.kwargs["headers"]["Cache-Control"] == "no-cache"
    # standard and tls-pinned are pooled, conservative is built per request
    assert len(factory.created) == 3
    factory.created[-1].close.assert_called_once()


def test_non_transport_error_is_not_retried():
    client, factory = client_for(requests.exceptions.InvalidURL("bad url"))

    with pytest.raises(NetworkError) as info:
        client.execute(HttpRequest("GET", "not a url"))

    assert info.value.kind == NetworkError.UNKNOWN
    assert factory.request.call_count == 1


def test_headers_bearer_apikey_and_tunnel():
    client, _ = client_for([])
    tier = client.policy.tier(1)

    headers = client.compose_headers(
        HttpRequest("GET", URL, api_key="anon"), tier, auth_token="tok", behind_tunnel=True
    )

    assert headers["Authorization"] == "Bearer tok"
    assert headers["apikey"] == "anon"
    assert headers["Connection"] == "close"
    assert headers["Content-Type"] == "application/json"
    assert headers["Accept-Encoding"] == "gzip, deflate"

    anonymous = client.compose_headers(HttpRequest("GET", URL, api_key="anon"), tier, None, False)
    assert anonymous["Authorization"] == "Bearer anon"
    assert anonymous["Connection"] == "keep-alive"


def test_default_policy_tiers():
    policy = RetryPolicy.default()

    assert [t.name for t in policy.tiers] == ["standard", "tls-pinned", "conservative"]
    assert policy.tier(2).tls_max == ssl.TLSVersion.TLSv1_2
    assert policy.tier(3).fresh_transport and policy.tier(3).pool_maxsize == 1


def test_classification():
    reset = requests.exceptions.ConnectionError(ConnectionResetError(104, "Connection reset by peer"))

    assert classify_transport_error(reset) == NetworkError.CONNECTION_RESET
    assert classify_transport_error(requests.exceptions.ConnectionError("Name or service not known")) == NetworkError.HOST_UNREACHABLE
    assert classify_transport_error(requests.exceptions.ReadTimeout()) == NetworkError.TIMEOUT
    assert classify_transport_error(requests.exceptions.InvalidHeader()) is None


@pytest.mark.parametrize(
    "names, expected",
    [
        (["lo", "eth0"], False),
        (["lo", "utun3"], True),
        (["wg0"], True),
        (["tailscale0"], True),
        (["en0", "ppp0"], True),
    ],
)
def test_tunnel_detection(names, expected):
    assert has_tunnel_interface(names) is expected
