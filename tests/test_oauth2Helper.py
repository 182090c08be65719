import threading
from urllib.parse import parse_qs, urlparse

import pytest
import requests
from conftest import FakeResponse, FakeSession

from malScrobbler.oauth2Helper import OAuth2FlowError, OAuth2Helper

TOKEN_URL = "https://example.invalid/token"


def make_helper(session=None):
    return OAuth2Helper("client-id", "https://example.invalid/authorize", TOKEN_URL, session or FakeSession())


def test_auth_url_uses_plain_pkce():
    url = make_helper().build_auth_url("http://localhost:12177/", "state-1", "verifier-1")
    params = parse_qs(urlparse(url).query)
    assert params["code_challenge"] == ["verifier-1"]
    assert params["code_challenge_method"] == ["plain"]
    assert params["state"] == ["state-1"]
    assert params["client_id"] == ["client-id"]
    assert params["redirect_uri"] == ["http://localhost:12177/"]


def test_code_verifier_length():
    assert 43 <= len(OAuth2Helper.new_code_verifier()) <= 128


def test_refresh_token():
    session = FakeSession()
    session.post_responses.append(FakeResponse(200, {"access_token": "a", "refresh_token": "r"}))

    token = make_helper(session).refresh_token("old")

    assert (token.access_token, token.refresh_token) == ("a", "r")
    assert session.posts[0]["url"] == TOKEN_URL
    assert session.posts[0]["data"] == {"client_id": "client-id", "grant_type": "refresh_token", "refresh_token": "old"}


def test_refresh_without_token():
    with pytest.raises(OAuth2FlowError):
        make_helper().refresh_token("")


@pytest.mark.parametrize(
    "response",
    [FakeResponse(401, text="invalid"), FakeResponse(200, {"token_type": "Bearer"}), FakeResponse(200, None)],
)
def test_bad_token_responses(response):
    session = FakeSession()
    session.post_responses.append(response)
    with pytest.raises(OAuth2FlowError):
        make_helper(session).refresh_token("old")


def test_token_request_network_error():
    session = FakeSession()
    session.post_responses.append(requests.ConnectionError("offline"))
    with pytest.raises(OAuth2FlowError):
        make_helper(session).refresh_token("old")


def test_code_receiver_exchanges_code():
    session = FakeSession()
    session.post_responses.append(FakeResponse(200, {"access_token": "a", "refresh_token": "r"}))
    receiver = make_helper(session).start_auth(ports=(0,))
    port = receiver.server.server_address[1]

    def redirect():
        requests.get(f"http://127.0.0.1:{port}/favicon.ico", timeout=5)
        requests.get(f"http://127.0.0.1:{port}/?code=the-code&state={receiver.state}", timeout=5)

    thread = threading.Thread(target=redirect)
    thread.start()
    token = receiver.wait_for_code(timeout=5)
    thread.join()

    assert token.access_token == "a"
    assert session.posts[0]["data"]["code"] == "the-code"
    assert session.posts[0]["data"]["code_verifier"] == receiver.verifier


def test_code_receiver_rejects_wrong_state():
    receiver = make_helper().start_auth(ports=(0,))
    port = receiver.server.server_address[1]

    thread = threading.Thread(
        target=lambda: requests.get(f"http://127.0.0.1:{port}/?code=c&state=wrong", timeout=5)
    )
    thread.start()
    with pytest.raises(OAuth2FlowError, match="verification failed"):
        receiver.wait_for_code(timeout=5)
    thread.join()
