"""
OAuth2 authorization code flow with PKCE, receiving the code on a local HTTP server.
"""

import logging
import secrets
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, HTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlencode, urlparse

import requests

logger = logging.getLogger(__name__)

# Ports the redirect URL may point at. The first free one is used.
REDIRECT_PORTS: tuple[int, ...] = (12177, 13326, 16474, 22626, 22823, 29728, 32600, 41100, 45186, 63355)

AUTH_TIMEOUT: int = 300

SUCCESS_PAGE: bytes = b"<html><body><h1>Signed in</h1><p>You can close this window now.</p></body></html>"
FAILURE_PAGE: bytes = b"<html><body><h1>Sign in failed</h1><p>Please try again.</p></body></html>"


class OAuth2FlowError(Exception):
    """Raised when the OAuth2 flow fails at any step."""


@dataclass
class OAuth2Token:
    access_token: str
    refresh_token: Optional[str]

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "OAuth2Token":
        if "access_token" not in data:
            raise OAuth2FlowError(f"Token response has no access token: {data}")
        return cls(data["access_token"], data.get("refresh_token"))


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# CODE RECEIVER
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class _CodeRequestHandler(BaseHTTPRequestHandler):
    def do_GET(self) -> None:  # noqa: N802
        params = parse_qs(urlparse(self.path).query)
        self.server.received_params = {k: v[0] for k, v in params.items()}  # type: ignore[attr-defined]
        ok = "code" in params
        self.send_response(200 if ok else 400)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(SUCCESS_PAGE if ok else FAILURE_PAGE)

    def log_message(self, format: str, *args: Any) -> None:
        logger.debug("OAuth2 receiver: " + format, *args)


class OAuth2CodeReceiver:
    """Waits for the authorization server to redirect the browser back with a code."""

    def __init__(self, helper: "OAuth2Helper", server: HTTPServer, redirect_url: str, state: str, verifier: str):
        self.helper = helper
        self.server = server
        self.redirect_url = redirect_url
        self.state = state
        self.verifier = verifier
        self.auth_url = helper.build_auth_url(redirect_url, state, verifier)

    def wait_for_code(self, timeout: int = AUTH_TIMEOUT) -> OAuth2Token:
        """
        Serve redirect requests until one carries a code, then exchange it for a token.

        Args:
            timeout (int): Seconds to wait for each request.

        Returns:
            OAuth2Token: The received token.

        Raises:
            OAuth2FlowError: On timeout, state mismatch, or a failed exchange.
        """
        self.server.timeout = timeout
        try:
            while True:
                self.server.received_params = None  # type: ignore[attr-defined]
                self.server.handle_request()
                params = self.server.received_params  # type: ignore[attr-defined]
                if params is None:
                    raise OAuth2FlowError("Timed out waiting for the OAuth2 redirect")
                if "code" in params:
                    break
                if "error" in params:
                    raise OAuth2FlowError(f"Authorization denied: {params['error']}")
        finally:
            self.server.server_close()

        if params.get("state") != self.state:
            raise OAuth2FlowError("OAuth2 code verification failed")

        return self.helper.exchange_code(params["code"], self.redirect_url, self.verifier)


# ═══════════════════════════════════════════════════════════════════════════════════════════════════════
# HELPER
# ═══════════════════════════════════════════════════════════════════════════════════════════════════════


class OAuth2Helper:
    """PKCE (plain) OAuth2 client for a public client ID."""

    def __init__(self, client_id: str, auth_url: str, token_url: str, session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.auth_url = auth_url
        self.token_url = token_url
        self.session = session or requests.Session()

    @staticmethod
    def new_code_verifier() -> str:
        # 96 url-safe characters, within the 43-128 range PKCE allows
        return secrets.token_urlsafe(72)

    def build_auth_url(self, redirect_url: str, state: str, verifier: str) -> str:
        # With the "plain" method the challenge is the verifier itself
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": redirect_url,
            "state": state,
            "code_challenge": verifier,
            "code_challenge_method": "plain",
        }
        return f"{self.auth_url}?{urlencode(params)}"

    def start_auth(self, ports: tuple[int, ...] = REDIRECT_PORTS) -> OAuth2CodeReceiver:
        """
        Start the local redirect receiver.

        Returns:
            OAuth2CodeReceiver: Receiver with the URL to open in a browser.

        Raises:
            OAuth2FlowError: If none of the ports can be bound.
        """
        for port in ports:
            try:
                server = HTTPServer(("127.0.0.1", port), _CodeRequestHandler)
            except OSError as e:
                logger.debug("Port %d unavailable: %s", port, e)
                continue
            redirect_url = f"http://localhost:{port}/"
            return OAuth2CodeReceiver(self, server, redirect_url, secrets.token_urlsafe(16), self.new_code_verifier())

        raise OAuth2FlowError(f"Could not start OAuth2 code receiver server on any of ports {ports}")

    def exchange_code(self, code: str, redirect_url: str, verifier: str) -> OAuth2Token:
        return self._token_request(
            {
                "client_id": self.client_id,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_url,
                "code_verifier": verifier,
            }
        )

    def refresh_token(self, refresh_token: str) -> OAuth2Token:
        if not refresh_token:
            raise OAuth2FlowError("No refresh token available, please sign in again")
        return self._token_request(
            {"client_id": self.client_id, "grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    def _token_request(self, data: dict[str, str]) -> OAuth2Token:
        try:
            response = self.session.post(self.token_url, data=data, timeout=10)
        except requests.RequestException as e:
            raise OAuth2FlowError(f"OAuth2 request error: {e}") from e

        if response.status_code != 200:
            raise OAuth2FlowError(f"OAuth2 request error: {response.status_code} - {response.text}")
        try:
            return OAuth2Token.from_json(response.json())
        except ValueError as e:
            raise OAuth2FlowError(f"OAuth2 request error: invalid token response: {e}") from e
