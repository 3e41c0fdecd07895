"""OpenID Connect authorization-code flow against the configured provider."""

import logging
import threading
import time
from urllib.parse import urlencode

import httpx

from drivingschool.core import config

logger = logging.getLogger(__name__)


class OidcError(Exception):
    """Raised when the identity provider cannot be reached or rejects a request."""


class OidcClient:
    def __init__(
        self,
        issuer_url: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        client: httpx.Client | None = None,
    ):
        self.issuer_url = (issuer_url or config.OIDC_ISSUER_URL).rstrip("/")
        self.client_id = client_id or config.OIDC_CLIENT_ID
        self.client_secret = client_secret or config.OIDC_CLIENT_SECRET
        self.redirect_uri = redirect_uri or config.OIDC_REDIRECT_URI
        self._client = client or httpx.Client(timeout=config.HTTP_TIMEOUT_SECONDS, follow_redirects=True)
        self._metadata: dict | None = None
        self._metadata_fetched_at = 0.0
        self._lock = threading.Lock()

    def get_metadata(self) -> dict:
        """Return the provider's discovery document, cached for OIDC_DISCOVERY_TTL_SECONDS."""
        with self._lock:
            age = time.monotonic() - self._metadata_fetched_at
            if self._metadata is not None and age < config.OIDC_DISCOVERY_TTL_SECONDS:
                return self._metadata

            url = f"{self.issuer_url}/.well-known/openid-configuration"
            try:
                response = self._client.get(url)
                response.raise_for_status()
                metadata = response.json()
            except (httpx.HTTPError, ValueError) as exc:
                logger.exception("OIDC discovery failed for %s", self.issuer_url)
                raise OidcError("Identity provider discovery failed.") from exc

            if "authorization_endpoint" not in metadata or "token_endpoint" not in metadata:
                raise OidcError("Identity provider discovery document is incomplete.")

            self._metadata = metadata
            self._metadata_fetched_at = time.monotonic()
            return metadata

    def build_authorize_url(self, state: str, nonce: str) -> str:
        metadata = self.get_metadata()
        query = urlencode({
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": config.OIDC_SCOPES,
            "state": state,
            "nonce": nonce,
            "prompt": "login consent",
        })
        return f"{metadata['authorization_endpoint']}?{query}"

    def exchange_code(self, code: str) -> dict:
        metadata = self.get_metadata()
        try:
            response = self._client.post(
                metadata["token_endpoint"],
                data={
                    "grant_type": "authorization_code",
                    "code": code,
                    "redirect_uri": self.redirect_uri,
                    "client_id": self.client_id,
                    "client_secret": self.client_secret,
                },
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            tokens = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("OIDC code exchange failed")
            raise OidcError("Authorization code exchange failed.") from exc

        if not tokens.get("access_token"):
            raise OidcError("Token response did not include an access token.")
        return tokens

    def fetch_userinfo(self, access_token: str) -> dict:
        metadata = self.get_metadata()
        endpoint = metadata.get("userinfo_endpoint")
        if not endpoint:
            raise OidcError("Identity provider does not expose a userinfo endpoint.")
        try:
            response = self._client.get(endpoint, headers={"Authorization": f"Bearer {access_token}"})
            response.raise_for_status()
            return response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.exception("OIDC userinfo request failed")
            raise OidcError("Could not load the user profile from the identity provider.") from exc

    def build_end_session_url(self, post_logout_redirect_uri: str | None = None) -> str | None:
        endpoint = self.get_metadata().get("end_session_endpoint")
        if not endpoint:
            return None
        params = {"client_id": self.client_id}
        if post_logout_redirect_uri:
            params["post_logout_redirect_uri"] = post_logout_redirect_uri
        return f"{endpoint}?{urlencode(params)}"


_client: OidcClient | None = None


def get_oidc_client() -> OidcClient:
    global _client
    if _client is None:
        _client = OidcClient()
    return _client
