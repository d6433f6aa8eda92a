"""Session token refresh against the Neon OAuth server."""

import time
from typing import Optional

import requests

from neonlocal.errors import TokenRefreshError
from neonlocal.models import SessionToken


class OAuthTokenRefresher:
    """Exchanges a refresh token for a new session token."""

    TOKEN_PATH = "/oauth2/token"

    def __init__(
        self,
        oauth_host: str,
        client_id: str,
        logger,
        timeout: float = 30.0,
        requests_module=requests,
    ):
        self.oauth_host = oauth_host.rstrip("/")
        self.client_id = client_id
        self.logger = logger
        self.timeout = timeout
        self.requests = requests_module

    def refresh(self, token: SessionToken) -> SessionToken:
        if not token.refresh_token:
            raise TokenRefreshError("No refresh token available.")

        url = f"{self.oauth_host}{self.TOKEN_PATH}"
        self.logger.debug("Refreshing session token at %s", url)
        try:
            response = self.requests.post(
                url,
                data={
                    "grant_type": "refresh_token",
                    "refresh_token": token.refresh_token,
                    "client_id": self.client_id,
                },
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            response.raise_for_status()
            payload = response.json()
        except self.requests.RequestException as exc:
            raise TokenRefreshError(f"Token refresh request failed: {exc}") from exc
        except ValueError as exc:
            raise TokenRefreshError(f"Token endpoint returned invalid JSON: {exc}") from exc

        if not isinstance(payload, dict) or not payload.get("access_token"):
            raise TokenRefreshError("Token endpoint response has no access_token.")

        return SessionToken(
            access_token=str(payload["access_token"]),
            refresh_token=str(payload.get("refresh_token") or token.refresh_token),
            expires_at=self._expires_at(payload),
        )

    @staticmethod
    def _expires_at(payload) -> Optional[float]:
        if payload.get("expires_at") is not None:
            try:
                return float(payload["expires_at"])
            except (TypeError, ValueError):
                return None
        if payload.get("expires_in") is not None:
            try:
                return time.time() + float(payload["expires_in"])
            except (TypeError, ValueError):
                return None
        return None
