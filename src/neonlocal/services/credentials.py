"""Credential resolution for the proxy container and its image pulls."""

import base64
import binascii
import json
import os
import time
from typing import Callable, Optional

from neonlocal.constants import TOKEN_REFRESH_BUFFER_SECONDS
from neonlocal.errors import AuthExpired, AuthRequired, ProxyError, TokenRefreshError
from neonlocal.errors_catalog import actionable_error
from neonlocal.models import Credential, PersistentToken, RegistryCredential, SessionToken
from neonlocal.services.secrets import SecretStore


class CredentialResolver:
    """Chooses between the persistent API token and the OAuth session token."""

    def __init__(
        self,
        secret_store: SecretStore,
        refresher,
        logger,
        clock: Callable[[], float] = time.time,
    ):
        self.secret_store = secret_store
        self.refresher = refresher
        self.logger = logger
        self.clock = clock

    def resolve(self, is_existing_branch: bool) -> Credential:
        persistent = self.secret_store.get(SecretStore.PERSISTENT_API_TOKEN)
        if persistent:
            self.logger.debug("Using persistent API token.")
            return PersistentToken(persistent)

        if not is_existing_branch:
            raise AuthRequired(actionable_error("persistent_token_required"))

        session = self._load_session()
        if session is None:
            raise AuthRequired(actionable_error("auth_required"))

        if self._is_fresh(session):
            self.logger.debug("Session token still valid, skipping refresh.")
            return session

        try:
            refreshed = self.refresher.refresh(session)
        except TokenRefreshError as exc:
            self.logger.warning("Token refresh failed, signing out: %s", exc)
            self.sign_out()
            raise AuthExpired(actionable_error("auth_expired")) from exc

        self._store_session(refreshed)
        self.logger.info("Session token refreshed.")
        return refreshed

    def has_credentials(self) -> bool:
        return bool(
            self.secret_store.get(SecretStore.PERSISTENT_API_TOKEN)
            or self.secret_store.get(SecretStore.ACCESS_TOKEN)
        )

    def set_persistent_token(self, token: str):
        token = token.strip()
        if not token:
            raise AuthRequired("API key must not be empty.")
        self.secret_store.set(SecretStore.PERSISTENT_API_TOKEN, token)

    def sign_out(self):
        self.secret_store.delete(
            SecretStore.ACCESS_TOKEN,
            SecretStore.REFRESH_TOKEN,
            SecretStore.EXPIRES_AT,
        )

    def _load_session(self) -> Optional[SessionToken]:
        access_token = self.secret_store.get(SecretStore.ACCESS_TOKEN)
        if not access_token:
            return None

        expires_at = None
        raw_expiry = self.secret_store.get(SecretStore.EXPIRES_AT)
        if raw_expiry:
            try:
                expires_at = float(raw_expiry)
            except ValueError:
                self.logger.debug("Ignoring malformed token expiry: %r", raw_expiry)

        return SessionToken(
            access_token=access_token,
            refresh_token=self.secret_store.get(SecretStore.REFRESH_TOKEN),
            expires_at=expires_at,
        )

    def _store_session(self, session: SessionToken):
        self.secret_store.set(SecretStore.ACCESS_TOKEN, session.access_token)
        self.secret_store.set(SecretStore.REFRESH_TOKEN, session.refresh_token)
        self.secret_store.set(
            SecretStore.EXPIRES_AT,
            str(session.expires_at) if session.expires_at is not None else None,
        )

    def _is_fresh(self, session: SessionToken) -> bool:
        if session.expires_at is None:
            return False
        return session.expires_at - self.clock() > TOKEN_REFRESH_BUFFER_SECONDS


class RegistryCredentialStore:
    """Reads Docker Hub credentials from the local docker CLI configuration."""

    REGISTRY_HOSTS = (
        "https://index.docker.io/v1/",
        "https://registry-1.docker.io",
        "registry-1.docker.io",
    )
    HELPER_REGISTRY_URL = "https://index.docker.io/v1/"

    def __init__(self, command_runner, logger, config_path: Optional[str] = None):
        self.command_runner = command_runner
        self.logger = logger
        self.config_path = config_path or self.default_config_path()

    @staticmethod
    def default_config_path() -> str:
        config_dir = os.environ.get("DOCKER_CONFIG") or os.path.join(
            os.path.expanduser("~"), ".docker"
        )
        return os.path.join(config_dir, "config.json")

    def resolve(self) -> Optional[RegistryCredential]:
        """Returns None when nothing usable is found; pulls then run anonymously."""
        if not os.path.exists(self.config_path):
            return None

        try:
            with open(self.config_path, "r", encoding="utf-8") as file_obj:
                config = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            self.logger.debug("Could not read docker config %s: %s", self.config_path, exc)
            return None
        if not isinstance(config, dict):
            return None

        credential = self._from_inline_auths(config.get("auths"))
        if credential:
            return credential

        creds_store = config.get("credsStore")
        if isinstance(creds_store, str) and creds_store:
            credential = self._from_helper(creds_store)
            if credential:
                return credential

        cred_helpers = config.get("credHelpers")
        if isinstance(cred_helpers, dict):
            helper = cred_helpers.get(self.HELPER_REGISTRY_URL) or cred_helpers.get(
                "registry-1.docker.io"
            )
            if isinstance(helper, str) and helper:
                return self._from_helper(helper)

        return None

    def _from_inline_auths(self, auths) -> Optional[RegistryCredential]:
        if not isinstance(auths, dict):
            return None

        for host in self.REGISTRY_HOSTS:
            entry = auths.get(host)
            if not isinstance(entry, dict) or not entry.get("auth"):
                continue
            try:
                decoded = base64.b64decode(entry["auth"]).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError, ValueError) as exc:
                self.logger.debug("Skipping malformed auth entry for %s: %s", host, exc)
                continue
            username, _, secret = decoded.partition(":")
            if username and secret:
                return RegistryCredential(username=username, secret=secret)
        return None

    def _from_helper(self, helper_name: str) -> Optional[RegistryCredential]:
        helper_cmd = f"docker-credential-{helper_name}"
        try:
            result = self.command_runner.run(
                [helper_cmd, "get"],
                check=False,
                capture_output=True,
                timeout=10,
                input_text=f"{self.HELPER_REGISTRY_URL}\n",
                log_output=False,
            )
        except ProxyError as exc:
            self.logger.debug("Credential helper %s unavailable: %s", helper_cmd, exc)
            return None

        if result.returncode != 0:
            self.logger.debug("Credential helper %s returned %s", helper_cmd, result.returncode)
            return None

        try:
            payload = json.loads(result.stdout or "")
        except json.JSONDecodeError:
            self.logger.debug("Credential helper %s printed invalid JSON", helper_cmd)
            return None

        if isinstance(payload, dict) and payload.get("Username") and payload.get("Secret"):
            return RegistryCredential(username=payload["Username"], secret=payload["Secret"])
        return None
