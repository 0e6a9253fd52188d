"""
Credential storage backed by the OS keyring.

Secrets (Bitbucket app passwords / API tokens) are keyed by username under a
fixed service name and never written to the TOML config files.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .errors import AuthError, CredentialNotFoundError


KEYRING_SERVICE_NAME = "bbscope"

logger = logging.getLogger(__name__)


class KeyringBackend(Protocol):
    def get_password(self, service_name: str, username: str) -> str | None: ...
    def set_password(self, service_name: str, username: str, password: str) -> None: ...
    def delete_password(self, service_name: str, username: str) -> None: ...


class CredentialStore:
    """save/get/delete of secrets keyed by username."""

    def __init__(self, service: str = KEYRING_SERVICE_NAME, backend: KeyringBackend | Any = keyring):
        self.service = service
        self.backend = backend

    def save(self, username: str, secret: str) -> None:
        try:
            self.backend.set_password(self.service, username, secret)
        except KeyringError as e:
            raise AuthError(f"Failed to save credentials for '{username}' to keyring") from e
        logger.debug("Saved credentials for %s", username)

    def get(self, username: str) -> str:
        try:
            secret = self.backend.get_password(self.service, username)
        except KeyringError as e:
            raise AuthError(f"Failed to read credentials for '{username}' from keyring") from e
        if secret is None:
            raise CredentialNotFoundError(username)
        return secret

    def delete(self, username: str) -> None:
        try:
            self.backend.delete_password(self.service, username)
        except PasswordDeleteError as e:
            raise CredentialNotFoundError(username) from e
        except KeyringError as e:
            raise AuthError(f"Failed to delete credentials for '{username}' from keyring") from e
        logger.debug("Deleted credentials for %s", username)


def verify_and_save(client: Any, store: CredentialStore, username: str, secret: str) -> Any:
    """
    Verify credentials against the API, then persist them.

    ``client`` must already be configured with (username, secret). Nothing is
    stored if the verification call raises. Returns the authenticated user.
    """
    user = client.get_current_user()
    store.save(username, secret)
    return user
