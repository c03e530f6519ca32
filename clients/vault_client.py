"""
HashiCorp Vault access for the billing service's secrets.

AppRole authentication, configured from the environment. Every path is
scoped under 'billing/' in the KV v2 mount, so the service cannot read
another application's secrets. A secret is read once per process and
cached as a whole; `clear_secret_cache()` forces a re-read after rotation.

Secrets used:
    billing/database  url
    billing/email     gateway_url, api_key, hmac_secret
"""

import os
import logging
from typing import Dict

import hvac
from hvac.exceptions import InvalidPath, Unauthorized, Forbidden

logger = logging.getLogger(__name__)

_SECRET_PREFIX = "billing"
_DEFAULT_MOUNT = "secret"

EMAIL_FIELDS = ("gateway_url", "api_key", "hmac_secret")

# Singleton instance and per-path secret cache
_vault_client_instance: "VaultClient | None" = None
_secret_cache: Dict[str, Dict[str, str]] = {}


def _ensure_vault_client() -> "VaultClient":
    global _vault_client_instance
    if _vault_client_instance is None:
        _vault_client_instance = VaultClient()
    return _vault_client_instance


class VaultError(PermissionError):
    """Secret unavailable. Fatal at startup: billing cannot run without its database and gateway."""


class VaultClient:
    """AppRole-authenticated reader for secrets under billing/."""

    def __init__(
        self,
        vault_addr: str | None = None,
        vault_namespace: str | None = None,
        mount_point: str | None = None,
    ):
        """Read connection settings from the environment. Fails fast on missing config."""
        self.vault_addr = vault_addr or os.getenv("VAULT_ADDR")
        self.vault_namespace = vault_namespace or os.getenv("VAULT_NAMESPACE")
        self.mount_point = mount_point or os.getenv("BILLING_VAULT_MOUNT", _DEFAULT_MOUNT)
        role_id = os.getenv("VAULT_ROLE_ID")
        secret_id = os.getenv("VAULT_SECRET_ID")

        if not self.vault_addr:
            raise ValueError("VAULT_ADDR environment variable is required")
        if not role_id or not secret_id:
            raise ValueError(
                "VAULT_ROLE_ID and VAULT_SECRET_ID environment variables are required"
            )

        client_kwargs = {"url": self.vault_addr}
        if self.vault_namespace:
            client_kwargs["namespace"] = self.vault_namespace
        self.client = hvac.Client(**client_kwargs)

        try:
            login = self.client.auth.approle.login(role_id=role_id, secret_id=secret_id)
            self.client.token = login["auth"]["client_token"]
        except Exception as e:
            logger.error(f"AppRole authentication failed: {e}")
            raise VaultError(f"AppRole authentication failed: {e}") from e

        if not self.client.is_authenticated():
            raise VaultError("Vault authentication failed")

        logger.info(f"Vault client initialized: {self.vault_addr} (mount {self.mount_point})")

    def read_secret(self, path: str) -> Dict[str, str]:
        """
        Read every field of billing/<path>.

        Raises:
            VaultError: Path missing or not accessible
        """
        full_path = f"{_SECRET_PREFIX}/{path}"

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=full_path,
                mount_point=self.mount_point,
                raise_on_deleted_version=True,
            )
        except InvalidPath as e:
            logger.error(f"Secret path not found: {full_path}")
            raise VaultError(f"Secret path '{full_path}' not found in Vault") from e
        except (Unauthorized, Forbidden) as e:
            logger.error(f"Access denied to secret {full_path}: {e}")
            raise VaultError(f"Access denied to secret '{full_path}': {e}") from e

        return response["data"]["data"]

    def get_secret(self, path: str, field: str) -> str:
        """
        Read one field of billing/<path>.

        Raises:
            VaultError: Path missing or not accessible
            KeyError: Field not in the secret
        """
        secret = self.read_secret(path)
        if field not in secret:
            raise KeyError(
                f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'. "
                f"Available: {', '.join(secret)}"
            )
        return secret[field]


# Convenience functions


def _cached_field(path: str, field: str) -> str:
    if path not in _secret_cache:
        _secret_cache[path] = _ensure_vault_client().read_secret(path)

    secret = _secret_cache[path]
    if field not in secret:
        raise KeyError(f"Field '{field}' not found in secret '{_SECRET_PREFIX}/{path}'")
    return secret[field]


def get_database_url() -> str:
    """PostgreSQL connection URL."""
    return _cached_field("database", "url")


def get_email_config() -> Dict[str, str]:
    """Email gateway settings, as keyword arguments for EmailGatewayClient."""
    return {field: _cached_field("email", field) for field in EMAIL_FIELDS}


def clear_secret_cache() -> None:
    """Forget cached secrets, e.g. after a credential rotation."""
    _secret_cache.clear()
