"""
Vault Client Utility for Replica Reconciliation

Retrieves node connection credentials from HashiCorp Vault so DSNs with
passwords never need to live in the merge configuration file.
"""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

import hvac
from hvac.exceptions import InvalidPath, VaultError
from psycopg2.extensions import make_dsn

logger = logging.getLogger(__name__)

NODE_SECRET_PATHS = {
    "a": "steep-node-a-credentials",
    "b": "steep-node-b-credentials",
}

_DSN_KEYS = ("host", "port", "dbname", "user", "password", "sslmode")


@dataclass
class HealthStatus:
    """
    Structured health status for Vault client.

    Attributes:
        healthy: Overall health status (True if healthy)
        authenticated: Whether client is authenticated
        sealed: Whether Vault is sealed
        error: Error message if health check failed
    """

    healthy: bool
    authenticated: bool
    sealed: bool
    error: Optional[str] = None

    def __bool__(self) -> bool:
        return self.healthy


class VaultClient:
    """
    Client for reading node credentials from a KV v2 secrets engine.

    Each node's secret holds libpq connection parameters
    (host, port, dbname, user, password and optionally sslmode).
    """

    def __init__(
        self,
        vault_url: Optional[str] = None,
        vault_token: Optional[str] = None,
        verify_ssl: bool = True,
        mount_point: str = "secret",
        secret_paths: Optional[Dict[str, str]] = None
    ):
        """
        Initialize Vault client.

        Args:
            vault_url: Vault server URL (defaults to VAULT_ADDR env var)
            vault_token: Vault authentication token (defaults to VAULT_TOKEN env var)
            verify_ssl: Whether to verify SSL certificates
            mount_point: KV secrets engine mount point
            secret_paths: Node label ("a"/"b") → secret path overrides

        Raises:
            ValueError: If the URL or token is missing
            VaultError: If authentication fails
        """
        self.vault_url = vault_url or os.getenv("VAULT_ADDR")
        self.vault_token = vault_token or os.getenv("VAULT_TOKEN")
        self.mount_point = mount_point
        self.secret_paths = dict(NODE_SECRET_PATHS)
        self.secret_paths.update(secret_paths or {})

        if not self.vault_url:
            raise ValueError("Vault URL must be provided via parameter or VAULT_ADDR environment variable")

        if not self.vault_token:
            raise ValueError("Vault token must be provided via parameter or VAULT_TOKEN environment variable")

        self.client = hvac.Client(
            url=self.vault_url,
            token=self.vault_token,
            verify=verify_ssl
        )

        if not self.client.is_authenticated():
            logger.error(f"Failed to authenticate with Vault at {self.vault_url}")
            raise VaultError("Failed to authenticate with Vault")

        logger.info(f"Successfully connected to Vault at {self.vault_url}")

    def get_secret(self, path: str) -> Dict[str, Any]:
        """
        Retrieve a secret from Vault.

        Args:
            path: Secret path relative to the mount point

        Returns:
            Dictionary containing secret data

        Raises:
            InvalidPath: If secret path does not exist
            VaultError: If retrieval fails
        """
        logger.debug(f"Retrieving secret from path: {self.mount_point}/data/{path}")

        try:
            response = self.client.secrets.kv.v2.read_secret_version(
                path=path,
                mount_point=self.mount_point
            )
        except InvalidPath:
            logger.error(f"Secret not found at path: {path}")
            raise
        except VaultError as e:
            logger.error(f"Failed to retrieve secret from {path}: {e}")
            raise

        if not response or "data" not in response:
            raise InvalidPath(f"No data found at path: {path}")

        return response["data"].get("data", {})

    def get_node_credentials(self, node: str) -> Dict[str, Any]:
        """
        Retrieve connection parameters for one node.

        Args:
            node: Node label, "a" or "b"

        Returns:
            Connection parameters stored for the node

        Raises:
            ValueError: If the node label is unknown
        """
        node = node.lower()
        if node not in self.secret_paths:
            raise ValueError(f"Invalid node: {node}. Must be one of {sorted(self.secret_paths)}")

        credentials = self.get_secret(self.secret_paths[node])
        logger.info(f"Retrieved credentials for node {node.upper()}")
        return credentials

    def get_node_dsn(self, node: str) -> str:
        """Build a libpq connection string from a node's stored credentials."""
        credentials = self.get_node_credentials(node)
        params = {k: credentials[k] for k in _DSN_KEYS if credentials.get(k) is not None}
        return make_dsn(**params)

    def health_check(self) -> HealthStatus:
        """
        Check if Vault is accessible, authenticated and unsealed.

        Returns:
            HealthStatus; truthy when healthy
        """
        try:
            if not self.client.is_authenticated():
                logger.warning("Vault authentication check failed")
                return HealthStatus(healthy=False, authenticated=False, sealed=True, error="Not authenticated")

            health = self.client.sys.read_health_status(method="GET")
            is_sealed = health.get("sealed", True) if isinstance(health, dict) else True

        except (VaultError, OSError) as e:
            logger.error(f"Vault health check failed: {e}")
            return HealthStatus(healthy=False, authenticated=False, sealed=True, error=str(e))

        if is_sealed:
            logger.warning("Vault is sealed")
            return HealthStatus(healthy=False, authenticated=True, sealed=True, error="Vault is sealed")

        return HealthStatus(healthy=True, authenticated=True, sealed=False)

    def close(self):
        self.client = None
        logger.debug("Vault client closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
