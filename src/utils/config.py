"""
Configuration Loader for Replica Reconciliation

Reads merge settings from a YAML file and applies STEEP_MERGE_* environment
overrides on top. Environment values always win over the file.

Example file:

    nodes:
      a: {dsn: "host=node-a dbname=app user=merge"}
      b: {dsn: "host=node-b dbname=app user=merge"}
    merge:
      strategy: last-modified
      fetch_timeout: 300
      statement_timeout_ms: 600000
      timestamp_columns: [updated_at, modified_at]
      ignore_columns: [sync_version]
    reports:
      dir: .merge_reports
    monitoring:
      metrics_port: 9090
      webhook_url: https://hooks.example.com/merge
    vault:
      enabled: false
      mount_point: secret
"""

import logging
import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import yaml

from src.merge.models import ConflictStrategy
from src.merge.report_store import DEFAULT_REPORT_DIR
from src.merge.resolver import DEFAULT_TIMESTAMP_COLUMNS

logger = logging.getLogger(__name__)

ENV_PREFIX = "STEEP_MERGE_"


class ConfigurationError(ValueError):
    """Raised when merge settings are missing or malformed."""


@dataclass
class VaultSettings:
    enabled: bool = False
    url: Optional[str] = None
    mount_point: str = "secret"
    verify_ssl: bool = True
    node_a_path: Optional[str] = None
    node_b_path: Optional[str] = None


@dataclass
class MergeSettings:
    """Resolved settings for one invocation of the merge tool."""

    node_a_dsn: Optional[str] = None
    node_b_dsn: Optional[str] = None
    strategy: ConflictStrategy = ConflictStrategy.LAST_MODIFIED
    fetch_timeout: Optional[float] = None
    statement_timeout_ms: Optional[int] = None
    report_dir: str = DEFAULT_REPORT_DIR
    metrics_port: Optional[int] = None
    webhook_url: Optional[str] = None
    timestamp_columns: List[str] = field(default_factory=lambda: list(DEFAULT_TIMESTAMP_COLUMNS))
    ignore_columns: List[str] = field(default_factory=list)
    vault: VaultSettings = field(default_factory=VaultSettings)


def load_settings(path: Optional[str] = None, env: Optional[Mapping[str, str]] = None) -> MergeSettings:
    """
    Load merge settings.

    Args:
        path: YAML file to read; skipped when None
        env: Environment to read overrides from (default: os.environ)

    Returns:
        MergeSettings

    Raises:
        ConfigurationError: If the file or a value cannot be interpreted
    """
    env = os.environ if env is None else env
    raw: Dict[str, Any] = {}

    if path:
        try:
            with open(path, 'r') as f:
                raw = yaml.safe_load(f) or {}
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigurationError(f"Config file {path} must contain a mapping")

        logger.debug(f"Loaded config file {path}")

    nodes = _section(raw, "nodes")
    merge = _section(raw, "merge")
    reports = _section(raw, "reports")
    monitoring = _section(raw, "monitoring")
    vault = _section(raw, "vault")

    settings = MergeSettings(
        node_a_dsn=_section(nodes, "a").get("dsn"),
        node_b_dsn=_section(nodes, "b").get("dsn"),
        strategy=_strategy(merge.get("strategy", ConflictStrategy.LAST_MODIFIED.value)),
        fetch_timeout=_optional_float(merge.get("fetch_timeout"), "merge.fetch_timeout"),
        statement_timeout_ms=_optional_int(merge.get("statement_timeout_ms"), "merge.statement_timeout_ms"),
        report_dir=reports.get("dir", DEFAULT_REPORT_DIR),
        metrics_port=_optional_int(monitoring.get("metrics_port"), "monitoring.metrics_port"),
        webhook_url=monitoring.get("webhook_url"),
        timestamp_columns=_column_list(
            merge.get("timestamp_columns"),
            list(DEFAULT_TIMESTAMP_COLUMNS),
            "merge.timestamp_columns",
            allow_empty=False
        ),
        ignore_columns=_column_list(merge.get("ignore_columns"), [], "merge.ignore_columns"),
        vault=VaultSettings(
            enabled=bool(vault.get("enabled", False)),
            url=vault.get("url"),
            mount_point=vault.get("mount_point", "secret"),
            verify_ssl=bool(vault.get("verify_ssl", True)),
            node_a_path=vault.get("node_a_path"),
            node_b_path=vault.get("node_b_path"),
        ),
    )

    _apply_env_overrides(settings, env)
    return settings


def _apply_env_overrides(settings: MergeSettings, env: Mapping[str, str]) -> None:
    def get(name: str) -> Optional[str]:
        value = env.get(ENV_PREFIX + name)
        return value if value not in (None, "") else None

    if get("NODE_A_DSN"):
        settings.node_a_dsn = get("NODE_A_DSN")
    if get("NODE_B_DSN"):
        settings.node_b_dsn = get("NODE_B_DSN")
    if get("STRATEGY"):
        settings.strategy = _strategy(get("STRATEGY"))
    if get("FETCH_TIMEOUT"):
        settings.fetch_timeout = _optional_float(get("FETCH_TIMEOUT"), ENV_PREFIX + "FETCH_TIMEOUT")
    if get("STATEMENT_TIMEOUT_MS"):
        settings.statement_timeout_ms = _optional_int(get("STATEMENT_TIMEOUT_MS"), ENV_PREFIX + "STATEMENT_TIMEOUT_MS")
    if get("REPORT_DIR"):
        settings.report_dir = get("REPORT_DIR")
    if get("METRICS_PORT"):
        settings.metrics_port = _optional_int(get("METRICS_PORT"), ENV_PREFIX + "METRICS_PORT")
    if get("WEBHOOK_URL"):
        settings.webhook_url = get("WEBHOOK_URL")
    if get("TIMESTAMP_COLUMNS"):
        settings.timestamp_columns = _column_list(
            get("TIMESTAMP_COLUMNS"), [], ENV_PREFIX + "TIMESTAMP_COLUMNS", allow_empty=False
        )
    if get("IGNORE_COLUMNS"):
        settings.ignore_columns = _column_list(get("IGNORE_COLUMNS"), [], ENV_PREFIX + "IGNORE_COLUMNS")
    if get("VAULT_ENABLED"):
        settings.vault.enabled = get("VAULT_ENABLED").lower() in ("1", "true", "yes")


def _section(raw: Mapping[str, Any], name: str) -> Dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Config section '{name}' must be a mapping")
    return value


def _strategy(value: Any) -> ConflictStrategy:
    try:
        return ConflictStrategy(str(value).strip().lower())
    except ValueError:
        choices = ", ".join(s.value for s in ConflictStrategy)
        raise ConfigurationError(f"Unknown strategy {value!r}; expected one of {choices}") from None


def _optional_float(value: Any, name: str) -> Optional[float]:
    if value is None:
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be a number, got {value!r}") from None
    if result <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return result


def _optional_int(value: Any, name: str) -> Optional[int]:
    if value is None:
        return None
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
    if result <= 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return result


def _column_list(value: Any, default: List[str], name: str, allow_empty: bool = True) -> List[str]:
    if value is None:
        return default
    if isinstance(value, str):
        columns = [c.strip() for c in value.split(",") if c.strip()]
    elif isinstance(value, (list, tuple)):
        columns = [str(c).strip() for c in value if str(c).strip()]
    else:
        raise ConfigurationError(f"{name}: expected a list of column names, got {value!r}")

    if not columns and not allow_empty:
        raise ConfigurationError(f"{name} must name at least one column, got {value!r}")
    return columns
