"""
Process configuration, read from the environment.

Environment variables:
    ANCHOR_DOMAIN         default counterparty (testanchor.stellar.org)
    NETWORK_PASSPHRASE    default network passphrase (testnet)
    HORIZON_URL           Horizon base URL for submissions and probes
    HTTP_TIMEOUT          seconds, bounds every network call (30)
    STATUS_POLL_INTERVAL  seconds between status snapshots (1.0)
    CONNECTIVITY_INTERVAL seconds between connectivity probes (5.0)
    COUNTERPARTIES_FILE   optional JSON counterparty table
    CLIENT_DOMAIN         domain announced for client-domain signing
    SIGNING_SECRET_KEY    identity signing seed, read lazily and never cached

The signing secret is not part of ``Settings``: it is read
at the moment a signature is needed, through
``stellar_submit.sep10.signer.load_signing_secret``.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

from stellar_sdk import Network

from stellar_submit.errors import ConfigurationError
from stellar_submit.sep10.counterparty import (
    BUILTIN_COUNTERPARTIES,
    CounterpartyRegistry,
    validate_table,
)

TESTNET_PASSPHRASE = Network.TESTNET_NETWORK_PASSPHRASE
DEFAULT_ANCHOR_DOMAIN = "testanchor.stellar.org"
DEFAULT_HORIZON_URL = "https://horizon-testnet.stellar.org"
DEFAULT_HTTP_TIMEOUT = 30.0
# Status polling cadence for UI layers watching a queued transaction.
STATUS_POLL_INTERVAL = 1.0
DEFAULT_CONNECTIVITY_INTERVAL = 5.0


@dataclass(frozen=True)
class Settings:
    """Resolved, immutable process settings."""

    anchor_domain: str = DEFAULT_ANCHOR_DOMAIN
    network_passphrase: str = TESTNET_PASSPHRASE
    horizon_url: str = DEFAULT_HORIZON_URL
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    status_poll_interval: float = STATUS_POLL_INTERVAL
    connectivity_interval: float = DEFAULT_CONNECTIVITY_INTERVAL
    client_domain: str | None = None
    counterparties: Mapping[str, Mapping[str, Any]] | None = None

    def registry(self) -> CounterpartyRegistry:
        return CounterpartyRegistry(self.counterparties, client_domain=self.client_domain)


def _float_env(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be a number, got: {raw!r}") from exc
    if value <= 0:
        raise ConfigurationError(f"{name} must be > 0, got: {value}")
    return value


def load_counterparty_table(path: str | Path) -> dict[str, Any]:
    """Load and validate a counterparty table file.

    The file's entries are merged over the built-in table.

    Raises:
        ConfigurationError: If the file is unreadable, not JSON, or invalid.
    """
    p = Path(path)
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot load counterparty table {p}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"counterparty table {p} must be a JSON object")
    validate_table(data)
    merged: dict[str, Any] = dict(BUILTIN_COUNTERPARTIES)
    merged.update(data)
    return merged


def load_settings(env: Mapping[str, str] | None = None) -> Settings:
    """Build Settings from environment variables.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Raises:
        ConfigurationError: On malformed values.
    """
    if env is None:
        env = os.environ

    counterparties = None
    table_path = env.get("COUNTERPARTIES_FILE")
    if table_path:
        counterparties = load_counterparty_table(table_path)

    return Settings(
        anchor_domain=env.get("ANCHOR_DOMAIN") or DEFAULT_ANCHOR_DOMAIN,
        network_passphrase=env.get("NETWORK_PASSPHRASE") or TESTNET_PASSPHRASE,
        horizon_url=(env.get("HORIZON_URL") or DEFAULT_HORIZON_URL).rstrip("/"),
        http_timeout=_float_env(env, "HTTP_TIMEOUT", DEFAULT_HTTP_TIMEOUT),
        status_poll_interval=_float_env(env, "STATUS_POLL_INTERVAL", STATUS_POLL_INTERVAL),
        connectivity_interval=_float_env(
            env, "CONNECTIVITY_INTERVAL", DEFAULT_CONNECTIVITY_INTERVAL
        ),
        client_domain=env.get("CLIENT_DOMAIN") or None,
        counterparties=counterparties,
    )

