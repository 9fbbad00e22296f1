"""
Counterparty registry: per-anchor handshake policy, resolved by lookup.

Each anchor we authenticate against has its own:
    - base URL,
    - auth path (anchors expose SEP-10 at different paths),
    - whether the challenge needs a second, client-domain signature,
    - optional client domain to announce when fetching the challenge,
    - optional network passphrase override.

The signing branch in the authenticator reads ``requires_client_signature``
from here. Adding a partner is a configuration change, not a code change.

Table format (JSON, validated against ``COUNTERPARTY_SCHEMA``)::

    {
        "extstellar.moneygram.com": {
            "base_url": "https://extstellar.moneygram.com",
            "auth_path": "/stellaradapterservice/auth",
            "requires_client_signature": true
        }
    }

Unknown counterparties resolve to ``https://{id}`` + ``/auth`` with a
single signature.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterator, Mapping
from urllib.parse import urlencode

import jsonschema  # type: ignore[import-untyped]

from stellar_submit.errors import ConfigurationError

DEFAULT_AUTH_PATH = "/auth"

COUNTERPARTY_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": {
        "type": "object",
        "properties": {
            "base_url": {"type": "string", "pattern": "^https?://"},
            "auth_path": {"type": "string", "pattern": "^/"},
            "requires_client_signature": {"type": "boolean"},
            "client_domain": {"type": "string", "minLength": 1},
            "network_passphrase": {"type": "string", "minLength": 1},
        },
        "additionalProperties": False,
    },
}


@dataclass(frozen=True)
class CounterpartyPolicy:
    """Handshake policy for one anchor.

    Attributes:
        counterparty_id: Anchor identifier (its home domain).
        base_url: Scheme + host, no trailing slash.
        auth_path: Path of the SEP-10 endpoint, leading slash.
        requires_client_signature: Append the client-domain identity
            signature before submitting the challenge.
        client_domain: Domain announced in the challenge request when the
            identity signature is required.
        network_passphrase: Overrides the process default when set.
    """

    counterparty_id: str
    base_url: str
    auth_path: str = DEFAULT_AUTH_PATH
    requires_client_signature: bool = False
    client_domain: str | None = None
    network_passphrase: str | None = None

    @property
    def auth_url(self) -> str:
        return f"{self.base_url}{self.auth_path}"

    def challenge_url(self, account: str) -> str:
        params = {"account": account}
        if self.requires_client_signature and self.client_domain:
            params["client_domain"] = self.client_domain
        return f"{self.auth_url}?{urlencode(params)}"

    @classmethod
    def from_dict(cls, counterparty_id: str, data: Mapping[str, Any]) -> "CounterpartyPolicy":
        base_url = data.get("base_url") or f"https://{counterparty_id}"
        return cls(
            counterparty_id=counterparty_id,
            base_url=base_url.rstrip("/"),
            auth_path=data.get("auth_path", DEFAULT_AUTH_PATH),
            requires_client_signature=bool(data.get("requires_client_signature", False)),
            client_domain=data.get("client_domain"),
            network_passphrase=data.get("network_passphrase"),
        )


# Partners known at build time. Extended or overridden by COUNTERPARTIES_FILE.
BUILTIN_COUNTERPARTIES: dict[str, dict[str, Any]] = {
    "testanchor.stellar.org": {
        "base_url": "https://testanchor.stellar.org",
        "auth_path": "/auth",
    },
    "extstellar.moneygram.com": {
        "base_url": "https://extstellar.moneygram.com",
        "auth_path": "/stellaradapterservice/auth",
        "requires_client_signature": True,
    },
}


def validate_table(table: Mapping[str, Any]) -> None:
    """Validate a counterparty table.

    Raises:
        ConfigurationError: If the table does not match COUNTERPARTY_SCHEMA.
    """
    try:
        jsonschema.validate(instance=dict(table), schema=COUNTERPARTY_SCHEMA)
    except jsonschema.ValidationError as exc:
        path = "/".join(str(p) for p in exc.absolute_path) or "<root>"
        raise ConfigurationError(
            f"invalid counterparty table at {path}: {exc.message}",
            details={"path": path},
        ) from exc


class CounterpartyRegistry:
    """Lookup table of counterparty policies.

    Args:
        table: Mapping of counterparty id → policy dict. Validated on load.
        client_domain: Default client domain applied to policies that
            require the identity signature but don't name one.
    """

    def __init__(
        self,
        table: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        client_domain: str | None = None,
    ) -> None:
        raw = dict(BUILTIN_COUNTERPARTIES if table is None else table)
        validate_table(raw)
        self._policies: dict[str, CounterpartyPolicy] = {}
        for counterparty_id, data in raw.items():
            policy = CounterpartyPolicy.from_dict(counterparty_id, data)
            if policy.requires_client_signature and policy.client_domain is None and client_domain:
                policy = CounterpartyPolicy(
                    counterparty_id=policy.counterparty_id,
                    base_url=policy.base_url,
                    auth_path=policy.auth_path,
                    requires_client_signature=True,
                    client_domain=client_domain,
                    network_passphrase=policy.network_passphrase,
                )
            self._policies[counterparty_id] = policy

    def resolve(self, counterparty_id: str) -> CounterpartyPolicy:
        """Return the policy for a counterparty.

        Unknown ids get the default single-signature policy at
        ``https://{counterparty_id}/auth``.

        Raises:
            ValueError: If counterparty_id is empty.
        """
        if not counterparty_id:
            raise ValueError("counterparty_id is required")
        policy = self._policies.get(counterparty_id)
        if policy is None:
            return CounterpartyPolicy.from_dict(counterparty_id, {})
        return policy

    def requires_client_signature(self, counterparty_id: str) -> bool:
        return self.resolve(counterparty_id).requires_client_signature

    def __contains__(self, counterparty_id: object) -> bool:
        return counterparty_id in self._policies

    def __iter__(self) -> Iterator[CounterpartyPolicy]:
        return iter(self._policies.values())

    def __len__(self) -> int:
        return len(self._policies)
