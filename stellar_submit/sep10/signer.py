"""
Identity signer: the secrets boundary for the client-domain signature.

The authenticator never touches key material. It hands an encoded
envelope to a signer and gets a new encoded envelope back with one more
signature appended at the end.

Concrete implementations:
    - KeypairSigner (stellar-sdk Keypair from a secret seed)
    - FakeSigner (tests)

The signer exposes ``key_id`` (the public G-address) for log lines and
diagnostics. The secret seed itself never leaves the signer.

Key material lifecycle:
    ``load_signing_secret`` reads ``SIGNING_SECRET_KEY`` at call time,
    strips quotes, and returns it. The authenticator builds a signer for
    one signing operation and drops it afterwards; nothing is cached.
"""

from __future__ import annotations

import os
from typing import Mapping, Protocol, runtime_checkable

from stellar_sdk import Keypair, TransactionEnvelope
from stellar_sdk.exceptions import Ed25519SecretSeedInvalidError

from stellar_submit.errors import ConfigurationError, MalformedEnvelope

SIGNING_SECRET_ENV = "SIGNING_SECRET_KEY"


@runtime_checkable
class IdentitySigner(Protocol):
    """Interface for appending the application's identity signature."""

    @property
    def key_id(self) -> str:
        """Public identifier of the signing key (safe for logging)."""
        ...

    def sign_transaction(self, tx_xdr: str, *, network_passphrase: str) -> str:
        """Append a signature to an encoded envelope.

        Args:
            tx_xdr: Base64 XDR of the envelope to sign.
            network_passphrase: Network passphrase for the signing context.

        Returns:
            Base64 XDR of a new envelope with the signature appended last.

        Raises:
            MalformedEnvelope: If ``tx_xdr`` cannot be decoded.
        """
        ...


class KeypairSigner:
    """IdentitySigner backed by a stellar-sdk Keypair.

    Args:
        secret: Stellar secret seed ("S...").

    Raises:
        ConfigurationError: If the seed is not a valid Stellar secret.
    """

    def __init__(self, secret: str) -> None:
        try:
            self._keypair = Keypair.from_secret(secret)
        except (Ed25519SecretSeedInvalidError, ValueError):
            # The exception text can echo the seed; don't chain it.
            raise ConfigurationError(
                "client domain signing key is not a valid Stellar secret seed"
            ) from None

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "KeypairSigner":
        return cls(load_signing_secret(env))

    @property
    def key_id(self) -> str:
        return self._keypair.public_key

    def sign_transaction(self, tx_xdr: str, *, network_passphrase: str) -> str:
        try:
            envelope = TransactionEnvelope.from_xdr(tx_xdr, network_passphrase)
        except Exception as exc:
            raise MalformedEnvelope(f"cannot decode envelope for signing: {exc}") from exc
        envelope.sign(self._keypair)
        return envelope.to_xdr()


def normalize_secret(raw: str) -> str:
    """Strip whitespace and one pair of surrounding quotes.

    Secrets pasted into .env files often arrive as '"S..."'.
    """
    value = raw.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].strip()
    return value


def load_signing_secret(env: Mapping[str, str] | None = None) -> str:
    """Read the identity signing secret from the environment.

    Args:
        env: Mapping to read from. Defaults to ``os.environ``.

    Returns:
        The normalized secret seed.

    Raises:
        ConfigurationError: If SIGNING_SECRET_KEY is absent or empty.
    """
    if env is None:
        env = os.environ
    raw = env.get(SIGNING_SECRET_ENV)
    secret = normalize_secret(raw) if raw is not None else ""
    if not secret:
        raise ConfigurationError(
            "client domain signing key not configured",
            details={"env": SIGNING_SECRET_ENV},
        )
    return secret
