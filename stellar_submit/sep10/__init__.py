"""
SEP-10 web authentication handshake.

Public API:

    Pure layer (no I/O):
        - ``sanitize_envelope()``: best-effort repair of transported envelopes.
        - ``extract_transaction_xdr()``: challenge from any anchor response shape.
        - ``ChallengeEnvelope``: immutable decoded envelope.
        - ``CounterpartyRegistry`` / ``CounterpartyPolicy``: per-anchor policy.

    Impure layer (network I/O):
        - ``Sep10Authenticator.fetch_challenge()``: GET the challenge.
        - ``Sep10Authenticator.authenticate()``: POST the signed challenge.
        - ``require_session()``: precondition for protected anchor calls.

    Secrets boundary:
        - ``IdentitySigner``: protocol for the client-domain signature.
        - ``KeypairSigner``: stellar-sdk implementation.
"""

from stellar_submit.sep10.authenticator import Sep10Authenticator, SessionToken, require_session
from stellar_submit.sep10.counterparty import (
    BUILTIN_COUNTERPARTIES,
    COUNTERPARTY_SCHEMA,
    CounterpartyPolicy,
    CounterpartyRegistry,
)
from stellar_submit.sep10.envelope import ChallengeEnvelope
from stellar_submit.sep10.sanitize import (
    extract_transaction_xdr,
    is_base64_xdr,
    sanitize_envelope,
    validate_network_passphrase,
)
from stellar_submit.sep10.signer import (
    IdentitySigner,
    KeypairSigner,
    load_signing_secret,
    normalize_secret,
)

__all__ = [
    "BUILTIN_COUNTERPARTIES",
    "COUNTERPARTY_SCHEMA",
    "ChallengeEnvelope",
    "CounterpartyPolicy",
    "CounterpartyRegistry",
    "IdentitySigner",
    "KeypairSigner",
    "Sep10Authenticator",
    "SessionToken",
    "extract_transaction_xdr",
    "is_base64_xdr",
    "load_signing_secret",
    "normalize_secret",
    "require_session",
    "sanitize_envelope",
    "validate_network_passphrase",
]
