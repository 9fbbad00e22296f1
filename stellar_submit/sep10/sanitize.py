"""
Challenge sanitizer: best-effort repair of envelope strings from transport.

Envelopes reach us through JSON bodies, query strings, wallet extensions
and copy/paste. Each of those can add noise: surrounding quotes, newlines
every 64/76 chars, URL encoding, URL-safe base64, stripped padding.

``sanitize_envelope`` never raises. When the input is beyond repair it
returns its best effort and the decode step reports ``MalformedEnvelope``.
"""

from __future__ import annotations

import re
from typing import Any, Mapping
from urllib.parse import unquote

from stellar_submit.errors import MalformedEnvelope, ProtocolError

# XDR envelopes shorter than this are not plausible transactions.
MIN_ENVELOPE_LENGTH = 200

# Response keys anchors use for the challenge, in lookup order.
CHALLENGE_KEYS = ("transaction", "tx", "transaction_envelope_xdr")

_BASE64_RE = re.compile(r"^[A-Za-z0-9+/]*={0,2}$")
_WHITESPACE_RE = re.compile(r"\s+")
_QUOTES = ("'", '"')


def _strip_quotes(value: str) -> str:
    if value[:1] in _QUOTES:
        value = value[1:]
    if value[-1:] in _QUOTES:
        value = value[:-1]
    return value


def sanitize_envelope(raw: str) -> str:
    """Normalize an encoded envelope string.

    Steps, in order:
        1. strip surrounding whitespace and quotes,
        2. URL-decode if a ``%`` escape is present,
        3. drop embedded whitespace/newlines,
        4. map URL-safe base64 (``-``, ``_``) to standard (``+``, ``/``),
        5. restore ``=`` padding to a multiple of 4.

    Args:
        raw: Envelope as received.

    Returns:
        The normalized string. Pure; never raises.
    """
    if not isinstance(raw, str):
        return ""

    value = _strip_quotes(raw.strip()).strip()

    if "%" in value:
        value = unquote(value)

    value = _WHITESPACE_RE.sub("", value)
    value = value.replace("-", "+").replace("_", "/")

    body = value.rstrip("=")
    remainder = len(body) % 4
    if remainder == 1:
        # No valid base64 has a dangling single char; leave it for decode.
        return value
    if remainder:
        body += "=" * (4 - remainder)
    return body


def is_base64_xdr(value: Any) -> bool:
    """True if ``value`` looks like a base64 XDR envelope."""
    if not value or not isinstance(value, str):
        return False
    cleaned = value.strip()
    if not _BASE64_RE.match(cleaned):
        return False
    return len(cleaned) >= MIN_ENVELOPE_LENGTH


def extract_transaction_xdr(response: Mapping[str, Any]) -> str:
    """Pull the challenge envelope out of an anchor's challenge response.

    Anchors disagree on the key; the first present of ``transaction``,
    ``tx``, ``transaction_envelope_xdr`` wins.

    Raises:
        ProtocolError: If none of the keys is present.
        MalformedEnvelope: If the value is not base64 XDR after sanitizing.
    """
    raw: Any = None
    for key in CHALLENGE_KEYS:
        if response.get(key):
            raw = response[key]
            break
    if raw is None:
        raise ProtocolError(
            "challenge response missing transaction field; expected one of: "
            + ", ".join(CHALLENGE_KEYS),
            details={"keys": sorted(response.keys())},
        )

    cleaned = sanitize_envelope(raw if isinstance(raw, str) else str(raw))
    if not is_base64_xdr(cleaned):
        raise MalformedEnvelope(
            f"invalid XDR format, expected base64 string, got: {cleaned[:50]}...",
        )
    return cleaned


def validate_network_passphrase(received: str | None, expected: str) -> None:
    """Reject a challenge issued for a different network.

    A missing passphrase is accepted (older anchors omit it).

    Raises:
        ProtocolError: If ``received`` is set and differs from ``expected``.
    """
    if received and received != expected:
        raise ProtocolError(
            f'network passphrase mismatch: expected "{expected}", got "{received}"',
            details={"expected": expected, "received": received},
        )
