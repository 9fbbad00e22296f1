"""
Error taxonomy and classifier for the submission layer.

Every failure the authenticator or the queue can observe is mapped onto a
small, closed set of kinds. The authenticator raises these exceptions
directly; the queue catches whatever its submitter raises, classifies it,
and stores the result on the entry.

Kinds:
    - MALFORMED_ENVELOPE: envelope could not be decoded.
    - CONFIGURATION: required local configuration is missing or invalid.
    - NETWORK: transport failure, timeout, offline, or a server-side 5xx/404.
    - COUNTERPARTY_REJECTED: non-2xx response or malformed success body.
    - PROTOCOL: 2xx response missing a required field.
    - UNAUTHORIZED: caller precondition failed (missing token, bad auth).
    - TRANSACTION_FAILED: the network rejected the transaction content.
    - INSUFFICIENT_FUNDS: the source account cannot cover the transaction.
    - UNKNOWN: anything else.

Only NETWORK is retriable. The queue itself retries any failed entry when
asked; ``ClassifiedError.retriable`` is what callers inspect before asking.

Horizon result codes:
    Horizon reports rejected transactions as HTTP 400 with
    ``extras.result_codes``. The mapping is coarse: a couple of
    well-known transaction codes get their own kind, the rest are
    TRANSACTION_FAILED.

Reference:
    https://developers.stellar.org/docs/data/apis/horizon/api-reference/errors/result-codes
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

import httpx

# Diagnostics bodies are cut to this many characters.
MAX_BODY_PREVIEW = 200


class ErrorKind(StrEnum):
    """Closed taxonomy of failure kinds."""

    MALFORMED_ENVELOPE = "MALFORMED_ENVELOPE"
    CONFIGURATION = "CONFIGURATION"
    NETWORK = "NETWORK"
    COUNTERPARTY_REJECTED = "COUNTERPARTY_REJECTED"
    PROTOCOL = "PROTOCOL"
    UNAUTHORIZED = "UNAUTHORIZED"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    UNKNOWN = "UNKNOWN"


# =========================================================================
# Exceptions
# =========================================================================


class StellarSubmitError(Exception):
    """Base error for the submission layer.

    Args:
        message: Human-readable message.
        details: Structured diagnostics. Never contains secrets.
    """

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: dict[str, Any] = details or {}


class MalformedEnvelope(StellarSubmitError):
    """Envelope is not decodable XDR, or its signature count is wrong."""

    kind = ErrorKind.MALFORMED_ENVELOPE


class ConfigurationError(StellarSubmitError):
    """Required configuration (e.g. the signing secret) is absent or invalid."""

    kind = ErrorKind.CONFIGURATION


class NetworkError(StellarSubmitError):
    """Transport failure, timeout, or the process is offline."""

    kind = ErrorKind.NETWORK


class ProtocolError(StellarSubmitError):
    """A 2xx response was missing a required field."""

    kind = ErrorKind.PROTOCOL


class Unauthorized(StellarSubmitError):
    """A protected action was attempted without valid credentials."""

    kind = ErrorKind.UNAUTHORIZED


class CounterpartyRejected(StellarSubmitError):
    """The counterparty answered with a non-success status or unusable body.

    The response body is truncated to ``MAX_BODY_PREVIEW`` characters and
    included in the message.
    """

    kind = ErrorKind.COUNTERPARTY_REJECTED

    def __init__(
        self,
        status_code: int,
        body: str,
        *,
        message: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        preview = truncate_body(body)
        self.status_code = status_code
        self.body = preview
        super().__init__(
            message or f"counterparty returned HTTP {status_code}: {preview}",
            details={"status_code": status_code, "body_preview": preview, **(details or {})},
        )


class TransactionFailed(CounterpartyRejected):
    """The network rejected the transaction content (Horizon 400)."""

    kind = ErrorKind.TRANSACTION_FAILED

    def __init__(
        self,
        status_code: int,
        body: str,
        *,
        result_codes: dict[str, Any] | None = None,
        message: str | None = None,
    ) -> None:
        self.result_codes: dict[str, Any] = result_codes or {}
        super().__init__(
            status_code,
            body,
            message=message,
            details={"result_codes": self.result_codes},
        )


class InsufficientFunds(TransactionFailed):
    """Source account balance cannot cover the transaction."""

    kind = ErrorKind.INSUFFICIENT_FUNDS


def truncate_body(body: str | None) -> str:
    """Cut a response body down to a diagnostics preview."""
    if not body:
        return ""
    return body[:MAX_BODY_PREVIEW]


# =========================================================================
# Classification
# =========================================================================


@dataclass(frozen=True)
class ClassifiedError:
    """A failure mapped onto the taxonomy, ready for display.

    Attributes:
        kind: Taxonomy kind.
        title: Short title for the UI.
        message: One-sentence explanation for the UI.
        action: Suggested next step, if any.
        severity: "info", "warning", "error" or "critical".
        retriable: Whether retrying could plausibly succeed.
        detail: Diagnostic detail (the raw exception message).
        details: Structured diagnostics copied from the exception.
    """

    kind: ErrorKind
    title: str
    message: str
    action: str | None = None
    severity: str = "error"
    retriable: bool = False
    detail: str | None = None
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        result: dict[str, object] = {
            "kind": str(self.kind),
            "title": self.title,
            "message": self.message,
            "severity": self.severity,
            "retriable": self.retriable,
        }
        if self.action is not None:
            result["action"] = self.action
        if self.detail is not None:
            result["detail"] = self.detail
        return result


@dataclass(frozen=True)
class _Presentation:
    title: str
    message: str
    action: str | None
    severity: str


_PRESENTATION: dict[ErrorKind, _Presentation] = {
    ErrorKind.MALFORMED_ENVELOPE: _Presentation(
        "Invalid Challenge",
        "The authentication challenge could not be read.",
        "Request a new challenge and sign it again.",
        "error",
    ),
    ErrorKind.CONFIGURATION: _Presentation(
        "Configuration Error",
        "This application is missing required signing configuration.",
        "Please contact support.",
        "critical",
    ),
    ErrorKind.NETWORK: _Presentation(
        "Network Error",
        "Unable to connect to the Stellar network.",
        "Please check your internet connection and try again.",
        "critical",
    ),
    ErrorKind.COUNTERPARTY_REJECTED: _Presentation(
        "Payment Processing Error",
        "The anchor rejected the request.",
        "Please contact support if the problem persists.",
        "error",
    ),
    ErrorKind.PROTOCOL: _Presentation(
        "Unexpected Response",
        "The anchor returned an incomplete response.",
        "Please try again later.",
        "error",
    ),
    ErrorKind.UNAUTHORIZED: _Presentation(
        "Unauthorized",
        "You do not have permission to perform this action.",
        None,
        "error",
    ),
    ErrorKind.TRANSACTION_FAILED: _Presentation(
        "Transaction Failed",
        "The transaction could not be completed.",
        "Please try again or contact support if the problem persists.",
        "critical",
    ),
    ErrorKind.INSUFFICIENT_FUNDS: _Presentation(
        "Insufficient Funds",
        "Your wallet does not have enough funds to complete this transaction.",
        "Please add funds to your wallet and try again.",
        "error",
    ),
    ErrorKind.UNKNOWN: _Presentation(
        "Unexpected Error",
        "An unexpected error occurred. Please try again.",
        None,
        "error",
    ),
}

_RETRIABLE: frozenset[ErrorKind] = frozenset({ErrorKind.NETWORK})


def kind_of(exc: BaseException) -> ErrorKind:
    """Map an exception to its taxonomy kind without building a presentation."""
    if isinstance(exc, StellarSubmitError):
        return exc.kind
    # httpx.TimeoutException is a TransportError subclass
    if isinstance(exc, (httpx.TransportError, asyncio.TimeoutError, OSError)):
        return ErrorKind.NETWORK
    return ErrorKind.UNKNOWN


def classify(exc: BaseException) -> ClassifiedError:
    """Classify an arbitrary exception into a ClassifiedError.

    Args:
        exc: Any exception raised by a submission, handshake or probe.

    Returns:
        ClassifiedError with title/message/action/severity for display.
        Never raises.
    """
    kind = kind_of(exc)
    presentation = _PRESENTATION[kind]
    message = presentation.message
    # Contract errors from the network carry a useful message of their own.
    if kind == ErrorKind.TRANSACTION_FAILED and isinstance(exc, StellarSubmitError):
        message = exc.message or message

    details: dict[str, Any] = {}
    if isinstance(exc, StellarSubmitError):
        details = dict(exc.details)

    return ClassifiedError(
        kind=kind,
        title=presentation.title,
        message=message,
        action=presentation.action,
        severity=presentation.severity,
        retriable=kind in _RETRIABLE,
        detail=str(exc) or type(exc).__name__,
        details=details,
    )


def is_retriable(exc: BaseException) -> bool:
    """True if retrying the failed operation could plausibly succeed."""
    return kind_of(exc) in _RETRIABLE


def format_error_message(error: ClassifiedError) -> str:
    """Single-line rendering: "Title: message action"."""
    text = f"{error.title}: {error.message}"
    if error.action:
        text += f" {error.action}"
    return text


# =========================================================================
# Horizon response → exception
# =========================================================================

def classify_result_codes(
    status_code: int,
    body: str,
    result_codes: dict[str, Any] | None = None,
) -> StellarSubmitError:
    """Map a failed Horizon submission response to an exception.

    Args:
        status_code: HTTP status from Horizon.
        body: Raw response text (truncated for diagnostics).
        result_codes: ``extras.result_codes`` from the problem document,
            if present.

    Returns:
        The exception to raise. 404 and 5xx are NETWORK (the node, not
        the transaction, is the problem); 400 is TRANSACTION_FAILED unless
        a dedicated transaction code applies; anything else is
        COUNTERPARTY_REJECTED.
    """
    codes = result_codes or {}
    if status_code == 404 or status_code >= 500:
        return NetworkError(
            f"Stellar network error (HTTP {status_code})",
            details={"status_code": status_code, "body_preview": truncate_body(body)},
        )
    if status_code == 400:
        tx_code = codes.get("transaction")
        if tx_code == "tx_insufficient_balance":
            return InsufficientFunds(
                status_code,
                body,
                result_codes=codes,
                message="Insufficient balance to complete transaction",
            )
        if tx_code == "tx_bad_auth":
            return Unauthorized(
                "Transaction authorization failed",
                details={"status_code": status_code, "result_codes": codes},
            )
        return TransactionFailed(
            status_code,
            body,
            result_codes=codes,
            message=f"Invalid transaction ({tx_code or 'unknown result'})",
        )
    return CounterpartyRejected(status_code, body)


__all__ = [
    "MAX_BODY_PREVIEW",
    "ClassifiedError",
    "ConfigurationError",
    "CounterpartyRejected",
    "ErrorKind",
    "InsufficientFunds",
    "MalformedEnvelope",
    "NetworkError",
    "ProtocolError",
    "StellarSubmitError",
    "TransactionFailed",
    "Unauthorized",
    "classify",
    "classify_result_codes",
    "format_error_message",
    "is_retriable",
    "kind_of",
    "truncate_body",
]
