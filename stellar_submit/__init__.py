"""
stellar-submit: SEP-10 authentication and resilient Stellar submissions.

Two halves share one error taxonomy:

    - ``stellar_submit.sep10``: challenge/response handshake with anchors,
      including the client-domain identity signature some anchors require.
    - ``stellar_submit.retry``: backoff, the transaction queue, and the
      connectivity monitor that drives reconnect retries.

``stellar_submit.runtime.build_runtime`` wires both from ``Settings``.
"""

from stellar_submit.errors import (
    ClassifiedError,
    ConfigurationError,
    CounterpartyRejected,
    ErrorKind,
    InsufficientFunds,
    MalformedEnvelope,
    NetworkError,
    ProtocolError,
    StellarSubmitError,
    TransactionFailed,
    Unauthorized,
    classify,
    format_error_message,
)

__version__ = "0.1.0"

__all__ = [
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
    "__version__",
    "classify",
    "format_error_message",
]
