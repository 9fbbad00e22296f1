"""
Horizon submitter: the queue's default ``submit`` callable.

POSTs a signed transaction envelope to Horizon's ``/transactions``
endpoint and parses the response into a SubmitResult.

No retry loops (the queue and ``with_retry`` own those). No signing: the
payload is an already-signed base64 XDR envelope.

Response handling:
    - 2xx: ``{"hash", "ledger", "successful"}`` → SubmitResult
    - 400: problem document with ``extras.result_codes`` → the exception
      from ``classify_result_codes`` (TransactionFailed family)
    - 404/5xx: NetworkError
    - transport failure or timeout: NetworkError
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from stellar_submit.errors import (
    CounterpartyRejected,
    NetworkError,
    ProtocolError,
    classify_result_codes,
)
from stellar_submit.transport import HttpTransport, HttpxTransport, TransportResponse

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    """Horizon's answer to an accepted submission.

    Attributes:
        tx_hash: Transaction hash (64 hex chars).
        ledger: Ledger sequence the transaction was included in.
        successful: Whether the transaction applied successfully.
    """

    tx_hash: str
    ledger: int | None = None
    successful: bool = True

    def to_dict(self) -> dict[str, object]:
        return {"tx_hash": self.tx_hash, "ledger": self.ledger, "successful": self.successful}


class HorizonSubmitter:
    """Submits signed envelopes to a Horizon server.

    Args:
        horizon_url: Horizon base URL (e.g. "https://horizon-testnet.stellar.org").
        transport: Injectable HTTP transport. Defaults to HttpxTransport.
    """

    def __init__(self, horizon_url: str, transport: HttpTransport | None = None) -> None:
        if not horizon_url:
            raise ValueError("horizon_url must be non-empty")
        self._horizon_url = horizon_url.rstrip("/")
        self._transport = transport or HttpxTransport()

    @property
    def submit_url(self) -> str:
        return f"{self._horizon_url}/transactions"

    async def __call__(self, envelope_xdr: str) -> SubmitResult:
        """Submit one signed envelope.

        Raises:
            ValueError: If envelope_xdr is empty.
            NetworkError: Transport failure, timeout, 404 or 5xx.
            TransactionFailed, InsufficientFunds, Unauthorized: Horizon
                rejected the transaction (HTTP 400).
            CounterpartyRejected: Any other non-2xx, or a non-JSON 2xx.
            ProtocolError: 2xx without a transaction hash.
        """
        if not envelope_xdr:
            raise ValueError("envelope_xdr is required")

        url = self.submit_url
        try:
            response = await self._transport.request("POST", url, form={"tx": envelope_xdr})
        except httpx.TransportError as exc:
            log.warning("horizon.transport_error", url=url, error=str(exc))
            raise NetworkError(f"failed to reach {url}: {exc}", details={"url": url}) from exc

        if not response.is_success:
            error = classify_result_codes(
                response.status_code, response.text, _result_codes(response)
            )
            log.warning(
                "horizon.rejected",
                status_code=response.status_code,
                error_kind=str(error.kind),
            )
            raise error

        return _parse_submit_response(response)


# =====================================================================
# Response parsing (pure functions, no I/O)
# =====================================================================


def _result_codes(response: TransportResponse) -> dict[str, Any] | None:
    """Pull ``extras.result_codes`` out of a Horizon problem document."""
    try:
        problem = response.json()
    except ValueError:
        return None
    if not isinstance(problem, dict):
        return None
    extras = problem.get("extras")
    if not isinstance(extras, dict):
        return None
    codes = extras.get("result_codes")
    return codes if isinstance(codes, dict) else None


def _parse_submit_response(response: TransportResponse) -> SubmitResult:
    try:
        data = response.json()
    except ValueError as exc:
        raise CounterpartyRejected(
            response.status_code,
            response.text,
            message="Horizon returned a non-JSON body",
        ) from exc
    if not isinstance(data, dict):
        raise CounterpartyRejected(
            response.status_code,
            response.text,
            message="Horizon response JSON was not an object",
        )

    tx_hash = data.get("hash") or data.get("id")
    if not isinstance(tx_hash, str) or not tx_hash:
        raise ProtocolError("transaction hash missing", details={"keys": sorted(data.keys())})

    ledger = data.get("ledger")
    result = SubmitResult(
        tx_hash=tx_hash,
        ledger=ledger if isinstance(ledger, int) else None,
        successful=bool(data.get("successful", True)),
    )
    log.info("horizon.submitted", tx_hash=tx_hash, ledger=result.ledger)
    return result
