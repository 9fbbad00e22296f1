"""
Tests for HorizonSubmitter: canned Horizon responses, no network.

Test plan:
- Success: form-encoded POST to /transactions, SubmitResult parsed
- 400 problem documents: result codes mapped to InsufficientFunds,
  Unauthorized, TransactionFailed
- 404/5xx and transport errors → NetworkError
- Other statuses → CounterpartyRejected; 2xx without hash → ProtocolError
- Queue integration: Horizon rejection lands as a classified failure
"""

import json
from typing import Any

import httpx
import pytest

from stellar_submit.errors import (
    CounterpartyRejected,
    ErrorKind,
    InsufficientFunds,
    NetworkError,
    ProtocolError,
    TransactionFailed,
    Unauthorized,
)
from stellar_submit.horizon import HorizonSubmitter, SubmitResult
from stellar_submit.retry.queue import TransactionQueue, TransactionStatus
from stellar_submit.transport import TransportResponse

HORIZON = "https://horizon-testnet.stellar.org"
ENVELOPE = "AAAAAgAAAAB" + "A" * 200

# ---------------------------------------------------------------------------
# Fake transport
# ---------------------------------------------------------------------------


class FakeTransport:
    """Returns one canned response; records every call."""

    def __init__(self, response: TransportResponse | Exception) -> None:
        self._response = response
        self.calls: list[dict[str, Any]] = []

    async def request(
        self,
        method: str,
        url: str,
        *,
        json_body: Any = None,
        form: Any = None,
        params: Any = None,
    ) -> TransportResponse:
        self.calls.append({"method": method, "url": url, "form": form})
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


def _problem(tx_code: str, op_codes: list[str] | None = None) -> TransportResponse:
    body = {
        "type": "https://stellar.org/horizon-errors/transaction_failed",
        "title": "Transaction Failed",
        "status": 400,
        "extras": {
            "envelope_xdr": ENVELOPE,
            "result_codes": {"transaction": tx_code, "operations": op_codes or []},
        },
    }
    return TransportResponse(status_code=400, text=json.dumps(body))


SUCCESS = TransportResponse(
    status_code=200,
    text=json.dumps({"hash": "a" * 64, "ledger": 123456, "successful": True}),
)


# ---------------------------------------------------------------------------
# Success
# ---------------------------------------------------------------------------


class TestSubmitSuccess:
    @pytest.mark.asyncio
    async def test_posts_form_to_transactions(self) -> None:
        transport = FakeTransport(SUCCESS)
        result = await HorizonSubmitter(HORIZON + "/", transport)(ENVELOPE)

        assert result == SubmitResult(tx_hash="a" * 64, ledger=123456, successful=True)
        assert transport.calls == [
            {"method": "POST", "url": f"{HORIZON}/transactions", "form": {"tx": ENVELOPE}}
        ]

    @pytest.mark.asyncio
    async def test_missing_ledger_tolerated(self) -> None:
        transport = FakeTransport(
            TransportResponse(status_code=200, text=json.dumps({"hash": "b" * 64}))
        )
        result = await HorizonSubmitter(HORIZON, transport)(ENVELOPE)
        assert result.ledger is None
        assert result.to_dict() == {"tx_hash": "b" * 64, "ledger": None, "successful": True}

    @pytest.mark.asyncio
    async def test_empty_envelope_rejected(self) -> None:
        with pytest.raises(ValueError):
            await HorizonSubmitter(HORIZON, FakeTransport(SUCCESS))("")

    def test_empty_url_rejected(self) -> None:
        with pytest.raises(ValueError):
            HorizonSubmitter("", FakeTransport(SUCCESS))


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestSubmitFailures:
    @pytest.mark.asyncio
    async def test_insufficient_balance(self) -> None:
        submitter = HorizonSubmitter(HORIZON, FakeTransport(_problem("tx_insufficient_balance")))
        with pytest.raises(InsufficientFunds):
            await submitter(ENVELOPE)

    @pytest.mark.asyncio
    async def test_bad_auth(self) -> None:
        submitter = HorizonSubmitter(HORIZON, FakeTransport(_problem("tx_bad_auth")))
        with pytest.raises(Unauthorized):
            await submitter(ENVELOPE)

    @pytest.mark.asyncio
    async def test_operation_failure(self) -> None:
        submitter = HorizonSubmitter(
            HORIZON, FakeTransport(_problem("tx_failed", ["op_underfunded"]))
        )
        with pytest.raises(TransactionFailed) as exc_info:
            await submitter(ENVELOPE)
        assert exc_info.value.result_codes["operations"] == ["op_underfunded"]

    @pytest.mark.asyncio
    async def test_400_without_problem_document(self) -> None:
        submitter = HorizonSubmitter(
            HORIZON, FakeTransport(TransportResponse(status_code=400, text="nope"))
        )
        with pytest.raises(TransactionFailed):
            await submitter(ENVELOPE)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 500, 504])
    async def test_server_side_is_network(self, status: int) -> None:
        submitter = HorizonSubmitter(
            HORIZON, FakeTransport(TransportResponse(status_code=status, text="gateway"))
        )
        with pytest.raises(NetworkError):
            await submitter(ENVELOPE)

    @pytest.mark.asyncio
    async def test_transport_error_is_network(self) -> None:
        submitter = HorizonSubmitter(HORIZON, FakeTransport(httpx.ReadTimeout("slow")))
        with pytest.raises(NetworkError):
            await submitter(ENVELOPE)

    @pytest.mark.asyncio
    async def test_forbidden_is_rejected(self) -> None:
        submitter = HorizonSubmitter(
            HORIZON, FakeTransport(TransportResponse(status_code=403, text="forbidden"))
        )
        with pytest.raises(CounterpartyRejected):
            await submitter(ENVELOPE)

    @pytest.mark.asyncio
    async def test_success_without_hash(self) -> None:
        submitter = HorizonSubmitter(
            HORIZON, FakeTransport(TransportResponse(status_code=200, text="{}"))
        )
        with pytest.raises(ProtocolError):
            await submitter(ENVELOPE)

    @pytest.mark.asyncio
    async def test_success_not_json(self) -> None:
        submitter = HorizonSubmitter(
            HORIZON, FakeTransport(TransportResponse(status_code=200, text="<html>"))
        )
        with pytest.raises(CounterpartyRejected):
            await submitter(ENVELOPE)


# ---------------------------------------------------------------------------
# Queue integration
# ---------------------------------------------------------------------------


class TestQueueIntegration:
    @pytest.mark.asyncio
    async def test_rejection_classified_on_entry(self) -> None:
        queue = TransactionQueue(
            HorizonSubmitter(HORIZON, FakeTransport(_problem("tx_insufficient_balance")))
        )
        tx_id = queue.enqueue(ENVELOPE)
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.FAILED
        assert snap.error is not None
        assert snap.error.kind == ErrorKind.INSUFFICIENT_FUNDS
        assert snap.error.title == "Insufficient Funds"

    @pytest.mark.asyncio
    async def test_success_stored_as_result(self) -> None:
        queue = TransactionQueue(HorizonSubmitter(HORIZON, FakeTransport(SUCCESS)))
        tx_id = queue.enqueue(ENVELOPE)
        await queue.drain()

        snap = queue.get_transaction(tx_id)
        assert snap is not None
        assert snap.status == TransactionStatus.COMPLETED
        assert snap.result.tx_hash == "a" * 64
