"""
SEP-10 authenticator: challenge in, session token out.

One call to ``authenticate()`` does:
    1. Sanitize and decode the user-signed challenge (ReceivedChallenge).
    2. Look up the counterparty's policy.
    3. If the policy requires it, append the client-domain identity
       signature after the user's (Signed); otherwise forward the
       envelope byte-for-byte (Unmodified).
    4. POST {"transaction": <xdr>} to the counterparty's auth endpoint
       (Submitted).
    5. Return the token (TokenObtained) or raise (Failed).

Signature order:
    User signature first, identity signature last. Anchors verify
    in envelope order and expect the client-domain signer after the
    account signer.

No retries. No token persistence. Every failure propagates:
    - MalformedEnvelope: input does not decode, or does not carry exactly
      one user signature
    - ConfigurationError: identity signature required, key missing/invalid
    - NetworkError: transport failure or timeout
    - CounterpartyRejected: non-2xx, or a 2xx body that isn't a JSON object
    - ProtocolError: 2xx JSON object without a token
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable

import httpx
import structlog
from stellar_sdk import Network

from stellar_submit.errors import (
    CounterpartyRejected,
    MalformedEnvelope,
    NetworkError,
    ProtocolError,
    Unauthorized,
)
from stellar_submit.observability import mask_key_id
from stellar_submit.sep10.counterparty import CounterpartyPolicy, CounterpartyRegistry
from stellar_submit.sep10.envelope import ChallengeEnvelope
from stellar_submit.sep10.sanitize import extract_transaction_xdr, validate_network_passphrase
from stellar_submit.sep10.signer import IdentitySigner, KeypairSigner
from stellar_submit.transport import HttpTransport, HttpxTransport, TransportResponse

log = structlog.get_logger(__name__)

TESTNET_PASSPHRASE = Network.TESTNET_NETWORK_PASSPHRASE


@dataclass(frozen=True)
class SessionToken:
    """Result of a successful handshake.

    Attributes:
        token: Opaque bearer token (usually a JWT).
        counterparty_id: Anchor that issued it.
        expires_at: Expiry as sent by the anchor, if any.
    """

    token: str
    counterparty_id: str
    expires_at: str | None = None

    def __repr__(self) -> str:
        return (
            f"SessionToken(counterparty_id={self.counterparty_id!r}, "
            f"expires_at={self.expires_at!r}, token=<{len(self.token)} chars>)"
        )

    def authorization_header(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}


def require_session(
    session: SessionToken | None, counterparty_id: str | None = None
) -> SessionToken:
    """Precondition for protected anchor calls.

    Raises:
        Unauthorized: If there is no token, or it was issued by another
            counterparty.
    """
    if session is None or not session.token:
        raise Unauthorized("authentication required: no session token")
    if counterparty_id is not None and session.counterparty_id != counterparty_id:
        raise Unauthorized(
            "session token was issued by a different counterparty",
            details={"expected": counterparty_id, "issuer": session.counterparty_id},
        )
    return session


class Sep10Authenticator:
    """Runs the challenge/response handshake against an anchor.

    Args:
        registry: Counterparty policy table.
        transport: HTTP transport. Defaults to HttpxTransport.
        signer_factory: Builds the identity signer when a policy requires
            the second signature. Called once per signing operation.
            Defaults to reading SIGNING_SECRET_KEY from the environment.
        network_passphrase: Default network, overridden per counterparty.
        default_counterparty: Anchor used when a call names none.
    """

    def __init__(
        self,
        registry: CounterpartyRegistry,
        transport: HttpTransport | None = None,
        *,
        signer_factory: Callable[[], IdentitySigner] | None = None,
        network_passphrase: str = TESTNET_PASSPHRASE,
        default_counterparty: str | None = None,
    ) -> None:
        self._registry = registry
        self._default_counterparty = default_counterparty
        self._transport = transport or HttpxTransport()
        self._signer_factory = signer_factory or KeypairSigner.from_env
        self._network_passphrase = network_passphrase

    def _passphrase(self, policy: CounterpartyPolicy) -> str:
        return policy.network_passphrase or self._network_passphrase

    def _counterparty(self, counterparty_id: str | None) -> str:
        resolved = counterparty_id or self._default_counterparty
        if not resolved:
            raise ValueError("counterparty_id is required")
        return resolved

    # -----------------------------------------------------------------
    # Challenge
    # -----------------------------------------------------------------

    async def fetch_challenge(
        self, account: str, counterparty_id: str | None = None
    ) -> ChallengeEnvelope:
        """Request a challenge envelope for ``account`` from the anchor.

        Raises:
            ValueError: If account is empty, or no counterparty is given
                and there is no default.
            NetworkError, CounterpartyRejected, ProtocolError,
            MalformedEnvelope: As for ``authenticate``.
        """
        if not account:
            raise ValueError("account is required")
        counterparty_id = self._counterparty(counterparty_id)
        policy = self._registry.resolve(counterparty_id)
        url = policy.challenge_url(account)
        log.info("sep10.challenge.request", counterparty=counterparty_id, url=url)

        response = await self._send(policy, "GET", url)
        data = _json_object(response, policy)
        passphrase = self._passphrase(policy)
        validate_network_passphrase(data.get("network_passphrase"), passphrase)
        envelope = ChallengeEnvelope.decode(extract_transaction_xdr(data), passphrase)
        log.info(
            "sep10.challenge.received",
            counterparty=counterparty_id,
            signatures=envelope.signature_count,
        )
        return envelope

    # -----------------------------------------------------------------
    # Token
    # -----------------------------------------------------------------

    async def authenticate(
        self, envelope: str, counterparty_id: str | None = None
    ) -> SessionToken:
        """Exchange a user-signed challenge for a session token.

        Args:
            envelope: Base64 XDR challenge carrying the user's signature.
            counterparty_id: Anchor to authenticate against. Defaults to
                the authenticator's ``default_counterparty``.

        Returns:
            SessionToken.
        """
        counterparty_id = self._counterparty(counterparty_id)
        policy = self._registry.resolve(counterparty_id)
        challenge = ChallengeEnvelope.decode(envelope, self._passphrase(policy))
        if challenge.signature_count != 1:
            raise MalformedEnvelope(
                "challenge must carry exactly one user signature",
                details={"signatures": challenge.signature_count},
            )

        signed = self._apply_policy(challenge, policy)

        log.info(
            "sep10.token.request",
            counterparty=counterparty_id,
            url=policy.auth_url,
            signatures=signed.signature_count,
        )
        response = await self._send(
            policy, "POST", policy.auth_url, json_body={"transaction": signed.raw}
        )
        data = _json_object(response, policy)

        token = data.get("token")
        if not isinstance(token, str) or not token:
            raise ProtocolError(
                "token missing",
                details={"counterparty": counterparty_id, "keys": sorted(data.keys())},
            )
        expires_at = data.get("expires_at")
        log.info(
            "sep10.token.obtained",
            counterparty=counterparty_id,
            token_length=len(token),
            expires_at=expires_at,
        )
        return SessionToken(
            token=token,
            counterparty_id=counterparty_id,
            expires_at=str(expires_at) if expires_at is not None else None,
        )

    def _apply_policy(
        self, challenge: ChallengeEnvelope, policy: CounterpartyPolicy
    ) -> ChallengeEnvelope:
        if not policy.requires_client_signature:
            return challenge
        signer = self._signer_factory()
        signed = challenge.with_signature(signer)
        log.info(
            "sep10.client_domain.signed",
            counterparty=policy.counterparty_id,
            key_id=mask_key_id(signer.key_id),
            signatures=signed.signature_count,
        )
        return signed

    # -----------------------------------------------------------------
    # HTTP
    # -----------------------------------------------------------------

    async def _send(
        self,
        policy: CounterpartyPolicy,
        method: str,
        url: str,
        *,
        json_body: dict[str, Any] | None = None,
    ) -> TransportResponse:
        try:
            response = await self._transport.request(method, url, json_body=json_body)
        except httpx.TimeoutException as exc:
            log.warning("sep10.timeout", counterparty=policy.counterparty_id, url=url)
            raise NetworkError(
                f"request to {url} timed out",
                details={"url": url, "counterparty": policy.counterparty_id},
            ) from exc
        except httpx.TransportError as exc:
            log.warning(
                "sep10.transport_error",
                counterparty=policy.counterparty_id,
                url=url,
                error=str(exc),
            )
            raise NetworkError(
                f"failed to reach {url}: {exc}",
                details={"url": url, "counterparty": policy.counterparty_id},
            ) from exc

        if not response.is_success:
            log.warning(
                "sep10.rejected",
                counterparty=policy.counterparty_id,
                status_code=response.status_code,
            )
            raise CounterpartyRejected(
                response.status_code,
                response.text,
                details={"url": url, "counterparty": policy.counterparty_id},
            )
        return response


def _json_object(response: TransportResponse, policy: CounterpartyPolicy) -> dict[str, Any]:
    """Parse a 2xx body that must be a JSON object."""
    try:
        data = response.json()
    except ValueError as exc:
        raise CounterpartyRejected(
            response.status_code,
            response.text,
            message=f"counterparty returned a non-JSON body: {response.text[:200]}",
            details={"counterparty": policy.counterparty_id},
        ) from exc
    if not isinstance(data, dict):
        raise CounterpartyRejected(
            response.status_code,
            response.text,
            message="counterparty response JSON was not an object",
            details={"counterparty": policy.counterparty_id},
        )
    return data
