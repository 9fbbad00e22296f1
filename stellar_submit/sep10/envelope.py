"""
Challenge envelope: an immutable view of a base64 XDR TransactionEnvelope.

Decoding happens once, up front. Every attribute the handshake needs
(signature count, signature hints, network) is read at decode time and
frozen. Appending a signature never touches the existing value; it
produces a new encoded envelope and decodes that.
"""

from __future__ import annotations

from dataclasses import dataclass

from stellar_sdk import TransactionEnvelope

from stellar_submit.errors import MalformedEnvelope
from stellar_submit.sep10.sanitize import sanitize_envelope
from stellar_submit.sep10.signer import IdentitySigner


@dataclass(frozen=True)
class ChallengeEnvelope:
    """A decoded, immutable challenge envelope.

    Attributes:
        raw: Base64 XDR, exactly as it will be submitted.
        network_passphrase: Network the envelope was decoded against.
        signature_hints: Hex signature hints, in envelope order.
        tx_hash: Hex transaction hash (what each signature covers).
    """

    raw: str
    network_passphrase: str
    signature_hints: tuple[str, ...]
    tx_hash: str

    @property
    def signature_count(self) -> int:
        return len(self.signature_hints)

    @classmethod
    def decode(cls, raw: str, network_passphrase: str) -> "ChallengeEnvelope":
        """Decode an encoded envelope.

        The input is passed through ``sanitize_envelope`` first.

        Raises:
            MalformedEnvelope: If the value is not a decodable envelope.
        """
        cleaned = sanitize_envelope(raw)
        if not cleaned:
            raise MalformedEnvelope("envelope is empty")
        try:
            envelope = TransactionEnvelope.from_xdr(cleaned, network_passphrase)
            tx_hash = envelope.hash_hex()
        except Exception as exc:
            raise MalformedEnvelope(
                f"envelope is not a decodable transaction: {exc}",
                details={"preview": cleaned[:50]},
            ) from exc
        return cls(
            raw=cleaned,
            network_passphrase=network_passphrase,
            signature_hints=tuple(sig.signature_hint.hex() for sig in envelope.signatures),
            tx_hash=tx_hash,
        )

    def with_signature(self, signer: IdentitySigner) -> "ChallengeEnvelope":
        """Return a new envelope with the signer's signature appended last.

        Raises:
            MalformedEnvelope: If the signer does not return exactly one
                more signature with the existing ones untouched.
        """
        signed = ChallengeEnvelope.decode(
            signer.sign_transaction(self.raw, network_passphrase=self.network_passphrase),
            self.network_passphrase,
        )
        if (
            signed.signature_count != self.signature_count + 1
            or signed.signature_hints[: self.signature_count] != self.signature_hints
        ):
            raise MalformedEnvelope(
                "identity signature was not appended after the existing signatures",
                details={
                    "before": self.signature_count,
                    "after": signed.signature_count,
                },
            )
        return signed
