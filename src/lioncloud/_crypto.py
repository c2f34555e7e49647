"""Internal cryptographic helpers for La Marzocco API authentication.

Every request to the customer-app API is authorized by an *installation
key*: a P-256 key pair generated by the client, registered once via
``/auth/init``, plus a 32-byte secret derived from it.  Requests carry a
signature over a proof string produced by the vendor's custom byte fold.
"""

from __future__ import annotations

import base64
import time
import uuid
from dataclasses import dataclass

from Crypto.Hash import SHA256
from Crypto.PublicKey import ECC
from Crypto.Signature import DSS
from Crypto.Util.asn1 import DerSequence

from lioncloud._constants import (
    HEADER_INSTALLATION_ID,
    HEADER_NONCE,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _sha256(data: bytes) -> bytes:
    return SHA256.new(data).digest()


@dataclass(frozen=True)
class InstallationIdentity:
    """The client's self-generated installation key."""

    installation_id: str
    private_key: ECC.EccKey
    secret: bytes

    @property
    def public_key_der(self) -> bytes:
        """Public key as DER-encoded SubjectPublicKeyInfo."""
        der: bytes = self.private_key.public_key().export_key(format="DER")
        return der

    @property
    def public_key_b64(self) -> str:
        """Public key in the form sent to ``/auth/init``."""
        return _b64(self.public_key_der)


def derive_secret(installation_id: str, public_key_der: bytes) -> bytes:
    """SHA256 of ``id.b64(pubkey_der).b64(sha256(id))``."""
    id_hash = _sha256(installation_id.encode("utf-8"))
    triple = f"{installation_id}.{_b64(public_key_der)}.{_b64(id_hash)}"
    return _sha256(triple.encode("utf-8"))


def generate_identity() -> InstallationIdentity:
    """Create a fresh P-256 key pair, installation id and derived secret."""
    key = ECC.generate(curve="P-256")
    installation_id = str(uuid.uuid4())
    der = key.public_key().export_key(format="DER")
    return InstallationIdentity(installation_id, key, derive_secret(installation_id, der))


def fold_proof(base_string: str, secret: bytes) -> bytes:
    """Run the vendor byte fold and return the final 32-byte work array.

    Each input byte is XORed into the work slot it selects and the result is
    rotated left by the low three bits of the following slot.  The fold is
    order-dependent and must match the vendor bit for bit.
    """
    if len(secret) != 32:
        raise ValueError(f"Secret must be 32 bytes, got {len(secret)}.")
    work = bytearray(secret)
    for byte in base_string.encode("utf-8"):
        idx = byte % 32
        shift = work[(idx + 1) % 32] & 0x07
        value = byte ^ work[idx]
        work[idx] = ((value << shift) | (value >> (8 - shift))) & 0xFF
    return bytes(work)


def proof_string(base_string: str, secret: bytes) -> str:
    """Return ``b64(SHA256(fold))`` for *base_string* keyed by *secret*."""
    return _b64(_sha256(fold_proof(base_string, secret)))


def registration_proof(identity: InstallationIdentity) -> tuple[str, str]:
    """Return ``(base_string, proof)`` for the ``/auth/init`` handshake."""
    pub_hash = _sha256(identity.public_key_der)
    base_string = f"{identity.installation_id}.{_b64(pub_hash)}"
    return base_string, proof_string(base_string, identity.secret)


def encode_der_signature(r: int, s: int) -> bytes:
    """Encode an ECDSA signature as ``SEQUENCE { INTEGER r, INTEGER s }``."""
    encoded: bytes = DerSequence([r, s]).encode()
    return encoded


def sign(identity: InstallationIdentity, data: bytes) -> bytes:
    """ECDSA-SHA256 sign *data* and return the DER-encoded signature."""
    signer = DSS.new(identity.private_key, "fips-186-3", encoding="binary")
    raw = signer.sign(SHA256.new(data))
    half = len(raw) // 2
    return encode_der_signature(
        int.from_bytes(raw[:half], "big"), int.from_bytes(raw[half:], "big")
    )


def signature_headers(
    identity: InstallationIdentity, *, now: float | None = None
) -> dict[str, str]:
    """Build the per-request installation headers.

    The signed string is ``{id}.{nonce}.{timestamp}.{proof}`` where the proof
    is computed over ``{id}.{nonce}.{timestamp}``.
    """
    timestamp = str(int((time.time() if now is None else now) * 1000))
    nonce = str(uuid.uuid4()).lower()
    proof_input = f"{identity.installation_id}.{nonce}.{timestamp}"
    signature_data = f"{proof_input}.{proof_string(proof_input, identity.secret)}"
    signature = sign(identity, signature_data.encode("utf-8"))
    return {
        HEADER_INSTALLATION_ID: identity.installation_id,
        HEADER_TIMESTAMP: timestamp,
        HEADER_NONCE: nonce,
        HEADER_SIGNATURE: _b64(signature),
    }
