"""
Commitment Generator - Two-hash commit/reveal binding.

    secret     = 32 random bytes
    reveal     = H(secret || round_id || session_code || requester)
    commitment = H(reveal)

The commitment goes on-chain with the request; the reveal is kept
locally and in the side-channel secret store. Binding the round,
session and requester into the reveal stops a commitment from being
replayed in another round or game.

H is SHA-256. Variable-length fields are length-prefixed so two
different tuples can never hash the same input bytes.
"""

from __future__ import annotations
from dataclasses import dataclass
import hashlib
import hmac
import secrets

SECRET_BYTES = 32


def generate_secret() -> bytes:
    """High-entropy secret from the OS CSPRNG."""
    return secrets.token_bytes(SECRET_BYTES)


def _field(value: str) -> bytes:
    data = value.encode("utf-8")
    return len(data).to_bytes(2, "big") + data


def _round_bytes(round_id: int) -> bytes:
    # uint256, as the contract stores round ids
    return round_id.to_bytes(32, "big")


def compute_reveal(secret: bytes, round_id: int, session_code: str, requester: str) -> bytes:
    """Bind the secret to this round, session and requester."""
    if len(secret) != SECRET_BYTES:
        raise ValueError(f"Secret must be {SECRET_BYTES} bytes, got {len(secret)}")
    payload = (
        secret
        + _round_bytes(round_id)
        + _field(session_code)
        + _field(requester.lower())
    )
    return hashlib.sha256(payload).digest()


def compute_commitment(reveal: bytes) -> bytes:
    return hashlib.sha256(reveal).digest()


def verify_commitment(commitment: bytes, reveal: bytes) -> bool:
    """Check a published reveal against its commitment."""
    return hmac.compare_digest(compute_commitment(reveal), commitment)


def verify_binding(
    commitment: bytes,
    secret: bytes,
    round_id: int,
    session_code: str,
    requester: str,
) -> bool:
    """Recompute the full chain from the secret and compare."""
    reveal = compute_reveal(secret, round_id, session_code, requester)
    return verify_commitment(commitment, reveal)


def combine_randomness(reveal: bytes, provider_secret: bytes) -> int:
    """Mix the requester's reveal with the provider's contribution."""
    return int.from_bytes(hashlib.sha256(reveal + provider_secret).digest(), "big")


def outcome_from_randomness(value: int, faces: int = 3) -> int:
    """Reduce randomness to a die face in 1..faces."""
    return value % faces + 1


@dataclass(frozen=True)
class CommitmentBundle:
    """Everything produced for one randomness request."""
    secret: bytes
    reveal: bytes
    commitment: bytes
    round_id: int
    session_code: str
    requester: str

    @property
    def reveal_hex(self) -> str:
        return self.reveal.hex()

    @property
    def commitment_hex(self) -> str:
        return "0x" + self.commitment.hex()


def create_commitment(
    round_id: int,
    session_code: str,
    requester: str,
    secret: bytes | None = None,
) -> CommitmentBundle:
    """Generate a secret (unless given) and derive reveal and commitment."""
    secret = secret if secret is not None else generate_secret()
    reveal = compute_reveal(secret, round_id, session_code, requester)
    return CommitmentBundle(
        secret=secret,
        reveal=reveal,
        commitment=compute_commitment(reveal),
        round_id=round_id,
        session_code=session_code,
        requester=requester,
    )
