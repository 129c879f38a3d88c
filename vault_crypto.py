"""
Vault Liveness — Proof-of-Life Payload
======================================
Turns a VerificationResult into the payload handed to the credential
minting step. The challenge hash commits to the score, the verification
time and a random nonce:

    challenge_hash = "0x" + SHA-256(canonical JSON)

Canonical JSON = json.dumps(..., sort_keys=True, separators=(",", ":")).
Submitting the hash anywhere is the caller's business.
"""

import hashlib
import json
import logging
import secrets
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Optional

from vault_types import VerificationResult

_log = logging.getLogger("VaultCrypto")


@dataclass(frozen=True)
class ProofOfLife:
    score: int
    issued_at: str             # ISO-8601 UTC
    nonce: str
    challenge_hash: str
    wallet: Optional[str] = None

    def to_dict(self) -> dict:
        return asdict(self)


def _canonical(payload: dict) -> bytes:
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode("utf-8")


def _challenge_hash(score: int, issued_at: str, nonce: str, wallet: Optional[str]) -> str:
    payload = {"score": score, "timestamp": issued_at, "nonce": nonce}
    if wallet:
        payload["wallet"] = wallet.lower()
    return "0x" + hashlib.sha256(_canonical(payload)).hexdigest()


def build_proof(
    result: VerificationResult,
    wallet: Optional[str] = None,
    nonce: Optional[str] = None,
) -> ProofOfLife:
    """Build the proof payload for a successful verification.

    Args:
        result: The engine's VerificationResult.
        wallet: Optional account address the proof is bound to.
        nonce: Hex nonce; random 128-bit when omitted.
    """
    issued_at = datetime.fromtimestamp(result.verified_at, tz=timezone.utc).isoformat()
    nonce = nonce or secrets.token_hex(16)
    digest = _challenge_hash(result.score, issued_at, nonce, wallet)
    _log.info("Proof built — score=%d hash=%s…", result.score, digest[:18])
    return ProofOfLife(
        score=result.score,
        issued_at=issued_at,
        nonce=nonce,
        challenge_hash=digest,
        wallet=wallet,
    )


def verify_proof(proof: ProofOfLife) -> bool:
    """Recompute the challenge hash and compare in constant time."""
    expected = _challenge_hash(proof.score, proof.issued_at, proof.nonce, proof.wallet)
    return secrets.compare_digest(expected, proof.challenge_hash)
