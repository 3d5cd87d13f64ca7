"""PKCE credential generation (:rfc:`7636`).

The verifier is 32 random bytes encoded as unpadded base64url, giving 43
characters from the unreserved alphabet. The challenge is the unpadded
base64url SHA-256 digest of the verifier (``S256`` method).
"""

from __future__ import annotations

import base64
import hashlib
import secrets

VERIFIER_BYTES = 32
CHALLENGE_METHOD = "S256"


def base64url_encode(raw: bytes) -> str:
    """Encode *raw* as base64url without ``=`` padding."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_verifier(num_bytes: int = VERIFIER_BYTES) -> str:
    """Return a fresh PKCE ``code_verifier``.

    Args:
        num_bytes: Entropy to draw; at least 32 bytes.
    """
    if num_bytes < VERIFIER_BYTES:
        raise ValueError(f"PKCE verifier needs at least {VERIFIER_BYTES} bytes of entropy")
    return base64url_encode(secrets.token_bytes(num_bytes))


def derive_challenge(verifier: str) -> str:
    """Return the ``S256`` ``code_challenge`` for *verifier*."""
    digest = hashlib.sha256(verifier.encode("utf-8")).digest()
    return base64url_encode(digest)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a ``(code_verifier, code_challenge)`` pair."""
    verifier = generate_verifier()
    return verifier, derive_challenge(verifier)


def generate_state() -> str:
    """Return a random ``state`` value for one authorization attempt."""
    return secrets.token_urlsafe(24)
