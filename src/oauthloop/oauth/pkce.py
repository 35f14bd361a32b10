"""PKCE (Proof Key for Code Exchange) and CSRF state generation.

:rfc:`7636` -- the client proves that the party redeeming an authorization
code is the one that requested it. The verifier is drawn from the operating
system's CSPRNG, the challenge is the base64url-encoded SHA-256 digest of
the verifier, and only the S256 method is used.
"""

from __future__ import annotations

import base64
import hashlib
import secrets

from oauthloop.models import PKCEParameters

# 32 random bytes encode to 43 characters, 96 bytes to 128 (the RFC limits)
MIN_VERIFIER_BYTES = 32
MAX_VERIFIER_BYTES = 96
MIN_STATE_BYTES = 16


def random_bytes(length: int) -> bytes:
    """Return *length* cryptographically random bytes."""
    return secrets.token_bytes(length)


def base64url_encode(data: bytes) -> str:
    """Encode *data* as unpadded, URL-safe base64.

    The result contains only ``[A-Za-z0-9_-]`` and can be placed in a URL
    query value unmodified.
    """
    encoded = base64.urlsafe_b64encode(data).decode("ascii")
    return encoded.replace("=", "").replace("+", "-").replace("/", "_")


def generate_verifier(length_bytes: int = MIN_VERIFIER_BYTES) -> str:
    """Generate a PKCE ``code_verifier`` from *length_bytes* random bytes.

    Raises:
        ValueError: If *length_bytes* would produce a verifier outside the
            43-128 character range.
    """
    if not MIN_VERIFIER_BYTES <= length_bytes <= MAX_VERIFIER_BYTES:
        raise ValueError(
            f"length_bytes must be between {MIN_VERIFIER_BYTES} and {MAX_VERIFIER_BYTES}, "
            f"got {length_bytes}"
        )
    return base64url_encode(random_bytes(length_bytes))


def derive_challenge(verifier: str) -> str:
    """Derive the S256 ``code_challenge`` for *verifier*. Pure and deterministic."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64url_encode(digest)


def generate_pkce(length_bytes: int = MIN_VERIFIER_BYTES) -> PKCEParameters:
    """Generate a fresh verifier/challenge pair for one flow run."""
    verifier = generate_verifier(length_bytes)
    return PKCEParameters(
        code_verifier=verifier,
        code_challenge=derive_challenge(verifier),
        method="S256",
    )


def generate_state(length_bytes: int = 32) -> str:
    """Generate an opaque CSRF ``state`` value.

    Raises:
        ValueError: If fewer than 16 bytes of entropy are requested.
    """
    if length_bytes < MIN_STATE_BYTES:
        raise ValueError(f"state needs at least {MIN_STATE_BYTES} random bytes, got {length_bytes}")
    return base64url_encode(random_bytes(length_bytes))
