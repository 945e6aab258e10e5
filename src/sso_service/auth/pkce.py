"""Random tokens for SSO flows: state, nonce and PKCE pairs."""

import base64
import hashlib
import secrets

# 32 bytes = 256 bits of entropy
TOKEN_BYTES = 32


def generate_state_token() -> str:
    """Generate a URL-safe random token for state, RelayState or nonce."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def generate_pkce_pair() -> tuple[str, str]:
    """Generate a PKCE code verifier and its S256 challenge.

    Returns:
        Tuple of (code_verifier, code_challenge)
    """
    verifier = base64.urlsafe_b64encode(secrets.token_bytes(TOKEN_BYTES)).rstrip(b"=").decode("ascii")
    return verifier, pkce_challenge(verifier)


def pkce_challenge(verifier: str) -> str:
    """Compute the S256 code challenge for a verifier (RFC 7636)."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")
