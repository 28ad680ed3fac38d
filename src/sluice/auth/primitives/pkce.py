"""PKCE (Proof Key for Code Exchange) primitives for OAuth 2.1.

Implements RFC 7636 verifier generation and the S256 challenge transform.
"""

import base64
import hashlib
import secrets
import string

from sluice.auth.models.errors import PKCEError

_VERIFIER_ALPHABET = string.ascii_letters + string.digits + "-._~"


def generate_code_verifier(length: int = 128) -> str:
    """Generate a cryptographically secure code verifier.

    RFC 7636 Section 4.1: 43-128 characters from the unreserved set
    [A-Z] / [a-z] / [0-9] / "-" / "." / "_" / "~".
    """
    if not (43 <= length <= 128):
        raise PKCEError(f"code_verifier length must be 43-128, got {length}")
    return "".join(secrets.choice(_VERIFIER_ALPHABET) for _ in range(length))


def generate_code_challenge(code_verifier: str) -> str:
    """BASE64URL-ENCODE(SHA256(ASCII(code_verifier))), unpadded."""
    digest = hashlib.sha256(code_verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")
