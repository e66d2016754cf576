# =============================================================================
# Auth Service — API Key & Invitation Token Generation
# =============================================================================
#
# Pure functions, no FastAPI dependency. Both API keys and invitation tokens
# are high-entropy random secrets, so a single SHA-256 digest is enough for
# storage and lookup.
# =============================================================================

from __future__ import annotations

import hashlib
import secrets


def generate_api_key() -> tuple[str, str, str]:
    """
    Generate a new API key.

    Returns:
        (raw_key, key_prefix, key_hash):
        - raw_key: Full key to return to the user (only visible once)
        - key_prefix: First 8 chars for identification in logs
        - key_hash: SHA-256 hex digest for storage in the database
    """
    raw_key = f"gh-{secrets.token_hex(32)}"
    key_prefix = raw_key[:8]
    key_hash = hash_secret(raw_key)
    return raw_key, key_prefix, key_hash


def generate_invitation_token() -> tuple[str, str]:
    """Return (raw_token, token_hash). The raw token goes in the invite link."""
    raw_token = secrets.token_urlsafe(32)
    return raw_token, hash_secret(raw_token)


def hash_secret(raw: str) -> str:
    """Hash a key or token using SHA-256. Returns 64-char hex digest."""
    return hashlib.sha256(raw.encode()).hexdigest()
