"""Ownership credentials for anonymous clients.

A credential is ``sha256(identity_token || task_id)`` rendered as lowercase
hex. It is the only access check: no session table is consulted. Orphan
records carry a sentinel credential that contains a ``:`` and therefore can
never equal a hex digest produced for a real client.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

ORPHAN_CREDENTIAL_PREFIX = "orphan:"
_BASE36_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def derive_credential(identity_token: str, task_id: str) -> str:
    if not identity_token:
        raise ValueError("identity_token is required")
    if not task_id:
        raise ValueError("task_id is required")
    return hashlib.sha256(f"{identity_token}{task_id}".encode("utf-8")).hexdigest()


def orphan_credential(task_id: str) -> str:
    digest = hashlib.sha256(f"unclaimed:{task_id}".encode("utf-8")).hexdigest()
    return f"{ORPHAN_CREDENTIAL_PREFIX}{digest}"


def is_orphan_credential(credential: str) -> bool:
    return credential.startswith(ORPHAN_CREDENTIAL_PREFIX)


def credential_matches(identity_token: str | None, task_id: str, stored_credential: str) -> bool:
    """Return True only when the caller's token reproduces the stored credential."""
    if not identity_token or not task_id or not stored_credential:
        return False
    if is_orphan_credential(stored_credential):
        return False
    expected = derive_credential(identity_token, task_id)
    return hmac.compare_digest(expected, stored_credential)


def new_identity_token(now_ms: int | None = None) -> str:
    """Issue a fresh identity token: 256 random bits plus a base36 issue time."""
    issued_ms = int(time.time() * 1000) if now_ms is None else now_ms
    return f"{secrets.token_hex(32)}-{_to_base36(issued_ms)}"


def credential_prefix(credential: str) -> str:
    """Short, log-safe form of a credential."""
    return f"{credential[:16]}..."


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_ALPHABET[remainder])
    return "".join(reversed(digits))
