from __future__ import annotations

import re

from song_tasks.engine.ownership import (
    credential_matches,
    derive_credential,
    is_orphan_credential,
    new_identity_token,
    orphan_credential,
)


def test_credential_is_deterministic_sha256_hex() -> None:
    first = derive_credential("abc", "task-1")
    second = derive_credential("abc", "task-1")

    assert first == second
    assert re.fullmatch(r"[0-9a-f]{64}", first)


def test_credential_differs_per_token_and_per_task() -> None:
    base = derive_credential("abc", "task-1")

    assert derive_credential("xyz", "task-1") != base
    assert derive_credential("abc", "task-2") != base


def test_credential_matches_only_the_issuing_token() -> None:
    stored = derive_credential("abc", "task-1")

    assert credential_matches("abc", "task-1", stored)
    assert not credential_matches("xyz", "task-1", stored)
    assert not credential_matches("abc", "task-2", stored)
    assert not credential_matches(None, "task-1", stored)
    assert not credential_matches("", "task-1", stored)


def test_orphan_credential_is_never_matched() -> None:
    sentinel = orphan_credential("task-1")

    assert is_orphan_credential(sentinel)
    assert not is_orphan_credential(derive_credential("abc", "task-1"))
    for token in ("abc", "unclaimed:", "orphan:", sentinel):
        assert not credential_matches(token, "task-1", sentinel)


def test_new_identity_token_shape_and_uniqueness() -> None:
    token = new_identity_token(now_ms=1_700_000_000_000)

    assert re.fullmatch(r"[0-9a-f]{64}-[0-9a-z]+", token)
    assert token.endswith("-loyw3v28")
    assert new_identity_token() != new_identity_token()
