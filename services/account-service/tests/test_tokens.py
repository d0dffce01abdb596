from __future__ import annotations

import hashlib

from app.security.tokens import generate_refresh_token, hash_refresh_token


def test_refresh_tokens_are_unique_opaque_strings():
    tokens = {generate_refresh_token() for _ in range(50)}

    assert len(tokens) == 50
    assert all(isinstance(token, str) and len(token) >= 64 for token in tokens)


def test_hash_refresh_token_is_stable_sha256():
    token = generate_refresh_token()

    assert hash_refresh_token(token) == hash_refresh_token(token)
    assert hash_refresh_token(token) == hashlib.sha256(token.encode("utf-8")).hexdigest()
