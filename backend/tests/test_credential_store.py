"""Credential store: bcrypt passwords and signed session tokens."""

import logging
import time

import jwt
from jwt.utils import base64url_encode

from backend.core.security import CredentialStore, build_credential_store

SECRET = "credential-store-secret-" + "k" * 32


def test_hash_and_verify_password():
    store = CredentialStore(SECRET)
    hashed = store.hash_password("secret123")

    assert hashed != "secret123"
    assert hashed.startswith("$2")
    assert store.verify_password("secret123", hashed) is True
    assert store.verify_password("secret124", hashed) is False


def test_verify_password_with_missing_or_corrupt_hash_is_false():
    store = CredentialStore(SECRET)
    assert store.verify_password("secret123", None) is False
    assert store.verify_password("secret123", "") is False
    assert store.verify_password("secret123", "not-a-bcrypt-hash") is False


def test_issue_and_verify_round_trip_claims():
    store = CredentialStore(SECRET)
    token = store.issue_token("user_1", "a@example.com", True)

    claims = store.verify_token(token)

    assert claims is not None
    assert claims.user_id == "user_1"
    assert claims.email == "a@example.com"
    assert claims.is_admin is True


def test_token_carries_issuer_and_seven_day_expiry():
    store = CredentialStore(SECRET)
    token = store.issue_token("user_1", "a@example.com", False)

    payload = jwt.decode(token, SECRET, algorithms=["HS256"], issuer="socialstoryai")

    assert payload["iss"] == "socialstoryai"
    assert payload["userId"] == "user_1"
    assert payload["isAdmin"] is False
    assert payload["exp"] - payload["iat"] == 7 * 24 * 60 * 60


def test_verify_token_failures_are_indistinguishable():
    store = CredentialStore(SECRET)

    other_secret = CredentialStore("another-secret-" + "z" * 40).issue_token("user_1", "a@example.com", False)
    expired = CredentialStore(SECRET, time_fn=lambda: time.time() - 8 * 24 * 60 * 60).issue_token(
        "user_1", "a@example.com", False
    )
    header, payload, signature = store.issue_token("user_1", "a@example.com", False).split(".")
    forged_payload = base64url_encode(
        b'{"userId":"user_1","email":"a@example.com","isAdmin":true,"iss":"socialstoryai","exp":9999999999}'
    ).decode("ascii")
    tampered = ".".join([header, forged_payload, signature])

    results = [store.verify_token(t) for t in (other_secret, expired, tampered)]

    assert results == [None, None, None]


def test_verify_token_rejects_wrong_issuer_and_garbage():
    store = CredentialStore(SECRET)
    wrong_issuer = CredentialStore(SECRET, issuer="someone-else").issue_token("user_1", "a@example.com", False)

    assert store.verify_token(wrong_issuer) is None
    assert store.verify_token("not.a.token") is None
    assert store.verify_token("") is None
    assert store.verify_token(None) is None


def test_verify_token_rejects_missing_identity_claims():
    store = CredentialStore(SECRET)
    token = jwt.encode(
        {"iss": "socialstoryai", "exp": int(time.time()) + 60},
        SECRET,
        algorithm="HS256",
    )
    assert store.verify_token(token) is None


def test_missing_secret_uses_ephemeral_secret_and_warns(caplog):
    with caplog.at_level(logging.WARNING, logger="socialstory.security"):
        first = CredentialStore(None)
        second = CredentialStore("")

    assert any("ephemeral" in r.getMessage() for r in caplog.records)
    token = first.issue_token("user_1", "a@example.com", False)
    # Auth still works within the process but the key is not shared or guessable
    assert first.verify_token(token) is not None
    assert second.verify_token(token) is None


def test_build_credential_store_reads_settings(test_settings):
    store = build_credential_store(test_settings)
    assert store.issuer == test_settings.JWT_ISSUER
    assert store.expires_seconds == test_settings.JWT_EXPIRES_DAYS * 86400
