from auth import check_password, generate_token, hash_password, token_from_headers, verify_token
from config import Settings


def _settings(**overrides) -> Settings:
    return Settings(database_url="sqlite:///:memory:", secret_key="unit-secret", **overrides)


def test_password_hash_round_trip() -> None:
    hashed = hash_password("secret1", rounds=4)
    assert hashed != "secret1"
    assert check_password("secret1", hashed)
    assert not check_password("secret2", hashed)
    assert not check_password("secret1", "not-a-bcrypt-hash")


def test_token_carries_user_id() -> None:
    settings = _settings()
    token = generate_token(settings, 42, "a@example.com")
    assert verify_token(settings, token) == 42


def test_token_signed_with_other_key_is_rejected() -> None:
    token = generate_token(_settings(), 42, "a@example.com")
    other = Settings(database_url="sqlite:///:memory:", secret_key="other-secret")
    assert verify_token(other, token) is None
    assert verify_token(_settings(), token + "x") is None


def test_expired_token_is_rejected() -> None:
    token = generate_token(_settings(), 42, "a@example.com")
    assert verify_token(_settings(token_max_age_secs=-1), token) is None


def test_bearer_header_takes_precedence_over_cookie() -> None:
    assert token_from_headers("Bearer abc", "cookie-token") == "abc"
    assert token_from_headers(None, "cookie-token") == "cookie-token"
    assert token_from_headers("Basic xyz", None) is None
