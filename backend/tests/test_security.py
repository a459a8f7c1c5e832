from datetime import datetime, timedelta, timezone

from jose import jwt

from config import settings
from core.security import (
    TOKEN_ALGORITHM,
    check_password,
    generate_otp,
    hash_password,
    issue_access_token,
    read_access_token,
)


def _in_five_minutes() -> datetime:
    return datetime.now(timezone.utc) + timedelta(minutes=5)


def test_access_token_carries_user_and_role():
    claims = read_access_token(issue_access_token("usr_a", "admin"))

    assert claims.sub == "usr_a"
    assert claims.role == "admin"


def test_expired_token_is_rejected():
    token = issue_access_token("usr_a", "user", ttl=timedelta(minutes=-1))

    assert read_access_token(token) is None


def test_token_from_another_issuer_is_rejected():
    token = jwt.encode({"sub": "usr_a", "role": "admin", "iss": "someone-else", "exp": _in_five_minutes()},
                       settings.JWT_SECRET, algorithm=TOKEN_ALGORITHM)

    assert read_access_token(token) is None


def test_token_without_role_is_rejected():
    token = jwt.encode({"sub": "usr_a", "iss": "flavorfleet", "exp": _in_five_minutes()}, settings.JWT_SECRET, algorithm=TOKEN_ALGORITHM)

    assert read_access_token(token) is None


def test_garbage_token_is_rejected():
    assert read_access_token("not-a-jwt") is None


def test_check_password():
    hashed = hash_password("Str0ng!Pass")

    assert check_password("Str0ng!Pass", hashed) == (True, None)
    assert check_password("Wr0ng!Pass", hashed)[0] is False
    # Compte sans mot de passe utilisable
    assert check_password("Str0ng!Pass", "!") == (False, None)


def test_generated_otp_length_follows_argument():
    code = generate_otp(8)

    assert len(code) == 8
    assert code.isdigit()
