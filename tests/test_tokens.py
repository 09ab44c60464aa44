from datetime import datetime, timedelta, timezone

import jwt
import pytest
from jwt.utils import base64url_encode

from app.config import settings
from app.services.tokens import TokenError, create_session_token, decode_session_token


def test_token_round_trip():
    token = create_session_token("user-1", "ann@x.com", "User")
    claims = decode_session_token(token)
    assert claims.user_id == "user-1"
    assert claims.email == "ann@x.com"
    assert claims.role == "User"


def test_token_payload_and_lifetime():
    issued = datetime.now(timezone.utc).replace(microsecond=0)
    token = create_session_token("user-1", "ann@x.com", "Admin", now=issued)
    payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
    assert payload["userId"] == "user-1"
    assert payload["email"] == "ann@x.com"
    assert payload["role"] == "Admin"
    assert payload["exp"] - payload["iat"] == 7 * 24 * 60 * 60
    assert jwt.get_unverified_header(token)["alg"] == "HS256"


def test_expired_token_rejected():
    issued = datetime.now(timezone.utc) - timedelta(days=8)
    token = create_session_token("user-1", "ann@x.com", "User", now=issued)
    with pytest.raises(TokenError, match="expired"):
        decode_session_token(token)


def test_token_signed_with_other_key_rejected():
    payload = {
        "userId": "user-1",
        "email": "ann@x.com",
        "role": "System Admin",
        "exp": int((datetime.now(timezone.utc) + timedelta(days=1)).timestamp()),
    }
    forged = jwt.encode(payload, "another-key-entirely-0123456789abcdef", algorithm="HS256")
    with pytest.raises(TokenError, match="Invalid token"):
        decode_session_token(forged)


def test_tampered_payload_rejected():
    token = create_session_token("user-1", "ann@x.com", "User")
    header, payload, signature = token.split(".")
    forged_payload = base64url_encode(
        b'{"userId":"user-1","email":"ann@x.com","role":"System Admin","exp":9999999999}'
    ).decode()
    with pytest.raises(TokenError):
        decode_session_token(f"{header}.{forged_payload}.{signature}")


def test_missing_token_rejected():
    with pytest.raises(TokenError):
        decode_session_token("")
