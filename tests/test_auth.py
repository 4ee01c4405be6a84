from datetime import datetime, timedelta, timezone

import pytest
from jose import jwt

from auth import create_access_token, create_refresh_token, verify_token
from config import get_settings
from errors import InvalidToken, MalformedToken
from factories import make_user

CURRENT_USER = "/api/v1/users/current-user"


def signed(claims, secret=None, **overrides):
    settings = get_settings()
    now = datetime.now(timezone.utc)
    payload = {"sub": "1", "type": "access", "iat": now, "exp": now + timedelta(minutes=5)}
    payload.update(claims)
    payload.update(overrides)
    return jwt.encode(payload, secret or settings.access_token_secret, algorithm=settings.jwt_algorithm)


@pytest.fixture
def ada(seed):
    return seed(make_user("ada", email="a@x.com", full_name="Ada L"))


def test_access_token_carries_profile(ada):
    claims = verify_token(create_access_token(ada), "access")
    assert claims["sub"] == str(ada.id)
    assert claims["username"] == "ada"
    assert claims["email"] == "a@x.com"
    assert claims["full_name"] == "Ada L"
    assert claims["exp"] > claims["iat"]


def test_refresh_token_carries_only_identity(ada):
    claims = verify_token(create_refresh_token(ada), "refresh")
    assert claims["sub"] == str(ada.id)
    assert "username" not in claims and "email" not in claims


def test_tokens_issued_together_differ(ada):
    assert create_refresh_token(ada) != create_refresh_token(ada)


def test_refresh_expiry_is_longer_than_access(ada):
    access = verify_token(create_access_token(ada), "access")
    refresh = verify_token(create_refresh_token(ada), "refresh")
    assert refresh["exp"] - refresh["iat"] > access["exp"] - access["iat"]


def test_token_classes_are_not_interchangeable(ada):
    with pytest.raises(InvalidToken):
        verify_token(create_refresh_token(ada), "access")
    with pytest.raises(InvalidToken):
        verify_token(create_access_token(ada), "refresh")


def test_expired_token_is_invalid():
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    token = signed({}, iat=past, exp=past + timedelta(minutes=1))
    with pytest.raises(InvalidToken):
        verify_token(token, "access")


def test_wrong_secret_is_invalid():
    with pytest.raises(InvalidToken):
        verify_token(signed({}, secret="someone-elses-secret"), "access")


def test_tampered_payload_is_invalid(ada):
    header, _, signature = create_access_token(ada).split(".")
    forged_payload = signed({"sub": "999"}).split(".")[1]
    with pytest.raises(InvalidToken):
        verify_token(f"{header}.{forged_payload}.{signature}", "access")


@pytest.mark.parametrize("token", ["", "garbage", "a.b", "not.a.token", "....."])
def test_malformed_tokens(token):
    with pytest.raises(MalformedToken):
        verify_token(token, "access")


def test_token_without_subject_is_invalid():
    with pytest.raises(InvalidToken):
        verify_token(signed({"sub": ""}), "access")


# --- guard ---
def test_guard_requires_token(client):
    res = client.get(CURRENT_USER)
    assert res.status_code == 401
    assert res.json()["message"] == "Unauthorized request"
    assert res.json()["success"] is False


def test_guard_accepts_raw_header(client, ada):
    res = client.get(CURRENT_USER, headers={"Authorization": create_access_token(ada)})
    assert res.status_code == 200
    data = res.json()["data"]
    assert data["username"] == "ada"
    assert data["fullName"] == "Ada L"
    assert "password" not in data and "refreshToken" not in data


def test_guard_accepts_bearer_header(client, ada):
    res = client.get(CURRENT_USER, headers={"Authorization": "Bearer " + create_access_token(ada)})
    assert res.status_code == 200


def test_guard_prefers_cookie(client, ada, seed):
    grace = seed(make_user("grace"))
    client.cookies.set("accessToken", create_access_token(grace))
    res = client.get(CURRENT_USER, headers={"Authorization": create_access_token(ada)})
    assert res.status_code == 200
    assert res.json()["data"]["username"] == "grace"


@pytest.mark.parametrize("header", ["BOGUS", "Bearer BOGUS", "Bearer", "Bearer BOGUS BOGUS"])
def test_guard_rejects_garbage(client, header):
    res = client.get(CURRENT_USER, headers={"Authorization": header})
    assert res.status_code == 401


def test_guard_rejects_expired(client, ada):
    past = datetime.now(timezone.utc) - timedelta(hours=2)
    token = signed({"sub": str(ada.id)}, iat=past, exp=past + timedelta(minutes=1))
    res = client.get(CURRENT_USER, headers={"Authorization": token})
    assert res.status_code == 401
    assert res.json()["message"] == "Invalid access token"


def test_guard_rejects_refresh_token(client, ada):
    res = client.get(CURRENT_USER, headers={"Authorization": create_refresh_token(ada)})
    assert res.status_code == 401


def test_guard_rejects_deleted_user(client):
    res = client.get(CURRENT_USER, headers={"Authorization": signed({"sub": "4242"})})
    assert res.status_code == 401
