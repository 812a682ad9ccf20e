from datetime import timedelta

from auth import ACCESS_COOKIE, REFRESH_COOKIE, create_token, decode_token
from conftest import TEST_SETTINGS


def signup(client, email="asha@example.com", password="s3cret-pass"):
    return client.post("/api/auth/signup", json={"name": "Asha", "email": email, "password": password})


def test_signup_sets_cookies_and_hides_hash(client, db):
    res = signup(client)

    assert res.status_code == 201
    body = res.json()
    assert body["email"] == "asha@example.com"
    assert body["role"] == "customer"
    assert "password_hash" not in body
    assert ACCESS_COOKIE in res.cookies
    assert REFRESH_COOKIE in res.cookies
    assert db["user"].find_one({"email": "asha@example.com"})["password_hash"] != "s3cret-pass"


def test_signup_rejects_duplicate_email(client):
    signup(client)
    assert signup(client).status_code == 400


def test_login_and_profile_via_cookie(client):
    signup(client)
    client.cookies.clear()

    assert client.post("/api/auth/login", json={"email": "asha@example.com", "password": "wrong"}).status_code == 400

    res = client.post("/api/auth/login", json={"email": "asha@example.com", "password": "s3cret-pass"})
    assert res.status_code == 200

    profile = client.get("/api/auth/profile")
    assert profile.status_code == 200
    assert profile.json()["name"] == "Asha"


def test_refresh_token_issues_new_access_cookie(client):
    signup(client)

    res = client.post("/api/auth/refresh-token")

    assert res.status_code == 200
    assert ACCESS_COOKIE in res.cookies


def test_refresh_token_requires_cookie(client):
    assert client.post("/api/auth/refresh-token").status_code == 401


def test_logout_clears_session(client):
    signup(client)
    client.post("/api/auth/logout")
    assert client.get("/api/auth/profile").status_code == 401


def test_tokens_are_typed():
    refresh = create_token({"sub": "abc"}, "refresh", timedelta(minutes=5), TEST_SETTINGS)
    assert decode_token(refresh, "refresh", TEST_SETTINGS) == "abc"
    assert decode_token(refresh, "access", TEST_SETTINGS) is None


def test_expired_token_is_rejected(client, db):
    from conftest import make_user

    user_id = make_user(db)
    token = create_token({"sub": user_id}, "access", timedelta(minutes=-1), TEST_SETTINGS)
    res = client.get("/api/auth/profile", headers={"Authorization": f"Bearer {token}"})
    assert res.status_code == 401
