"""
tests/test_api_routes.py -- Integration tests for the /v1 REST surface.

These tests exercise the full stack: FastAPI routing -> access pipeline
dependencies -> UserStore/SocialStore operations -> envelope serialization.

Coverage:
  - Register -> activate -> login scenario; token subject is the new user
  - Duplicate email 409, bad activation token 404, reused token 404
  - Login failures share one message whether the email is unknown,
    unverified or the password is wrong
  - Session gate: missing header, wrong scheme, garbage token and a token
    for a nonexistent user are all the same 401
  - Posts: create/show/comment, 400 on malformed id, 404 on absent id,
    ownership + role gate on update (moderator) and delete (admin)
  - Follow/unfollow conflicts and the personalized feed with query validation
  - Login brute-force limit (slowapi) answers 429 with Retry-After

Fixtures used (from conftest.py):
  - api_client: (client, user_store) -- TestClient with the fixed-window gate disabled
  - signup: registers, activates and logs in a fresh user -> (user_id, token)
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from api.limiter import limiter
from auth.store import UserStore
from conftest import DEFAULT_PASSWORD, bearer, unique_email


class TestRegistrationFlow:
    def test_register_activate_login(self, api_client: tuple[TestClient, UserStore]) -> None:
        client, _store = api_client
        email = unique_email("scenario")
        resp = client.post("/v1/register", json={"email": email, "password": "password123"})
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["status"] is True
        user = body["data"]["user"]
        assert user["email"] == email
        assert user["email_verified_at"] is None
        assert "hashed_password" not in user
        invitation = body["data"]["token"]

        activated = client.put(f"/v1/users/activate/{invitation}")
        assert activated.status_code == 200
        assert activated.json() == {"status": True, "message": "Your email has been verified"}

        login = client.post("/v1/login", json={"email": email, "password": "password123"})
        assert login.status_code == 200
        assert login.headers["Cache-Control"] == "no-store"
        token = login.json()["token"]
        authenticator = client.app.state.authenticator
        assert authenticator.subject_id(authenticator.validate(token)) == user["id"]

    def test_email_is_case_insensitive(self, api_client, signup) -> None:
        client, _store = api_client
        email = unique_email("case")
        signup(email)
        resp = client.post("/v1/login", json={"email": email.upper(), "password": DEFAULT_PASSWORD})
        assert resp.status_code == 200

    def test_duplicate_email_conflict(self, api_client, signup) -> None:
        client, _store = api_client
        email = unique_email("dup")
        signup(email)
        resp = client.post("/v1/register", json={"email": email, "password": "another-pass"})
        assert resp.status_code == 409
        assert resp.json() == {"status": False, "message": "the email already exists", "code": "duplicate_email"}

    def test_unknown_activation_token(self, api_client) -> None:
        client, _store = api_client
        resp = client.put("/v1/users/activate/00000000-0000-4000-8000-000000000000")
        assert resp.status_code == 404
        assert resp.json()["status"] is False
        assert "data" not in resp.json()

    def test_activation_token_is_single_use(self, api_client) -> None:
        client, _store = api_client
        resp = client.post("/v1/register", json={"email": unique_email(), "password": "password123"})
        token = resp.json()["data"]["token"]
        assert client.put(f"/v1/users/activate/{token}").status_code == 200
        assert client.put(f"/v1/users/activate/{token}").status_code == 404

    def test_invalid_body_is_422(self, api_client) -> None:
        client, _store = api_client
        short = client.post("/v1/register", json={"email": unique_email(), "password": "short"})
        assert short.status_code == 422
        assert short.json()["code"] == "validation_error"
        assert short.json()["status"] is False
        bad_email = client.post("/v1/register", json={"email": "not-an-email", "password": "password123"})
        assert bad_email.status_code == 422


class TestLogin:
    def test_login_failures_are_indistinguishable(self, api_client, signup) -> None:
        client, _store = api_client
        verified = unique_email("verified")
        signup(verified)
        unverified = unique_email("pending")
        client.post("/v1/register", json={"email": unverified, "password": DEFAULT_PASSWORD})

        attempts = [
            {"email": unique_email("nobody"), "password": DEFAULT_PASSWORD},
            {"email": unverified, "password": DEFAULT_PASSWORD},
            {"email": verified, "password": "wrong-password"},
        ]
        responses = [client.post("/v1/login", json=a) for a in attempts]
        assert {r.status_code for r in responses} == {400}
        assert {r.json()["message"] for r in responses} == {"incorrect email or password"}
        assert all("token" not in r.json() for r in responses)

    def test_login_brute_force_limit(self, api_client) -> None:
        client, _store = api_client
        limiter.reset()
        limiter.enabled = True
        headers = {"X-Forwarded-For": "198.51.100.77"}
        body = {"email": unique_email("brute"), "password": "wrong-password"}
        responses = [client.post("/v1/login", json=body, headers=headers) for _ in range(15)]
        limiter.reset()

        statuses = [r.status_code for r in responses]
        assert statuses[0] == 400
        assert 429 in statuses
        limited = next(r for r in responses if r.status_code == 429)
        assert limited.headers["Retry-After"] == "60"
        assert limited.json()["code"] == "rate_limited"


class TestSessionGate:
    def test_missing_header(self, api_client) -> None:
        client, _store = api_client
        resp = client.get("/v1/users/feed")
        assert resp.status_code == 401
        assert resp.json() == {"status": False, "message": "unauthorized", "code": "unauthorized"}

    def test_wrong_scheme_and_garbage(self, api_client, signup) -> None:
        client, _store = api_client
        _uid, token = signup()
        for header in (f"Basic {token}", f"Token {token}", "Bearer not-a-jwt", f"Bearer {token}x"):
            resp = client.get("/v1/users/feed", headers={"Authorization": header})
            assert resp.status_code == 401, header
            assert resp.json()["message"] == "unauthorized"

    def test_token_for_nonexistent_user(self, api_client) -> None:
        client, _store = api_client
        token = client.app.state.authenticator.issue(987_654)
        resp = client.get("/v1/users/feed", headers=bearer(token))
        assert resp.status_code == 401
        assert resp.json()["message"] == "unauthorized"

    def test_auth_checked_before_post_lookup(self, api_client) -> None:
        client, _store = api_client
        assert client.get("/v1/post/999999/show").status_code == 401
        assert client.patch("/v1/post/abc/update", json={"title": "x"}).status_code == 401
        assert client.delete("/v1/post/999999/delete").status_code == 401


class TestPosts:
    def test_create_show_and_comment(self, api_client, signup) -> None:
        client, _store = api_client
        uid, token = signup()
        created = client.post(
            "/v1/post/create",
            json={"title": "Hello", "content": "First post", "tags": ["intro"]},
            headers=bearer(token),
        )
        assert created.status_code == 201, created.text
        post = created.json()["data"]
        assert post["user_id"] == uid
        assert post["tags"] == ["intro"]

        other_id, other_token = signup()
        comment = client.post(f"/v1/post/{post['id']}/comments", json={"content": "welcome"}, headers=bearer(other_token))
        assert comment.status_code == 201
        assert comment.json()["data"]["user_id"] == other_id

        shown = client.get(f"/v1/post/{post['id']}/show", headers=bearer(token))
        assert shown.status_code == 200
        data = shown.json()["data"]
        assert data["title"] == "Hello"
        assert [c["content"] for c in data["comments"]] == ["welcome"]
        assert data["comments"][0]["author_email"] is not None

    def test_malformed_and_missing_post_ids(self, api_client, signup) -> None:
        client, _store = api_client
        _uid, token = signup()
        bad = client.get("/v1/post/abc/show", headers=bearer(token))
        assert bad.status_code == 400
        assert bad.json()["code"] == "validation_error"
        missing = client.get("/v1/post/999999/show", headers=bearer(token))
        assert missing.status_code == 404
        assert client.post("/v1/post/999999/comments", json={"content": "x"}, headers=bearer(token)).status_code == 404

    def test_oversized_post_id_is_400(self, api_client, signup) -> None:
        client, _store = api_client
        _uid, token = signup()
        for path in ("/v1/post/99999999999999999999/show", "/v1/post/9223372036854775808/show"):
            resp = client.get(path, headers=bearer(token))
            assert resp.status_code == 400, path
            assert resp.json()["code"] == "validation_error"
        largest = client.get("/v1/post/9223372036854775807/show", headers=bearer(token))
        assert largest.status_code == 404

    def test_invalid_post_body(self, api_client, signup) -> None:
        client, _store = api_client
        _uid, token = signup()
        resp = client.post("/v1/post/create", json={"title": "", "content": "c"}, headers=bearer(token))
        assert resp.status_code == 422
        too_long = client.post("/v1/post/create", json={"title": "t" * 101, "content": "c"}, headers=bearer(token))
        assert too_long.status_code == 422

    def test_update_requires_ownership_and_moderator(self, api_client, signup) -> None:
        client, store = api_client
        owner_id, owner_token = signup()
        admin_id, admin_token = signup()
        store.set_role(admin_id, "admin")
        post_id = client.post(
            "/v1/post/create", json={"title": "t", "content": "c"}, headers=bearer(owner_token)
        ).json()["data"]["id"]

        # Owner, but only "user": below moderator.
        resp = client.patch(f"/v1/post/{post_id}/update", json={"title": "x"}, headers=bearer(owner_token))
        assert resp.status_code == 403
        assert resp.json() == {"status": False, "message": "forbidden", "code": "forbidden"}

        # Admin, but not the owner: same uniform 403.
        resp = client.patch(f"/v1/post/{post_id}/update", json={"title": "x"}, headers=bearer(admin_token))
        assert resp.status_code == 403
        assert resp.json()["message"] == "forbidden"

        store.set_role(owner_id, "moderator")
        resp = client.patch(f"/v1/post/{post_id}/update", json={"title": "edited"}, headers=bearer(owner_token))
        assert resp.status_code == 200, resp.text
        assert resp.json()["data"]["title"] == "edited"
        assert resp.json()["data"]["content"] == "c"

    def test_delete_requires_admin_owner(self, api_client, signup) -> None:
        client, store = api_client
        owner_id, owner_token = signup()
        store.set_role(owner_id, "moderator")
        post_id = client.post(
            "/v1/post/create", json={"title": "t", "content": "c"}, headers=bearer(owner_token)
        ).json()["data"]["id"]

        assert client.delete(f"/v1/post/{post_id}/delete", headers=bearer(owner_token)).status_code == 403

        store.set_role(owner_id, "admin")
        assert client.delete(f"/v1/post/{post_id}/delete", headers=bearer(owner_token)).status_code == 200
        assert client.get(f"/v1/post/{post_id}/show", headers=bearer(owner_token)).status_code == 404


class TestUsersAndFeed:
    def test_get_user_profile(self, api_client, signup) -> None:
        client, _store = api_client
        uid, token = signup()
        resp = client.get(f"/v1/users/{uid}", headers=bearer(token))
        assert resp.status_code == 200
        assert resp.json()["data"]["id"] == uid
        assert "hashed_password" not in resp.json()["data"]
        assert client.get("/v1/users/999999", headers=bearer(token)).status_code == 404
        assert client.get("/v1/users/abc", headers=bearer(token)).status_code == 400

    def test_follow_conflicts(self, api_client, signup) -> None:
        client, _store = api_client
        me, token = signup()
        other, _ = signup()

        resp = client.put(f"/v1/users/{me}/follow", headers=bearer(token))
        assert resp.status_code == 409
        assert resp.json()["code"] == "self_follow"

        assert client.put(f"/v1/users/{other}/follow", headers=bearer(token)).status_code == 200
        resp = client.put(f"/v1/users/{other}/follow", headers=bearer(token))
        assert resp.status_code == 409
        assert resp.json()["code"] == "duplicate_follow"

        assert client.put("/v1/users/999999/follow", headers=bearer(token)).status_code == 404

        assert client.put(f"/v1/users/{other}/unfollow", headers=bearer(token)).status_code == 200
        assert client.put(f"/v1/users/{other}/unfollow", headers=bearer(token)).status_code == 200

    def test_feed_shows_followed_authors(self, api_client, signup) -> None:
        client, _store = api_client
        reader, reader_token = signup()
        author, author_token = signup()
        _stranger, stranger_token = signup()
        client.post("/v1/post/create", json={"title": "from author", "content": "c", "tags": ["go"]}, headers=bearer(author_token))
        client.post("/v1/post/create", json={"title": "from stranger", "content": "c"}, headers=bearer(stranger_token))
        client.put(f"/v1/users/{author}/follow", headers=bearer(reader_token))

        resp = client.get("/v1/users/feed", headers=bearer(reader_token))
        assert resp.status_code == 200
        items = resp.json()["data"]
        assert [i["title"] for i in items] == ["from author"]
        assert items[0]["author"]["id"] == author
        assert items[0]["comments_count"] == 0

        tagged = client.get("/v1/users/feed", params={"tags": "go,rust"}, headers=bearer(reader_token))
        assert [i["title"] for i in tagged.json()["data"]] == ["from author"]
        untagged = client.get("/v1/users/feed", params={"tags": "rust"}, headers=bearer(reader_token))
        assert untagged.json()["data"] == []

    def test_feed_query_validation(self, api_client, signup) -> None:
        client, _store = api_client
        _uid, token = signup()
        for params in (
            {"limit": "0"},
            {"limit": "21"},
            {"limit": "abc"},
            {"offset": "-1"},
            {"offset": "99999999999999999999"},
            {"sort": "sideways"},
            {"tags": "a,b,c,d,e,f"},
            {"search": "s" * 1001},
        ):
            resp = client.get("/v1/users/feed", params=params, headers=bearer(token))
            assert resp.status_code == 400, params
            assert resp.json()["code"] == "validation_error"
        ok = client.get("/v1/users/feed", params={"limit": "20", "sort": "asc"}, headers=bearer(token))
        assert ok.status_code == 200


class TestErrorEnvelope:
    def test_unknown_route(self, api_client) -> None:
        client, _store = api_client
        resp = client.get("/v1/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["status"] is False
