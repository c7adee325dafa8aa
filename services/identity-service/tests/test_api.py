from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from identity.api import routes
from identity.api.dependencies import IdentityServices
from identity.domain.authentication import AuthenticationService
from identity.security.rate_limiter import TokenBucketRateLimiter
from identity.security.tokens import TokenIssuer

from conftest import token_from

SECRET = "api-test-secret"


class ManualClock:
    def __init__(self) -> None:
        self.value = 0.0

    def __call__(self) -> float:
        return self.value


def _build_client(repository, hasher, registration, password_reset, limiter, trusted_proxy_hops=0):
    issuer = TokenIssuer(SECRET, issuer="eurovision.identity", ttl_seconds=86400)
    services = IdentityServices(
        registration=registration,
        password_reset=password_reset,
        authentication=AuthenticationService(repository, hasher, issuer),
        rate_limiter=limiter,
        trusted_proxy_hops=trusted_proxy_hops,
    )
    app = FastAPI()
    app.include_router(routes.router)
    app.state.identity = services
    return TestClient(app), issuer


@pytest.fixture
def api_client(repository, hasher, registration, password_reset):
    """Provide a FastAPI test client with isolated state and a generous limiter."""
    limiter = TokenBucketRateLimiter(capacity=1_000, refill_per_second=0)
    client, issuer = _build_client(repository, hasher, registration, password_reset, limiter)
    with client:
        yield client, issuer


def _register(client, notifier, email="fan@eurovision.tv", password="pw123456"):
    assert client.post("/auth/register/initiate", json={"email": email}).status_code == 200
    token = token_from(notifier.sent[-1][2])
    assert (
        client.post("/auth/register/complete", json={"token": token, "password": password}).status_code
        == 200
    )


def test_register_login_and_me_end_to_end(api_client, notifier, repository):
    client, issuer = api_client

    _register(client, notifier)
    response = client.post("/auth/login", json={"email": "fan@eurovision.tv", "password": "pw123456"})

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["expires_in"] == 86400
    claims = issuer.decode(body["token"])
    assert claims["user_id"] == repository.get("fan@eurovision.tv").account_id
    assert claims["exp"] == claims["iat"] + 86400

    me = client.get("/auth/me", headers={"Authorization": f"Bearer {body['token']}"})
    assert me.status_code == 200
    assert me.json()["user_id"] == claims["user_id"]
    assert me.json()["email"] == "fan@eurovision.tv"


def test_initiate_rejects_invalid_email(api_client):
    client, _ = api_client

    response = client.post("/auth/register/initiate", json={"email": "nope"})

    assert response.status_code == 400
    assert response.json()["detail"] == "invalid email format"


def test_initiate_conflict_is_bad_request(api_client):
    client, _ = api_client
    client.post("/auth/register/initiate", json={"email": "fan@eurovision.tv"})

    response = client.post("/auth/register/initiate", json={"email": "fan@eurovision.tv"})

    assert response.status_code == 400
    assert response.json()["detail"] == "email already exists"


def test_initiate_hides_notifier_failure_details(api_client, notifier, repository):
    client, _ = api_client
    notifier.fail = True

    response = client.post("/auth/register/initiate", json={"email": "fan@eurovision.tv"})

    assert response.status_code == 500
    assert response.json()["detail"] == "internal error"
    assert len(repository) == 0


def test_complete_with_unknown_token(api_client):
    client, _ = api_client

    response = client.post("/auth/register/complete", json={"token": "bogus", "password": "pw123456"})

    assert response.status_code == 400
    assert response.json()["detail"] == "invalid token"


def test_complete_with_weak_password(api_client, notifier):
    client, _ = api_client
    client.post("/auth/register/initiate", json={"email": "fan@eurovision.tv"})
    token = token_from(notifier.sent[-1][2])

    response = client.post("/auth/register/complete", json={"token": token, "password": "short"})

    assert response.status_code == 400


def test_complete_with_expired_token(api_client, notifier, clock):
    client, _ = api_client
    client.post("/auth/register/initiate", json={"email": "fan@eurovision.tv"})
    token = token_from(notifier.sent[-1][2])
    clock.advance(hours=25)

    response = client.post("/auth/register/complete", json={"token": token, "password": "pw123456"})

    assert response.status_code == 400
    assert response.json()["detail"] == "token expired"


def test_reset_always_answers_ok(api_client, notifier):
    client, _ = api_client
    _register(client, notifier)

    unknown = client.post("/auth/password/reset", json={"email": "ghost@eurovision.tv"})
    known = client.post("/auth/password/reset", json={"email": "fan@eurovision.tv"})
    notifier.fail = True
    failing = client.post("/auth/password/reset", json={"email": "fan@eurovision.tv"})

    assert unknown.status_code == known.status_code == failing.status_code == 200
    assert unknown.json() == known.json() == failing.json()


def test_password_reset_flow(api_client, notifier):
    client, _ = api_client
    _register(client, notifier)
    client.post("/auth/password/reset", json={"email": "fan@eurovision.tv"})
    token = token_from(notifier.sent[-1][2])

    response = client.post(
        "/auth/password/complete", json={"token": token, "new_password": "new-password-1"}
    )
    assert response.status_code == 200

    old = client.post("/auth/login", json={"email": "fan@eurovision.tv", "password": "pw123456"})
    new = client.post("/auth/login", json={"email": "fan@eurovision.tv", "password": "new-password-1"})
    assert old.status_code == 401
    assert new.status_code == 200

    replay = client.post(
        "/auth/password/complete", json={"token": token, "new_password": "new-password-2"}
    )
    assert replay.status_code == 400


def test_login_failures_do_not_reveal_account_existence(api_client, notifier):
    client, _ = api_client
    _register(client, notifier)

    unknown = client.post("/auth/login", json={"email": "ghost@eurovision.tv", "password": "pw123456"})
    wrong = client.post("/auth/login", json={"email": "fan@eurovision.tv", "password": "wrong-pw"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()


def test_login_unconfirmed_is_forbidden(api_client):
    client, _ = api_client
    client.post("/auth/register/initiate", json={"email": "fan@eurovision.tv"})

    response = client.post("/auth/login", json={"email": "fan@eurovision.tv", "password": "pw123456"})

    assert response.status_code == 403
    assert response.json()["detail"] == "email not confirmed"


@pytest.mark.parametrize(
    "headers",
    [
        {},
        {"Authorization": "Token abc"},
        {"Authorization": "Bearer"},
        {"Authorization": "Bearer not-a-jwt"},
    ],
)
def test_me_requires_valid_bearer_token(api_client, headers):
    client, _ = api_client

    response = client.get("/auth/me", headers=headers)

    assert response.status_code == 401
    assert response.json()["detail"] == "unauthorized"


def test_rate_limit_rejects_fourth_request_without_store_access(
    repository, hasher, registration, password_reset, notifier
):
    clock = ManualClock()
    limiter = TokenBucketRateLimiter(capacity=3, refill_per_second=1 / 60, clock=clock)
    client, _ = _build_client(repository, hasher, registration, password_reset, limiter)

    with client:
        for index in range(3):
            response = client.post("/auth/password/reset", json={"email": f"u{index}@eurovision.tv"})
            assert response.status_code == 200

        denied = client.post("/auth/register/initiate", json={"email": "late@eurovision.tv"})
        assert denied.status_code == 429
        assert denied.json()["detail"] == "rate limited"
        assert denied.headers["Retry-After"] == "60"
        assert repository.mutations == []
        assert notifier.sent == []

        clock.value += 61
        allowed = client.post("/auth/register/initiate", json={"email": "late@eurovision.tv"})
        assert allowed.status_code == 200


def test_rate_limit_is_shared_across_operations(
    repository, hasher, registration, password_reset
):
    limiter = TokenBucketRateLimiter(capacity=3, refill_per_second=0)
    client, _ = _build_client(repository, hasher, registration, password_reset, limiter)

    with client:
        client.post("/auth/register/initiate", json={"email": "fan@eurovision.tv"})
        client.post("/auth/password/reset", json={"email": "fan@eurovision.tv"})
        client.post("/auth/register/complete", json={"token": "bogus", "password": "pw123456"})
        response = client.post("/auth/login", json={"email": "fan@eurovision.tv", "password": "x"})

    assert response.status_code == 429


def test_forwarded_header_is_ignored_without_trusted_proxies(
    repository, hasher, registration, password_reset
):
    limiter = TokenBucketRateLimiter(capacity=3, refill_per_second=0)
    client, _ = _build_client(repository, hasher, registration, password_reset, limiter)

    with client:
        statuses = [
            client.post(
                "/auth/login",
                json={"email": "fan@eurovision.tv", "password": "pw123456"},
                headers={"X-Forwarded-For": f"10.9.{index}.1"},
            ).status_code
            for index in range(50)
        ]

    assert statuses[:3] == [401, 401, 401]
    assert set(statuses[3:]) == {429}
    assert len(limiter) == 1


def test_trusted_proxy_hop_selects_client_address(
    repository, hasher, registration, password_reset
):
    limiter = TokenBucketRateLimiter(capacity=3, refill_per_second=0)
    client, _ = _build_client(
        repository, hasher, registration, password_reset, limiter, trusted_proxy_hops=1
    )

    def login(forwarded):
        return client.post(
            "/auth/login",
            json={"email": "fan@eurovision.tv", "password": "pw123456"},
            headers={"X-Forwarded-For": forwarded},
        ).status_code

    with client:
        # entries left of the proxy's own are caller-supplied
        assert [login(f"10.9.{index}.1, 198.51.100.1") for index in range(4)] == [
            401,
            401,
            401,
            429,
        ]
        assert login("198.51.100.2") == 401


@pytest.mark.parametrize("refill, retry_after", [(1 / 30, "30"), (10 / 60, "6"), (0, None)])
def test_retry_after_follows_refill_rate(
    repository, hasher, registration, password_reset, refill, retry_after
):
    limiter = TokenBucketRateLimiter(capacity=1, refill_per_second=refill)
    client, _ = _build_client(repository, hasher, registration, password_reset, limiter)

    with client:
        client.post("/auth/password/reset", json={"email": "fan@eurovision.tv"})
        denied = client.post("/auth/password/reset", json={"email": "fan@eurovision.tv"})

    assert denied.status_code == 429
    assert denied.headers.get("Retry-After") == retry_after
