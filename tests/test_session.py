"""
Tests for the Session Manager: restore, login/logout and invalidation on 401.
"""

import asyncio

import httpx
import pytest

from campusbot_client.clients import AuthClient, CatalogClient
from campusbot_client.config import TOKEN_STORAGE_KEY, USER_STORAGE_KEY
from campusbot_client.errors import RequestRejectedError, ServiceUnavailableError
from campusbot_client.events import SessionInvalidated
from campusbot_client.models import Role
from campusbot_client.session import SessionManager, SessionState
from campusbot_client.storage import MemoryStorage

STUDENT = {"id": "user-student", "email": "student@campus.edu", "name": "Sam Student", "role": "STUDENT"}


def stored_session(token="tok_saved"):
    return MemoryStorage({
        TOKEN_STORAGE_KEY: token,
        USER_STORAGE_KEY: '{"id": "user-student", "email": "student@campus.edu", "name": "Old", "role": "STUDENT"}',
    })


def unreachable(request):
    raise AssertionError(f"unexpected request {request.method} {request.url}")


@pytest.mark.asyncio
async def test_init_without_stored_session(make_api, storage, bus):
    session = SessionManager(AuthClient(make_api(unreachable)), storage, bus)
    assert session.state is SessionState.LOADING

    await session.init()

    assert session.state is SessionState.ANONYMOUS
    assert session.session is None


@pytest.mark.asyncio
async def test_init_revalidates_and_refreshes_user(make_api, bus):
    storage = stored_session()
    seen_auth = []

    def handler(request):
        seen_auth.append(request.headers.get("authorization"))
        return httpx.Response(200, json=STUDENT)

    session = SessionManager(AuthClient(make_api(handler)), storage, bus)
    await session.init()

    assert seen_auth == ["Bearer tok_saved"]
    assert session.state is SessionState.AUTHENTICATED
    assert session.token == "tok_saved"
    assert session.user.name == "Sam Student"
    assert "Sam Student" in storage.get_item(USER_STORAGE_KEY)


@pytest.mark.asyncio
async def test_init_clears_rejected_session(make_api, bus, invalidations):
    storage = stored_session()
    api = make_api(lambda request: httpx.Response(401, json={"error": "Invalid token"}))
    session = SessionManager(AuthClient(api), storage, bus)

    await session.init()

    assert session.state is SessionState.ANONYMOUS
    assert storage.get_item(TOKEN_STORAGE_KEY) is None
    assert storage.get_item(USER_STORAGE_KEY) is None
    assert [event.path for event in invalidations] == ["/auth/me"]


@pytest.mark.asyncio
async def test_init_clears_session_when_service_unreachable(make_api, bus):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    storage = stored_session()
    session = SessionManager(AuthClient(make_api(handler)), storage, bus)
    await session.init()

    assert session.state is SessionState.ANONYMOUS
    assert storage.get_item(TOKEN_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_init_discards_malformed_stored_user(make_api, bus):
    storage = MemoryStorage({TOKEN_STORAGE_KEY: "tok", USER_STORAGE_KEY: "{broken"})
    session = SessionManager(AuthClient(make_api(unreachable)), storage, bus)

    await session.init()

    assert session.state is SessionState.ANONYMOUS
    assert storage.get_item(TOKEN_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_login_persists_session(make_api, storage, bus):
    def handler(request):
        assert "authorization" not in request.headers
        return httpx.Response(200, json={"user": STUDENT, "token": "tok_new"})

    session = SessionManager(AuthClient(make_api(handler)), storage, bus)
    user = await session.login("student@campus.edu", "student123")

    assert user.role is Role.STUDENT
    assert session.state is SessionState.AUTHENTICATED
    assert storage.get_item(TOKEN_STORAGE_KEY) == "tok_new"
    assert session.has_role(Role.STUDENT)
    assert not session.has_role(Role.VENDOR, Role.ADMIN)


@pytest.mark.asyncio
async def test_login_failure_surfaces_server_message(make_api, storage, bus, invalidations):
    api = make_api(lambda request: httpx.Response(401, json={"error": "Invalid email or password"}))
    session = SessionManager(AuthClient(api), storage, bus)

    with pytest.raises(RequestRejectedError) as excinfo:
        await session.login("student@campus.edu", "wrong")

    assert excinfo.value.message == "Invalid email or password"
    assert excinfo.value.status_code == 401
    assert invalidations == []
    assert storage.get_item(TOKEN_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_login_unreachable(make_api, storage, bus):
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    session = SessionManager(AuthClient(make_api(handler)), storage, bus)
    with pytest.raises(ServiceUnavailableError):
        await session.login("student@campus.edu", "student123")


@pytest.mark.asyncio
async def test_unauthorized_call_clears_session(make_api, bus, storage, invalidations):
    def handler(request):
        if request.url.path.endswith("/auth/login"):
            return httpx.Response(200, json={"user": STUDENT, "token": "tok_new"})
        return httpx.Response(401, json={"error": "Token expired"})

    api = make_api(handler)
    session = SessionManager(AuthClient(api), storage, bus)
    api.token_provider = lambda: session.token
    await session.login("student@campus.edu", "student123")

    with pytest.raises(RequestRejectedError):
        await CatalogClient(api).list_orders()

    assert [event.path for event in invalidations] == ["/orders"]
    assert session.state is SessionState.ANONYMOUS
    assert storage.get_item(TOKEN_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_logout_is_local(make_api, bus):
    storage = stored_session()
    session = SessionManager(AuthClient(make_api(lambda request: httpx.Response(200, json=STUDENT))), storage, bus)
    await session.init()

    session.logout()

    assert session.state is SessionState.ANONYMOUS
    assert storage.get_item(USER_STORAGE_KEY) is None


@pytest.mark.asyncio
async def test_register_against_mock_api(app_api, storage, bus):
    session = SessionManager(AuthClient(app_api), storage, bus)
    app_api.token_provider = lambda: session.token

    user = await session.register("new@campus.edu", "New Student", "secret", Role.STUDENT)
    assert user.email == "new@campus.edu"
    assert session.token.startswith("tok_")

    with pytest.raises(RequestRejectedError) as excinfo:
        await session.register("new@campus.edu", "Again", "secret")
    assert excinfo.value.message == "Email already registered"
    assert session.user == user


def login_during_verification(me_response):
    """Handler whose /auth/me call waits for `release` while /auth/login answers at once."""
    entered = asyncio.Event()
    release = asyncio.Event()

    async def handler(request):
        if request.url.path.endswith("/auth/login"):
            return httpx.Response(200, json={"user": STUDENT, "token": "tok_new"})
        entered.set()
        await release.wait()
        return me_response

    return handler, entered, release


@pytest.mark.asyncio
async def test_stale_rejection_keeps_newer_login(make_api, bus, invalidations):
    storage = stored_session()
    handler, entered, release = login_during_verification(httpx.Response(401, json={"error": "Invalid token"}))
    session = SessionManager(AuthClient(make_api(handler)), storage, bus)

    init = asyncio.create_task(session.init())
    await entered.wait()
    await session.login("student@campus.edu", "student123")
    release.set()
    await init

    assert [event.token for event in invalidations] == ["tok_saved"]
    assert session.state is SessionState.AUTHENTICATED
    assert session.token == "tok_new"
    assert storage.get_item(TOKEN_STORAGE_KEY) == "tok_new"


@pytest.mark.asyncio
async def test_verified_stored_session_does_not_replace_newer_login(make_api, bus):
    storage = stored_session()
    handler, entered, release = login_during_verification(httpx.Response(200, json=STUDENT))
    session = SessionManager(AuthClient(make_api(handler)), storage, bus)

    init = asyncio.create_task(session.init())
    await entered.wait()
    await session.login("student@campus.edu", "student123")
    release.set()
    await init

    assert session.token == "tok_new"
    assert storage.get_item(TOKEN_STORAGE_KEY) == "tok_new"


@pytest.mark.asyncio
async def test_rejection_of_outdated_token_is_ignored(make_api, storage, bus):
    api = make_api(lambda request: httpx.Response(200, json={"user": STUDENT, "token": "tok_current"}))
    session = SessionManager(AuthClient(api), storage, bus)
    await session.login("student@campus.edu", "student123")

    bus.publish(SessionInvalidated(method="GET", path="/orders", reason="Invalid token", token="tok_previous"))
    assert session.token == "tok_current"

    bus.publish(SessionInvalidated(method="GET", path="/orders", reason="Invalid token", token="tok_current"))
    assert session.state is SessionState.ANONYMOUS
