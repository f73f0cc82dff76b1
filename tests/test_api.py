import asyncio
import threading

import pytest
import requests

from afrobiz_connect.client.api import APIClient
from afrobiz_connect.client.errors import (
    ApiError,
    AuthFailedError,
    NetworkError,
    NotFoundError,
    ParseError,
    RequestTimeoutError,
)
from afrobiz_connect.client.schemas import AuthTokens, UploadFile
from afrobiz_connect.client.storage import ACCESS_TOKEN, REFRESH_TOKEN, USER

from conftest import USER as USER_PAYLOAD
from conftest import BASE_URL, fail, make_response, ok


def seed_session(storage, access="t0", refresh="r0"):
    storage.store_tokens(AuthTokens(access_token=access, refresh_token=refresh, expires_in=3600), user=USER_PAYLOAD)


def bearer_gate(token):
    """Reply 200 only for requests carrying ``token``."""

    def reply(call):
        if call.authorization == f"Bearer {token}":
            return ok({"bookings": [], "total": 0})
        return fail(401, "Token expired")

    return reply


async def test_attaches_bearer_token_from_storage(api, http, storage):
    seed_session(storage, access="t9")
    http.add("GET", "/bookings", ok({"bookings": []}))

    await api.get("/bookings")

    assert http.calls[0].authorization == "Bearer t9"


async def test_request_without_token_has_no_auth_header(api, http):
    http.add("GET", "/bookings", fail(401, "Unauthorized"))
    http.add("POST", "/auth/refresh", fail(401, "no token"))

    with pytest.raises(AuthFailedError):
        await api.get("/bookings")

    assert "Authorization" not in http.calls[0].headers


async def test_public_request_skips_auth_header(api, http, storage):
    seed_session(storage)
    http.add("GET", "/services", ok({"services": []}))

    await api.get("/services", requires_auth=False)

    assert "Authorization" not in http.calls[0].headers


async def test_401_refreshes_once_and_retries_with_new_token(api, http, storage):
    seed_session(storage)
    http.add("GET", "/bookings", bearer_gate("t1"))
    http.add("POST", "/auth/refresh", ok({"accessToken": "t1", "refreshToken": "r1", "expiresIn": 3600}))

    response = await api.get("/bookings")

    assert response.success
    assert len(http.calls_to("POST", "/auth/refresh")) == 1
    assert http.calls_to("POST", "/auth/refresh")[0].json == {"refreshToken": "r0"}
    gets = http.calls_to("GET", "/bookings")
    assert [c.authorization for c in gets] == ["Bearer t0", "Bearer t1"]
    state = storage.load_state()
    assert state[ACCESS_TOKEN] == "t1"
    assert state[REFRESH_TOKEN] == "r1"


async def test_second_401_after_refresh_is_terminal(api, http, storage):
    seed_session(storage)
    http.add("GET", "/bookings", fail(401, "Still unauthorized"))
    http.add("POST", "/auth/refresh", ok({"accessToken": "t1", "refreshToken": "r1"}))

    with pytest.raises(ApiError) as exc:
        await api.get("/bookings")

    assert exc.value.status == 401
    assert len(http.calls_to("GET", "/bookings")) == 2
    assert len(http.calls_to("POST", "/auth/refresh")) == 1


async def test_refresh_failure_clears_session_and_notifies(api, http, storage):
    seed_session(storage)
    storage.set("first_launch", False)
    http.add("GET", "/bookings", fail(401, "Token expired"))
    http.add("POST", "/auth/refresh", fail(401, "Refresh token revoked"))
    failures = []
    api.add_auth_failed_listener(failures.append)

    with pytest.raises(AuthFailedError) as exc:
        await api.get("/bookings")

    assert exc.value.code == "AUTH_FAILED"
    state = storage.load_state()
    assert ACCESS_TOKEN not in state
    assert REFRESH_TOKEN not in state
    assert USER not in state
    assert state["first_launch"] is False
    assert api.current_access_token() is None
    assert len(failures) == 1
    assert len(http.calls_to("GET", "/bookings")) == 1


async def test_concurrent_401s_share_one_refresh(api, http, storage):
    seed_session(storage)
    http.add("GET", "/bookings", bearer_gate("t1"))
    http.add("POST", "/auth/refresh", ok({"accessToken": "t1", "refreshToken": "r1"}))

    results = await asyncio.gather(*(api.get("/bookings") for _ in range(5)))

    assert all(r.success for r in results)
    assert len(http.calls_to("POST", "/auth/refresh")) == 1


async def test_requires_auth_false_does_not_refresh(api, http, storage):
    seed_session(storage)
    http.add("POST", "/auth/login", fail(401, "Invalid credentials"))

    with pytest.raises(ApiError) as exc:
        await api.post("/auth/login", {"email": "a@b.com", "password": "x"}, requires_auth=False)

    assert exc.value.message == "Invalid credentials"
    assert http.calls_to("POST", "/auth/refresh") == []


async def test_timeout_is_a_distinct_error(api, http):
    http.add("GET", "/services", requests.Timeout("read timed out"))

    with pytest.raises(RequestTimeoutError) as exc:
        await api.get("/services", requires_auth=False)

    assert exc.value.status == 408
    assert exc.value.code == "TIMEOUT"


async def test_hung_request_is_aborted_after_timeout(storage, http):
    release = threading.Event()

    def hang(call):
        release.wait(timeout=2)
        return ok({"services": []})

    http.add("GET", "/services", hang)
    api = APIClient(storage, base_url=BASE_URL, api_version="v1", timeout=0.05, session=http)
    loop = asyncio.get_running_loop()
    started = loop.time()

    try:
        with pytest.raises(RequestTimeoutError) as exc:
            await api.get("/services", requires_auth=False)
    finally:
        release.set()

    assert loop.time() - started < 1.0
    assert exc.value.status == 408
    assert exc.value.code == "TIMEOUT"


async def test_connection_failure_is_network_error(api, http):
    http.add("GET", "/services", requests.ConnectionError("connection refused"))

    with pytest.raises(NetworkError) as exc:
        await api.get("/services", requires_auth=False)

    assert exc.value.code == "NETWORK_ERROR"


@pytest.mark.parametrize(
    "response",
    [
        make_response(200, "<html>maintenance</html>", content_type="text/html"),
        make_response(200, "{not json"),
        make_response(200, [1, 2, 3]),
        make_response(200, {"data": {}}),
    ],
    ids=["html", "broken-json", "not-an-object", "no-success-field"],
)
async def test_malformed_responses_raise_parse_error(api, http, response):
    http.add("GET", "/services", response)

    with pytest.raises(ParseError):
        await api.get("/services", requires_auth=False)


async def test_server_error_carries_status_and_code(api, http):
    http.add("POST", "/bookings", make_response(422, {"success": False, "message": "Slot taken", "code": "SLOT"}))

    with pytest.raises(ApiError) as exc:
        await api.post("/bookings", {})

    assert (exc.value.message, exc.value.status, exc.value.code) == ("Slot taken", 422, "SLOT")


async def test_404_is_not_found(api, http):
    http.add("GET", "/services/9", fail(404, "Service not found"))

    with pytest.raises(NotFoundError):
        await api.get("/services/9", requires_auth=False)


async def test_success_false_envelope_raises_on_demand(api, http):
    http.add("GET", "/services", ok(None, success=False, message="Catalog offline"))

    response = await api.get("/services", requires_auth=False)

    with pytest.raises(ApiError, match="Catalog offline"):
        response.raise_for_success("Failed to fetch services")


async def test_upload_sends_multipart_and_reports_progress(api, http, storage):
    seed_session(storage)
    seen = {}

    def reply(call):
        seen["content_type"] = call.headers["Content-Type"]
        seen["body"] = call.data.read()
        return ok({"avatarUrl": "https://cdn/a.jpg"})

    http.add("POST", "/auth/upload-avatar", reply)
    progress = []

    await api.upload(
        "/auth/upload-avatar",
        [UploadFile(field="avatar", filename="a.jpg", content=b"\xff\xd8jpeg", content_type="image/jpeg")],
        on_progress=progress.append,
    )

    assert seen["content_type"].startswith("multipart/form-data; boundary=")
    assert b'name="avatar"; filename="a.jpg"' in seen["body"]
    assert progress[-1] == 100


async def test_health_check_never_raises(api, http):
    http.add("GET", "/health", requests.ConnectionError("down"))

    assert await api.health_check() is False
