import pytest
import requests

from afrobiz_connect.client.errors import ApiError, AuthFailedError, NetworkError, PreconditionError
from afrobiz_connect.client.schemas import AuthTokens, LoginCredentials, RegisterData
from afrobiz_connect.client.session import AuthState, SessionStore
from afrobiz_connect.client.storage import ACCESS_TOKEN, FIRST_LAUNCH, REFRESH_TOKEN, SESSION_KEYS, USER

from conftest import TOKENS
from conftest import USER as USER_PAYLOAD
from conftest import fail, ok


@pytest.fixture
def session(api, storage):
    return SessionStore(api, storage)


async def signed_in(session, http):
    http.add("POST", "/auth/login", ok({"user": USER_PAYLOAD, "tokens": TOKENS}))
    await session.sign_in(LoginCredentials(email="a@b.com", password="secret123"))


async def test_sign_in_then_bookings_carry_new_token(session, http, storage):
    http.add("POST", "/auth/login", ok({"user": {"id": "u1", "email": "a@b.com"}, "tokens": TOKENS}))
    http.add("GET", "/bookings", ok({"bookings": [], "total": 0}))

    user = await session.sign_in(LoginCredentials(email="a@b.com", password="secret123"))
    await session.api.get("/bookings")

    login = http.calls_to("POST", "/auth/login")[0]
    assert login.json == {"email": "a@b.com", "password": "secret123"}
    assert "Authorization" not in login.headers
    assert http.calls_to("GET", "/bookings")[0].authorization == "Bearer t1"
    assert user.id == "u1"
    assert session.state is AuthState.AUTHENTICATED
    state = storage.load_state()
    assert state[ACCESS_TOKEN] == "t1"
    assert state[REFRESH_TOKEN] == "r1"
    assert state[USER]["id"] == "u1"


async def test_failed_sign_in_leaves_state_and_surfaces_error(session, http, storage):
    await session.initialize()
    http.add("POST", "/auth/login", fail(401, "Invalid credentials"))
    seen = []
    session.subscribe(lambda: seen.append(session.error))

    with pytest.raises(ApiError):
        await session.sign_in(LoginCredentials(email="a@b.com", password="wrong"))

    assert session.state is AuthState.UNAUTHENTICATED
    assert session.user is None
    assert session.error == "Invalid credentials"
    assert "Invalid credentials" in seen
    assert ACCESS_TOKEN not in storage.load_state()


async def test_sign_out_clears_everything_when_server_call_fails(session, http, storage):
    await signed_in(session, http)
    http.add("POST", "/auth/logout", requests.ConnectionError("offline"))

    await session.sign_out()

    state = storage.load_state()
    assert all(key not in state for key in SESSION_KEYS)
    assert session.user is None
    assert session.state is AuthState.UNAUTHENTICATED
    assert session.api.current_access_token() is None


async def test_sign_out_clears_everything_when_server_call_succeeds(session, http, storage):
    await signed_in(session, http)
    http.add("POST", "/auth/logout", ok(None))

    await session.sign_out()

    assert all(key not in storage.load_state() for key in SESSION_KEYS)
    assert session.user is None


async def test_sign_up_checks_passwords_before_network(session, http):
    data = RegisterData(
        first_name="Ama",
        last_name="Mensah",
        email="a@b.com",
        phone="+264811234567",
        password="secret123",
        confirm_password="secret124",
    )

    with pytest.raises(PreconditionError, match="do not match"):
        await session.sign_up(data)

    weak = data.model_copy(update={"password": "12345678", "confirm_password": "12345678"})
    with pytest.raises(PreconditionError):
        await session.sign_up(weak)

    assert http.calls == []


async def test_sign_up_starts_session(session, http):
    http.add("POST", "/auth/register", ok({"user": USER_PAYLOAD, "tokens": TOKENS}, status=201))
    data = RegisterData(
        first_name="Ama",
        last_name="Mensah",
        email="a@b.com",
        phone="+264811234567",
        password="secret123",
        confirm_password="secret123",
        user_type="business",
    )

    await session.sign_up(data)

    body = http.calls[0].json
    assert body["firstName"] == "Ama"
    assert body["userType"] == "business"
    assert session.is_authenticated


async def test_update_profile_requires_session(session, http):
    with pytest.raises(PreconditionError):
        await session.update_profile({"firstName": "Kofi"})

    assert http.calls == []
    assert session.error == "No user logged in"


async def test_update_profile_persists_server_user(session, http, storage):
    await signed_in(session, http)
    http.add("PATCH", "/auth/profile", ok({**USER_PAYLOAD, "firstName": "Kofi"}))

    user = await session.update_profile({"firstName": "Kofi"})

    assert user.first_name == "Kofi"
    assert storage.get_user()["firstName"] == "Kofi"


async def test_failed_profile_update_keeps_user(session, http, storage):
    await signed_in(session, http)
    http.add("PATCH", "/auth/profile", requests.ConnectionError("offline"))

    with pytest.raises(NetworkError):
        await session.update_profile({"firstName": "Kofi"})

    assert session.user.first_name == "Ama"
    assert storage.get_user()["firstName"] == "Ama"


async def test_initialize_restores_session(api, storage):
    storage.store_tokens(AuthTokens(access_token="t5", refresh_token="r5"), user=USER_PAYLOAD)
    session = SessionStore(api, storage)

    await session.initialize()

    assert session.state is AuthState.AUTHENTICATED
    assert session.user.id == "u1"
    assert api.current_access_token() == "t5"
    assert session.is_loading is False


async def test_initialize_without_token_is_logged_out(api, storage):
    storage.set(USER, USER_PAYLOAD)
    session = SessionStore(api, storage)

    await session.initialize()

    assert session.state is AuthState.UNAUTHENTICATED
    assert session.user is None


async def test_first_launch_follows_flag_not_user(api, storage):
    session = SessionStore(api, storage)
    await session.initialize()
    assert session.is_first_launch is True

    storage.set(FIRST_LAUNCH, False)
    returning = SessionStore(api, storage)
    await returning.initialize()
    assert returning.is_first_launch is False
    assert returning.state is AuthState.UNAUTHENTICATED


async def test_mark_onboarding_complete_is_idempotent(session, storage):
    await session.initialize()

    await session.mark_onboarding_complete()
    assert session.is_first_launch is False
    await session.mark_onboarding_complete()
    assert session.is_first_launch is False
    assert FIRST_LAUNCH in storage.load_state()


async def test_refresh_failure_ends_session(session, http, storage):
    await signed_in(session, http)
    http.add("GET", "/bookings", fail(401, "Token expired"))
    http.add("POST", "/auth/refresh", fail(401, "Refresh token revoked"))

    with pytest.raises(AuthFailedError):
        await session.api.get("/bookings")

    assert session.state is AuthState.UNAUTHENTICATED
    assert session.user is None
    assert session.error == "Authentication failed"


async def test_biometric_flag_survives_sign_out(session, http):
    await signed_in(session, http)
    session.set_biometric_enabled(True)
    http.add("POST", "/auth/logout", ok(None))

    await session.sign_out()

    assert session.is_biometric_enabled() is True
