"""Session store: who is logged in and whether onboarding has been seen."""
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import ValidationError

from ..shared.utils import is_password_strong
from .api import APIClient, ProgressCallback
from .auth import AuthService
from .errors import AuthFailedError, ClientError, PreconditionError
from .logging_config import get_logger
from .schemas import AuthResponse, LoginCredentials, RegisterData, User
from .storage import ACCESS_TOKEN, BIOMETRIC_ENABLED, FIRST_LAUNCH, USER, SessionStorage
from .store import ObservableStore

logger = get_logger("session")


class AuthState(str, Enum):
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


class SessionStore(ObservableStore):
    """The sole authority on the signed-in user.

    ``Unknown -> Authenticated | Unauthenticated`` on ``initialize()``. An
    authenticated session only ends through ``sign_out()`` or a refresh failure
    reported by the transport.
    """

    def __init__(self, api: APIClient, storage: SessionStorage, auth: Optional[AuthService] = None):
        super().__init__()
        self.api = api
        self.storage = storage
        self.auth = auth or AuthService(api)
        self.user: Optional[User] = None
        self.state = AuthState.UNKNOWN
        self.is_loading = True
        self.is_first_launch = True
        api.add_auth_failed_listener(self._on_auth_failed)

    @property
    def is_authenticated(self) -> bool:
        return self.state is AuthState.AUTHENTICATED

    async def initialize(self) -> None:
        self.is_loading = True
        try:
            state = self.storage.load_state()
            self.is_first_launch = FIRST_LAUNCH not in state
            user = self._load_user(state.get(USER))
            if user is not None and state.get(ACCESS_TOKEN):
                self.user = user
                self.api.set_access_token(state[ACCESS_TOKEN])
                self.state = AuthState.AUTHENTICATED
            else:
                self.state = AuthState.UNAUTHENTICATED
        finally:
            self.is_loading = False
            self._notify()

    async def sign_in(self, credentials: LoginCredentials) -> User:
        self.is_loading = True
        try:
            result = await self.auth.login(credentials)
            self._start_session(result)
            logger.info("SIGN_IN_SUCCESS user_id=%s", result.user.id)
            return result.user
        except ClientError as exc:
            logger.info("SIGN_IN_FAIL email=%s reason=%s", credentials.email, exc.message)
            self._record_error(exc, "Sign in failed")
            raise
        finally:
            self.is_loading = False
            self._notify()

    async def sign_up(self, data: RegisterData) -> User:
        self.is_loading = True
        try:
            if data.password != data.confirm_password:
                raise PreconditionError("Passwords do not match")
            if not is_password_strong(data.password):
                raise PreconditionError("Password does not meet policy requirements")
            result = await self.auth.register(data)
            self._start_session(result)
            logger.info("SIGN_UP_SUCCESS user_id=%s", result.user.id)
            return result.user
        except ClientError as exc:
            self._record_error(exc, "Sign up failed")
            raise
        finally:
            self.is_loading = False
            self._notify()

    async def sign_out(self) -> None:
        self.is_loading = True
        try:
            await self.auth.logout()
        except ClientError as exc:
            logger.warning("LOGOUT_CALL_FAIL reason=%s", exc.message)
        finally:
            await self.api.logout()
            self._end_session()
            self.is_loading = False
            self._notify()

    async def update_profile(self, updates: Dict[str, Any]) -> User:
        return await self._update_user(self.auth.update_profile, updates, "Failed to update profile")

    async def update_business_profile(self, updates: Dict[str, Any]) -> User:
        return await self._update_user(self.auth.update_business_profile, updates, "Failed to update business profile")

    async def change_password(self, current_password: str, new_password: str) -> None:
        try:
            if self.user is None:
                raise PreconditionError("No user logged in")
            if not is_password_strong(new_password):
                raise PreconditionError("New password does not meet policy")
            await self.auth.change_password(current_password, new_password)
        except ClientError as exc:
            self._record_error(exc, "Password change failed")
            raise

    async def request_password_reset(self, email: str) -> None:
        try:
            await self.auth.request_password_reset(email)
        except ClientError as exc:
            self._record_error(exc, "Password reset request failed")
            raise

    async def reset_password(self, token: str, new_password: str) -> None:
        try:
            await self.auth.reset_password(token, new_password)
        except ClientError as exc:
            self._record_error(exc, "Password reset failed")
            raise

    async def verify_email(self, token: str) -> None:
        try:
            user = await self.auth.verify_email(token)
        except ClientError as exc:
            self._record_error(exc, "Email verification failed")
            raise
        if user is not None and self.user is not None:
            self._store_user(user)

    async def resend_email_verification(self) -> None:
        try:
            await self.auth.resend_email_verification()
        except ClientError as exc:
            self._record_error(exc, "Failed to resend verification email")
            raise

    async def upload_avatar(
        self, content: bytes, filename: str = "avatar.jpg", on_progress: Optional[ProgressCallback] = None
    ) -> str:
        try:
            if self.user is None:
                raise PreconditionError("No user logged in")
            avatar_url = await self.auth.upload_avatar(content, filename, on_progress)
        except ClientError as exc:
            self._record_error(exc, "Avatar upload failed")
            raise
        self._store_user(self.user.model_copy(update={"avatar": avatar_url}))
        return avatar_url

    async def refresh_user(self) -> None:
        user = self._load_user(self.storage.get_user())
        if user is not None and self.is_authenticated:
            self.user = user
            self._notify()

    async def mark_onboarding_complete(self) -> None:
        self.storage.set(FIRST_LAUNCH, False)
        self.is_first_launch = False
        self._notify()

    def set_biometric_enabled(self, enabled: bool) -> None:
        self.storage.set(BIOMETRIC_ENABLED, enabled)

    def is_biometric_enabled(self) -> bool:
        return bool(self.storage.get(BIOMETRIC_ENABLED, False))

    # --- internals ---

    async def _update_user(self, call, updates: Dict[str, Any], default_message: str) -> User:
        try:
            if self.user is None:
                raise PreconditionError("No user logged in")
            user = await call(updates)
        except ClientError as exc:
            self._record_error(exc, default_message)
            raise
        self._store_user(user)
        return user

    def _start_session(self, result: AuthResponse) -> None:
        self.storage.store_tokens(result.tokens, user=result.user.to_wire())
        self.api.set_access_token(result.tokens.access_token)
        self.user = result.user
        self.state = AuthState.AUTHENTICATED

    def _store_user(self, user: User) -> None:
        self.storage.set(USER, user.to_wire())
        self.user = user
        self._notify()

    def _end_session(self) -> None:
        self.user = None
        self.state = AuthState.UNAUTHENTICATED

    def _on_auth_failed(self, error: AuthFailedError) -> None:
        if self.state is AuthState.AUTHENTICATED:
            logger.warning("SESSION_ENDED reason=%s", error.message)
        self._end_session()
        self.error = error.message
        self._notify()

    @staticmethod
    def _load_user(raw: Optional[Dict[str, Any]]) -> Optional[User]:
        if not raw:
            return None
        try:
            return User.model_validate(raw)
        except ValidationError:
            logger.warning("STORED_USER_INVALID")
            return None
