"""HTTP API client for interacting with the AfroBiz Connect server."""
import asyncio
import json
from typing import Any, Callable, Dict, List, Optional

import requests
import urllib3

from .config import API_BASE_URL, API_VERSION, REQUEST_TIMEOUT_SECONDS
from .errors import (
    ApiError,
    AuthFailedError,
    ClientError,
    NetworkError,
    NotFoundError,
    ParseError,
    RequestTimeoutError,
)
from .logging_config import get_logger
from .schemas import ApiResponse, AuthTokens, UploadFile
from .storage import SessionStorage

logger = get_logger("api")

ProgressCallback = Callable[[float], None]
AuthFailedListener = Callable[[AuthFailedError], None]


class _ProgressReader:
    """File-like request body that reports upload progress as it is read."""

    def __init__(self, body: bytes, on_progress: Optional[ProgressCallback]):
        self._body = body
        self._offset = 0
        self._on_progress = on_progress

    def __len__(self) -> int:
        return len(self._body)

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            size = len(self._body) - self._offset
        chunk = self._body[self._offset : self._offset + size]
        self._offset += len(chunk)
        if chunk and self._on_progress:
            self._on_progress(self._offset / len(self._body) * 100)
        return chunk


class APIClient:
    """Single point of outbound requests.

    Attaches the bearer token, enforces the timeout, decodes the JSON envelope
    and recovers from a 401 with one refresh followed by one retry. Concurrent
    requests that hit a 401 together share a single refresh call.
    """

    def __init__(
        self,
        storage: SessionStorage,
        base_url: str = API_BASE_URL,
        api_version: str = API_VERSION,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = f"{base_url.rstrip('/')}/api/{api_version}"
        self.storage = storage
        self.timeout = timeout
        self.session = session or requests.Session()
        self._access_token: Optional[str] = storage.get_access_token()
        self._refresh_task: Optional["asyncio.Future[AuthTokens]"] = None
        self._auth_failed_listeners: List[AuthFailedListener] = []

    # --- token handling ---

    def current_access_token(self) -> Optional[str]:
        return self._access_token or self.storage.get_access_token()

    def set_access_token(self, token: Optional[str]) -> None:
        self._access_token = token

    def add_auth_failed_listener(self, listener: AuthFailedListener) -> None:
        self._auth_failed_listeners.append(listener)

    def remove_auth_failed_listener(self, listener: AuthFailedListener) -> None:
        if listener in self._auth_failed_listeners:
            self._auth_failed_listeners.remove(listener)

    async def logout(self) -> None:
        self.storage.clear_session()
        self._access_token = None

    def _headers(self, requires_auth: bool, json_body: bool = True) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if json_body:
            headers["Content-Type"] = "application/json"
        if requires_auth:
            token = self.current_access_token()
            if token:
                headers["Authorization"] = f"Bearer {token}"
        return headers

    # --- request pipeline ---

    async def request(
        self,
        endpoint: str,
        method: str = "GET",
        body: Any = None,
        params: Any = None,
        requires_auth: bool = True,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        def send_kwargs() -> Dict[str, Any]:
            kwargs: Dict[str, Any] = {"headers": self._headers(requires_auth)}
            if body is not None:
                kwargs["data"] = json.dumps(body)
            if params:
                kwargs["params"] = params
            return kwargs

        return await self._perform(method, endpoint, send_kwargs, requires_auth, timeout)

    async def get(self, endpoint: str, params: Any = None, requires_auth: bool = True) -> ApiResponse:
        return await self.request(endpoint, "GET", params=params, requires_auth=requires_auth)

    async def post(self, endpoint: str, data: Any = None, requires_auth: bool = True) -> ApiResponse:
        return await self.request(endpoint, "POST", body=data, requires_auth=requires_auth)

    async def put(self, endpoint: str, data: Any = None, requires_auth: bool = True) -> ApiResponse:
        return await self.request(endpoint, "PUT", body=data, requires_auth=requires_auth)

    async def patch(self, endpoint: str, data: Any = None, requires_auth: bool = True) -> ApiResponse:
        return await self.request(endpoint, "PATCH", body=data, requires_auth=requires_auth)

    async def delete(self, endpoint: str, requires_auth: bool = True) -> ApiResponse:
        return await self.request(endpoint, "DELETE", requires_auth=requires_auth)

    async def upload(
        self,
        endpoint: str,
        files: List[UploadFile],
        fields: Optional[Dict[str, str]] = None,
        on_progress: Optional[ProgressCallback] = None,
        timeout: Optional[float] = None,
    ) -> ApiResponse:
        """POST a multipart form, reporting percentage progress while the body is sent."""
        form: List[Any] = list((fields or {}).items())
        form.extend((f.field, (f.filename, f.content, f.content_type)) for f in files)
        body, content_type = urllib3.encode_multipart_formdata(form)

        def send_kwargs() -> Dict[str, Any]:
            headers = self._headers(requires_auth=True, json_body=False)
            headers["Content-Type"] = content_type
            return {"headers": headers, "data": _ProgressReader(body, on_progress)}

        return await self._perform("POST", endpoint, send_kwargs, True, timeout)

    async def health_check(self) -> bool:
        try:
            response = await self.get("/health", requires_auth=False)
        except ClientError as exc:
            logger.warning("HEALTH_CHECK_FAIL reason=%s", exc.message)
            return False
        return response.success

    async def _perform(
        self,
        method: str,
        endpoint: str,
        send_kwargs: Callable[[], Dict[str, Any]],
        requires_auth: bool,
        timeout: Optional[float],
    ) -> ApiResponse:
        url = f"{self.base_url}{endpoint}"
        sent_token = self.current_access_token() if requires_auth else None
        resp = await self._send(method, url, timeout, **send_kwargs())

        if resp.status_code == 401 and requires_auth:
            await self._refresh_access_token(sent_token)
            # One retry only: a second 401 is reported as-is.
            resp = await self._send(method, url, timeout, **send_kwargs())

        return self._handle_response(resp)

    async def _send(self, method: str, url: str, timeout: Optional[float], **kwargs: Any) -> requests.Response:
        limit = timeout or self.timeout
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(self.session.request, method, url, timeout=limit, **kwargs),
                timeout=limit,
            )
        except (asyncio.TimeoutError, requests.Timeout) as exc:
            logger.info("REQUEST_TIMEOUT method=%s url=%s", method, url)
            raise RequestTimeoutError(details=str(exc)) from exc
        except requests.RequestException as exc:
            logger.info("NETWORK_ERROR method=%s url=%s error=%s", method, url, exc)
            raise NetworkError(details=str(exc)) from exc

    def _handle_response(self, resp: requests.Response) -> ApiResponse:
        content_type = resp.headers.get("Content-Type", "")
        if "application/json" not in content_type:
            raise ParseError(status=resp.status_code, details=content_type or None)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise ParseError(status=resp.status_code, details=str(exc)) from exc
        if not isinstance(payload, dict):
            raise ParseError(status=resp.status_code, details="envelope is not an object")

        if not resp.ok:
            error_cls = NotFoundError if resp.status_code == 404 else ApiError
            raise error_cls(
                payload.get("message") or "Request failed",
                status=resp.status_code,
                code=payload.get("code"),
                details=payload.get("errors") or payload.get("details"),
            )

        if "success" not in payload:
            raise ParseError(status=resp.status_code, details="envelope has no 'success' field")
        try:
            envelope = ApiResponse.model_validate(payload)
        except ValueError as exc:
            raise ParseError(status=resp.status_code, details=str(exc)) from exc
        envelope.status_code = resp.status_code
        return envelope

    # --- refresh ---

    async def _refresh_access_token(self, stale_token: Optional[str]) -> None:
        current = self.current_access_token()
        if stale_token and current and current != stale_token:
            # Another request already rotated the token while this one was in flight.
            return
        if self._refresh_task is None:
            self._refresh_task = asyncio.ensure_future(self._do_refresh())
        await asyncio.shield(self._refresh_task)

    async def _do_refresh(self) -> AuthTokens:
        try:
            refresh_token = self.storage.get_refresh_token()
            if not refresh_token:
                raise AuthFailedError(details="no refresh token available")
            resp = await self._send(
                "POST",
                f"{self.base_url}/auth/refresh",
                None,
                headers=self._headers(requires_auth=False),
                data=json.dumps({"refreshToken": refresh_token}),
            )
            data = self._handle_response(resp).raise_for_success("Token refresh failed")
            tokens = AuthTokens.model_validate(data)
        except ClientError as exc:
            await self._fail_authentication(exc)
        else:
            self.storage.store_tokens(tokens)
            self._access_token = tokens.access_token
            logger.info("TOKEN_REFRESH_SUCCESS")
            return tokens
        finally:
            self._refresh_task = None

    async def _fail_authentication(self, cause: ClientError) -> None:
        logger.warning("TOKEN_REFRESH_FAIL reason=%s", cause.message)
        await self.logout()
        error = AuthFailedError(details=cause.details)
        for listener in list(self._auth_failed_listeners):
            try:
                listener(error)
            except Exception:  # noqa: BLE001
                logger.exception("AUTH_FAILED_LISTENER_ERROR")
        raise error from cause

