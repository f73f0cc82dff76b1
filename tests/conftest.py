import asyncio
import json
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests

from afrobiz_connect.client.api import APIClient
from afrobiz_connect.client.storage import SessionStorage

BASE_URL = "https://api.test"
API_PREFIX = "/api/v1"


def make_response(status: int = 200, payload: Any = None, content_type: str = "application/json") -> requests.Response:
    """Build a real ``requests.Response`` the way the adapter would hand it back."""
    resp = requests.Response()
    resp.status_code = status
    resp.reason = ""
    resp.url = BASE_URL
    resp.encoding = "utf-8"
    if content_type:
        resp.headers["Content-Type"] = content_type
    if payload is None:
        resp._content = b""
    elif isinstance(payload, (bytes, str)):
        resp._content = payload.encode() if isinstance(payload, str) else payload
    else:
        resp._content = json.dumps(payload).encode()
    return resp


def ok(data: Any = None, status: int = 200, **extra: Any) -> requests.Response:
    return make_response(status, {"success": True, "data": data, **extra})


def fail(status: int, message: str = "error", **extra: Any) -> requests.Response:
    return make_response(status, {"success": False, "message": message, **extra})


@dataclass
class Call:
    method: str
    path: str
    headers: Dict[str, str]
    data: Any = None
    params: Any = None

    @property
    def json(self) -> Any:
        return json.loads(self.data) if isinstance(self.data, str) else None

    @property
    def authorization(self) -> Optional[str]:
        return self.headers.get("Authorization")


Reply = Any  # requests.Response, an exception instance, or a callable(Call) -> Response


@dataclass
class FakeSession:
    """Stand-in for ``requests.Session`` routing by method and path.

    Each route holds a queue of replies; the last reply repeats once the
    queue is down to one entry.
    """

    calls: List[Call] = field(default_factory=list)
    routes: Dict[Tuple[str, str], List[Reply]] = field(default_factory=dict)
    closed: bool = False

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    def add(self, method: str, path: str, *replies: Reply) -> None:
        self.routes.setdefault((method, path), []).extend(replies)

    def calls_to(self, method: str, path: str) -> List[Call]:
        return [c for c in self.calls if c.method == method and c.path == path]

    def request(self, method, url, timeout=None, headers=None, data=None, params=None, **_):
        path = url.split(API_PREFIX, 1)[1]
        call = Call(method, path, dict(headers or {}), data, params)
        with self._lock:
            self.calls.append(call)
            queue = self.routes.get((method, path))
            if not queue:
                raise AssertionError(f"unexpected request {method} {path}")
            reply = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(call)
        return reply

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def storage(tmp_path) -> SessionStorage:
    return SessionStorage(tmp_path / "session.json")


@pytest.fixture
def http() -> FakeSession:
    return FakeSession()


@pytest.fixture
def api(storage, http) -> APIClient:
    return APIClient(storage, base_url=BASE_URL, api_version="v1", timeout=1.0, session=http)


USER = {"id": "u1", "email": "a@b.com", "firstName": "Ama", "lastName": "Mensah", "userType": "customer"}
TOKENS = {"accessToken": "t1", "refreshToken": "r1", "expiresIn": 3600}


def message(id_: str, minute: int, room: str = "room-1", content: str = "hi", sender: str = "u2") -> Dict[str, Any]:
    return {
        "id": id_,
        "chatRoomId": room,
        "senderId": sender,
        "type": "text",
        "content": content,
        "createdAt": f"2024-05-01T10:{minute:02d}:00Z",
    }


def room(id_: str, unread: int = 0, **extra: Any) -> Dict[str, Any]:
    return {"id": id_, "type": "direct", "participants": [], "unreadCount": unread, **extra}



async def eventually(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


CLOSE = object()


class FakeSocket:
    """Scripted websocket connection: frames fed in are yielded by ``async for``."""

    def __init__(self, *frames: Any):
        self.sent: List[str] = []
        self.closed = False
        self._incoming: "asyncio.Queue[Any]" = asyncio.Queue()
        for frame in frames:
            self._incoming.put_nowait(frame)

    def feed(self, frame: Any) -> None:
        self._incoming.put_nowait(frame)

    def drop(self) -> None:
        self._incoming.put_nowait(CLOSE)

    @property
    def sent_events(self) -> List[str]:
        return [json.loads(raw)["event"] for raw in self.sent]

    async def send(self, data: str) -> None:
        self.sent.append(data)

    async def close(self) -> None:
        self.closed = True
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        frame = await self._incoming.get()
        if frame is CLOSE:
            raise StopAsyncIteration
        return frame


class FakeConnector:
    """Replaces ``websockets.connect``; each call consumes the next scripted outcome."""

    def __init__(self, *outcomes: Any, default: Any = None):
        self.outcomes = list(outcomes)
        self.default = default
        self.calls: List[Dict[str, Any]] = []

    async def __call__(self, url: str, **kwargs: Any):
        self.calls.append({"url": url, **kwargs})
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if outcome is None:
            outcome = OSError("connection refused")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)
