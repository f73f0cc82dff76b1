"""Observable state container shared by the session, booking and chat stores."""
from typing import Callable, List, Optional

from .errors import ClientError
from .logging_config import get_logger

logger = get_logger("store")

Subscriber = Callable[[], None]


class ObservableStore:
    """Holds state the UI reads and notifies subscribers after each change.

    ``error`` keeps the last failure message until the caller clears it.
    """

    def __init__(self) -> None:
        self.error: Optional[str] = None
        self._subscribers: List[Subscriber] = []

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def clear_error(self) -> None:
        self.error = None
        self._notify()

    def _record_error(self, exc: Exception, default_message: str) -> None:
        message = exc.message if isinstance(exc, ClientError) else str(exc)
        self.error = message or default_message
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            name = getattr(callback, "__name__", repr(callback))
            try:
                callback()
            except Exception:  # noqa: BLE001
                logger.exception("SUBSCRIBER_ERROR store=%s subscriber=%s", type(self).__name__, name)


class RequestSequence:
    """Monotonic request tags so a slow, older response cannot overwrite a newer one."""

    def __init__(self) -> None:
        self._latest = 0

    def issue(self) -> int:
        self._latest += 1
        return self._latest

    def is_current(self, tag: int) -> bool:
        return tag == self._latest
