"""Composition root: builds every client component once and wires them together."""
from typing import Optional

import requests

from .api import APIClient
from .auth import AuthService
from .booking_store import BookingStore
from .bookings import BookingService
from .chat import ChatService
from .chat_store import ChatStore
from .config import ClientConfig
from .logging_config import get_logger
from .realtime import RealtimeChannel
from .session import SessionStore
from .storage import SessionStorage

logger = get_logger("app")


class ClientApp:
    """Explicitly constructed stores handed to whichever UI binds to them."""

    def __init__(
        self,
        config: ClientConfig,
        storage: SessionStorage,
        api: APIClient,
        channel: RealtimeChannel,
    ):
        self.config = config
        self.storage = storage
        self.api = api
        self.channel = channel
        self.session = SessionStore(api, storage, AuthService(api))
        self.bookings = BookingStore(BookingService(api))
        self.chat = ChatStore(
            ChatService(api, channel),
            channel,
            page_size=config.messages_page_size,
            typing_ttl=config.typing_ttl,
        )

    @classmethod
    def create(
        cls,
        config: Optional[ClientConfig] = None,
        http_session: Optional[requests.Session] = None,
        connect=None,
    ) -> "ClientApp":
        config = config or ClientConfig.from_env()
        storage = SessionStorage(config.storage_file)
        api = APIClient(
            storage,
            base_url=config.api_base_url,
            api_version=config.api_version,
            timeout=config.timeout,
            session=http_session,
        )
        channel = RealtimeChannel(
            config.ws_url,
            token_provider=api.current_access_token,
            connect=connect,
            base_delay=config.reconnect_base_delay,
            max_delay=config.reconnect_max_delay,
            max_attempts=config.reconnect_max_attempts,
            outbox_limit=config.outbox_limit,
        )
        return cls(config, storage, api, channel)

    async def start(self) -> None:
        """Restore the session; authenticated sessions also go realtime."""
        await self.session.initialize()
        logger.info("APP_START authenticated=%s", self.session.is_authenticated)
        if self.session.is_authenticated:
            await self.go_online()

    async def go_online(self) -> None:
        self.chat.attach()
        await self.channel.connect()

    async def shutdown(self) -> None:
        await self.chat.close()
        self.api.session.close()
        logger.info("APP_SHUTDOWN")
