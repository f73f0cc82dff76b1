"""Console client for AfroBiz Connect."""
import asyncio
import sys
from typing import List, Optional

from .app import ClientApp
from .config import ClientConfig
from .errors import ClientError
from .logging_config import configure_logging
from .schemas import ChatRoom, LoginCredentials, Message, RegisterData, SendMessageRequest
from .storage import SERVER_URL, SessionStorage


async def ask(prompt: str) -> str:
    return (await asyncio.to_thread(input, prompt)).strip()


def format_message(message: Message, own_id: Optional[str]) -> str:
    who = "(you)" if message.sender_id == own_id else message.sender_id
    edited = " (edited)" if message.is_edited else ""
    return f"[{message.created_at:%H:%M}] {who}: {message.content}{edited}"


class ConsoleClient:
    """Interactive console over the client stores."""

    def __init__(self, app: ClientApp):
        self.app = app

    async def register(self) -> None:
        print("=== Register ===")
        data = {
            "first_name": await ask("First name: "),
            "last_name": await ask("Last name: "),
            "email": await ask("Email: "),
            "phone": await ask("Phone: "),
            "password": await ask("Password (min 8 chars): "),
            "confirm_password": await ask("Confirm password: "),
        }
        try:
            user = await self.app.session.sign_up(RegisterData(**data))
        except ClientError as exc:
            print(f"Registration failed: {exc.message}")
            return
        print(f"Welcome, {user.first_name or user.email}!")

    async def login(self) -> bool:
        print("=== Login ===")
        email = await ask("Email: ")
        password = await ask("Password: ")
        try:
            user = await self.app.session.sign_in(LoginCredentials(email=email, password=password))
        except ClientError as exc:
            print(f"Login failed: {exc.message}")
            return False
        print(f"Welcome, {user.first_name or user.email}!")
        await self.app.go_online()
        return True

    async def list_services(self) -> None:
        query = await ask("Search (empty for all): ")
        try:
            if query:
                services = await self.app.bookings.search_services(query)
            else:
                await self.app.bookings.load_services()
                services = self.app.bookings.services
        except ClientError as exc:
            print(f"Could not fetch services: {exc.message}")
            return
        for s in services:
            price = f"{s.price.amount:.2f} {s.price.currency}" if s.price else "-"
            print(f"- {s.id}: {s.name} [{s.category}] {price} rating={s.rating or '-'}")
        if not services:
            print("No services found.")

    async def list_bookings(self) -> None:
        try:
            await self.app.bookings.load_bookings()
        except ClientError as exc:
            print(f"Could not fetch bookings: {exc.message}")
            return
        for b in self.app.bookings.bookings:
            print(f"- {b.id}: service={b.service_id} {b.date} status={b.status.value}")
        if not self.app.bookings.bookings:
            print("No bookings yet.")

    async def list_chats(self) -> List[ChatRoom]:
        try:
            await self.app.chat.load_chat_rooms()
        except ClientError as exc:
            print(f"Could not fetch chats: {exc.message}")
            return []
        rooms = self.app.chat.chat_rooms
        for r in rooms:
            unread = f" ({r.unread_count} unread)" if r.unread_count else ""
            print(f"- {r.id}: {r.name or r.type}{unread}")
        if not rooms:
            print("No chats yet.")
        return rooms

    async def open_chat(self) -> None:
        rooms = await self.list_chats()
        room_id = await ask("Enter chat id: ")
        room = next((r for r in rooms if r.id == room_id), None)
        if not room:
            print("Chat not found.")
            return
        chat = self.app.chat
        try:
            await chat.select_chat_room(room)
        except ClientError as exc:
            print(f"Could not open chat: {exc.message}")
        own_id = self.app.session.user.id if self.app.session.user else None
        shown = 0
        while True:
            for message in chat.messages[shown:]:
                print(format_message(message, own_id))
            shown = len(chat.messages)
            status = "online" if chat.is_connected else "offline"
            print(f"\nChat commands ({status}): [s]end, [r]efresh, [m]ore, [b]ack")
            cmd = (await ask("> ")).lower()
            if cmd == "b":
                chat.leave_chat_room()
                break
            if cmd == "s":
                text = await ask("Message: ")
                try:
                    await chat.send_message(SendMessageRequest(chat_room_id=room.id, content=text))
                except ClientError as exc:
                    print(f"Failed to send message: {exc.message}")
            if cmd == "m":
                try:
                    await chat.load_more_messages()
                except ClientError as exc:
                    print(f"Could not fetch messages: {exc.message}")
                shown = 0
            if cmd == "r":
                await chat.refresh_data()
                shown = 0

    async def logout(self) -> None:
        await self.app.chat.close()
        await self.app.session.sign_out()
        print("Logged out.")


async def run(config: ClientConfig) -> None:
    app = ClientApp.create(config)
    await app.start()
    client = ConsoleClient(app)
    try:
        while True:
            if not app.session.is_authenticated:
                print("\nMenu: [r]egister, [l]ogin, [q]uit")
                choice = (await ask("> ")).lower()
                if choice == "q":
                    return
                if choice == "r":
                    await client.register()
                if choice == "l":
                    await client.login()
                continue
            print("\nUser menu: [s]ervices, [b]ookings, [c]hat, [o]logout, [q]uit")
            sub = (await ask("> ")).lower()
            if sub == "q":
                return
            if sub == "o":
                await client.logout()
            if sub == "s":
                await client.list_services()
            if sub == "b":
                await client.list_bookings()
            if sub == "c":
                await client.open_chat()
    finally:
        await app.shutdown()


def main() -> None:
    print("AfroBiz Connect")
    config = ClientConfig.from_env()
    storage = SessionStorage(config.storage_file)
    default_url = storage.get(SERVER_URL) or config.api_base_url
    server_url = input(f"Server URL [{default_url}]: ").strip() or default_url
    if server_url != storage.get(SERVER_URL):
        storage.set(SERVER_URL, server_url)
    config.api_base_url = server_url
    configure_logging(config.log_file)
    try:
        asyncio.run(run(config))
    except (KeyboardInterrupt, EOFError):
        sys.exit(0)


if __name__ == "__main__":
    main()
