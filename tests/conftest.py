import os
import sys
from datetime import datetime
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock

import pytest

# Set PTB timedelta before importing telegram types; keep imports at top via noqa
os.environ.setdefault("PTB_TIMEDELTA", "1")
from telegram import Bot, Chat, Message, Update, User  # noqa: E402

# Ensure root path is available for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

from courier_bot.config import BotSettings  # noqa: E402
from courier_bot.workflows.search_session import SessionStore  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock for session expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeTransport:
    """Records everything the controller sends instead of talking to Telegram."""

    def __init__(self):
        self.texts: list[tuple[object, str]] = []
        self.attachments: list[dict] = []
        self.attachment_error: Exception | None = None
        self.document_error: Exception | None = None

    async def send_text(self, conversation_id, text):
        self.texts.append((conversation_id, text))

    async def send_attachment(
        self,
        conversation_id,
        payload,
        *,
        kind,
        filename=None,
        as_document=False,
        caption=None,
    ):
        if as_document and self.document_error is not None:
            raise self.document_error
        if not as_document and self.attachment_error is not None:
            raise self.attachment_error
        self.attachments.append(
            {
                "conversation_id": conversation_id,
                "payload": payload,
                "kind": kind,
                "filename": filename,
                "as_document": as_document,
                "caption": caption,
            }
        )

    def last_text(self) -> str:
        return self.texts[-1][1]


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return SessionStore(ttl=900, clock=clock)


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def settings(tmp_path):
    return BotSettings(
        token="TEST_TOKEN",
        staging_dir=tmp_path,
        session_ttl_seconds=900,
        max_upload_bytes=50 * 1024 * 1024,
        max_media_bytes=64 * 1024 * 1024,
    )


@pytest.fixture
def user():
    return User(id=123, first_name="Test", is_bot=False)


@pytest.fixture
def chat():
    return Chat(id=456, type="private")


@pytest.fixture
def make_message(user, chat):
    def _make(text: str = "", message_id: int = 1, **kwargs):
        msg = Message(
            message_id=message_id,
            date=datetime.now(),
            chat=chat,
            from_user=user,
            text=text or None,
            **kwargs,
        )
        bot = Mock(spec=Bot)
        bot.send_message = AsyncMock()
        msg.set_bot(bot)
        return msg

    return _make


@pytest.fixture
def make_update():
    def _make(message: Message | None = None, update_id: int = 1):
        return Update(update_id=update_id, message=message)

    return _make


@pytest.fixture
def context(make_message):
    bot = SimpleNamespace(
        send_message=AsyncMock(return_value=make_message()),
    )
    return SimpleNamespace(bot=bot, user_data={}, bot_data={}, chat_data={})
