"""Shared test fixtures for pytest.

We set minimal env defaults early so importing modules that build settings
or the database engine succeeds without an external .env file or a running
PostgreSQL server.
"""

import json
import os
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Callable, Iterable
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool


os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from core.config import get_settings  # noqa: E402
from models import Base  # noqa: E402
from services.automation.client import AutomationClient  # noqa: E402
from services.automation.store import ConversationRecord, StoredMessage  # noqa: E402


WEBHOOK_URL = "https://automation.test/webhook/support-chat"


@pytest.fixture(autouse=True)
def _fresh_settings() -> Iterable[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class InMemoryMessageStore:
    """MessageStore double recording every call in order."""

    def __init__(self, *, title: str | None = None) -> None:
        self.messages: list[StoredMessage] = []
        self.conversations: dict[str, ConversationRecord] = {}
        self.calls: list[str] = []
        self.default_title = title
        # Exceptions raised by the nth insert (0-based), keyed by index.
        self.insert_failures: dict[int, Exception] = {}
        self.update_failure: Exception | None = None
        self._inserts = 0

    async def insert_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        payload: dict[str, Any] | None,
    ) -> StoredMessage:
        index = self._inserts
        self._inserts += 1
        self.calls.append(f"insert:{role}")
        if index in self.insert_failures:
            raise self.insert_failures[index]
        message = StoredMessage(
            id=str(uuid.uuid4()),
            conversation_id=conversation_id,
            role=role,  # type: ignore[arg-type]
            content=content,
            payload=payload,
        )
        self.messages.append(message)
        return message

    async def update_conversation(
        self,
        conversation_id: str,
        *,
        title: str | None = None,
        updated_at: datetime | None = None,
    ) -> None:
        self.calls.append("update_conversation")
        if self.update_failure is not None:
            raise self.update_failure
        current = await self.get_conversation(conversation_id)
        self.conversations[conversation_id] = ConversationRecord(
            id=conversation_id,
            title=title if title is not None else (current.title if current else None),
            updated_at=updated_at or datetime.now(UTC),
        )

    async def get_conversation(self, conversation_id: str) -> ConversationRecord | None:
        return self.conversations.get(
            conversation_id,
            ConversationRecord(id=conversation_id, title=self.default_title),
        )

    @property
    def assistant_messages(self) -> list[StoredMessage]:
        return [m for m in self.messages if m.role == "assistant"]


@pytest.fixture
def store() -> InMemoryMessageStore:
    return InMemoryMessageStore()


def ndjson_lines(*events: dict[str, Any] | str) -> list[bytes]:
    """Encode events (dicts, or raw strings for malformed lines) as lines."""
    lines = []
    for event in events:
        text = event if isinstance(event, str) else json.dumps(event)
        lines.append((text + "\n").encode("utf-8"))
    return lines


def streaming_response(
    chunks: Iterable[bytes],
    *,
    status_code: int = 200,
    content_type: str = "application/x-ndjson",
) -> httpx.Response:
    async def body() -> AsyncIterator[bytes]:
        for chunk in chunks:
            yield chunk

    return httpx.Response(
        status_code, headers={"content-type": content_type}, content=body()
    )


def make_automation_client(
    handler: Callable[[httpx.Request], httpx.Response],
    *,
    api_key: str | None = None,
) -> AutomationClient:
    """AutomationClient whose HTTP calls are answered by ``handler``."""
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return AutomationClient(
        endpoint=WEBHOOK_URL,
        api_key=api_key,
        timeout=5.0,
        http_client=http_client,
    )


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncGenerator[AsyncEngine, None]:
    engine: AsyncEngine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(sqlite_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    SessionLocal = async_sessionmaker(
        sqlite_engine, expire_on_commit=False, class_=AsyncSession
    )
    async with SessionLocal() as session:
        yield session
