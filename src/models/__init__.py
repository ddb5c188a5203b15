"""Expose commonly used ORM models at package level.

These re-exports are intentional so callers can import from
``models`` (e.g. `from models import ChatMessage`). The `F401` noqa suppresses
unused-import warnings for the explicit re-exports.
"""

from .base import Base  # noqa: F401
from .chat_conversations import ChatConversation  # noqa: F401
from .chat_messages import ChatMessage  # noqa: F401
