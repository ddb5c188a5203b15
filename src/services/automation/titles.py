"""Conversation titles derived from the first prompt."""

from __future__ import annotations


DEFAULT_TITLE_MAX_LENGTH = 30
UNTITLED_CONVERSATION_TITLE = "Untitled conversation"
ELLIPSIS = "..."


def format_title(
    raw_title: str | None,
    *,
    max_length: int = DEFAULT_TITLE_MAX_LENGTH,
    placeholder: str = UNTITLED_CONVERSATION_TITLE,
) -> str:
    """Trim and truncate ``raw_title`` to ``max_length`` characters.

    Slicing works on code points, so a multi-byte character is never split.
    """
    trimmed = (raw_title or "").strip()
    if not trimmed:
        return placeholder
    if len(trimmed) <= max_length:
        return trimmed
    return f"{trimmed[: max_length - len(ELLIPSIS)].rstrip()}{ELLIPSIS}"


def is_placeholder_title(
    title: str | None, *, placeholder: str = UNTITLED_CONVERSATION_TITLE
) -> bool:
    stripped = (title or "").strip()
    return not stripped or stripped == placeholder


def maybe_retitle(
    current: str | None,
    prompt: str,
    *,
    max_length: int = DEFAULT_TITLE_MAX_LENGTH,
    placeholder: str = UNTITLED_CONVERSATION_TITLE,
) -> str:
    """Keep a real title; otherwise title the conversation after ``prompt``."""
    if not is_placeholder_title(current, placeholder=placeholder):
        return current  # type: ignore[return-value]
    return format_title(prompt, max_length=max_length, placeholder=placeholder)
