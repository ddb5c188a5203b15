"""HTTP client for the workflow-automation webhook."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import httpx

from core.config import Settings, get_settings
from core.exceptions import AutomationNotConfiguredError, AutomationTransportError
from schemas.automation import AutomationRequest


logger = logging.getLogger(__name__)

# Media types that always mean a newline-delimited event stream.
EVENT_STREAM_MEDIA_TYPES = frozenset(
    {
        "application/x-ndjson",
        "application/ndjson",
        "application/jsonl",
        "application/x-jsonlines",
        "application/stream+json",
        "text/event-stream",
        "text/plain",
    }
)
MAX_ERROR_BODY_CHARS = 500


def media_type(response: httpx.Response) -> str:
    return response.headers.get("content-type", "").split(";", 1)[0].strip().lower()


def is_event_stream(response: httpx.Response) -> bool:
    """True when the body should be decoded line by line as it arrives.

    A JSON content type with a known length is a single document; the same
    type sent chunked (no ``Content-Length``) is the webhook's event stream.
    """
    kind = media_type(response)
    if kind in EVENT_STREAM_MEDIA_TYPES:
        return True
    if kind == "application/json" or kind.endswith("+json"):
        return "content-length" not in response.headers
    return not kind


class AutomationClient:
    """POST prompts to the automation webhook and expose the raw response.

    Pass an ``http_client`` to share a connection pool (or a mock transport in
    tests); otherwise one is created per request.
    """

    def __init__(
        self,
        *,
        endpoint: str | None,
        api_key: str | None = None,
        api_key_header: str = "X-API-Key",
        timeout: float = 120.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._api_key = api_key
        self._api_key_header = api_key_header
        self._timeout = timeout
        self._http_client = http_client

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> AutomationClient:
        settings = settings or get_settings()
        return cls(
            endpoint=settings.AUTOMATION_ENDPOINT,
            api_key=settings.AUTOMATION_API_KEY,
            api_key_header=settings.AUTOMATION_API_KEY_HEADER,
            timeout=settings.AUTOMATION_TIMEOUT_SECONDS,
            http_client=http_client,
        )

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/x-ndjson, application/json"}
        if self._api_key:
            headers[self._api_key_header] = self._api_key
        return headers

    @asynccontextmanager
    async def open(self, prompt: str, conversation_id: str) -> AsyncIterator[httpx.Response]:
        """Send the prompt and yield the response once its headers arrive.

        Raises:
            AutomationNotConfiguredError: no endpoint configured
            AutomationTransportError: network failure or non-2xx status
        """
        if not self.endpoint:
            raise AutomationNotConfiguredError("no automation endpoint is configured")

        body = AutomationRequest(prompt=prompt, conversation_id=conversation_id)
        async with self._client() as client:
            try:
                async with client.stream(
                    "POST",
                    self.endpoint,
                    json=body.model_dump(),
                    headers=self._headers(),
                    timeout=self._timeout,
                ) as response:
                    if not response.is_success:
                        error_text = (await response.aread()).decode(
                            response.encoding or "utf-8", errors="replace"
                        )
                        logger.warning(
                            "Automation webhook responded with HTTP %d",
                            response.status_code,
                        )
                        raise AutomationTransportError(
                            _describe_status(response.status_code, error_text),
                            status_code=response.status_code,
                        )
                    yield response
            except httpx.HTTPError as exc:
                logger.warning("Automation request failed: %s", type(exc).__name__)
                raise AutomationTransportError(
                    _describe_transport_error(exc)
                ) from exc

    @asynccontextmanager
    async def _client(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._http_client is not None:
            yield self._http_client
            return
        async with httpx.AsyncClient() as client:
            yield client


def _describe_status(status_code: int, body: str) -> str:
    text = " ".join(body.split())
    if len(text) > MAX_ERROR_BODY_CHARS:
        text = text[:MAX_ERROR_BODY_CHARS] + "..."
    if text:
        return f"HTTP {status_code}: {text}"
    return f"HTTP {status_code}"


def _describe_transport_error(exc: httpx.HTTPError) -> str:
    if isinstance(exc, httpx.TimeoutException):
        return "the request timed out"
    detail = str(exc).strip()
    return detail or type(exc).__name__
