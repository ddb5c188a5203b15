"""Reduce arbitrarily wrapped webhook output to the canonical reply payload."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from schemas.automation import (
    InvoiceReference,
    NormalizedResponsePayload,
    OrderReference,
)


logger = logging.getLogger(__name__)

# Producers wrap at most a few levels deep; anything past this is garbage.
MAX_UNWRAP_DEPTH = 8

CHAT_RESPONSE_KEYS = ("chat_response", "chatResponse")
ORDER_REFERENCE_KEYS = ("order_reference", "orderReference", "order_from_sparklayer")
INVOICE_REFERENCE_KEYS = (
    "invoice_reference",
    "invoiceReference",
    "invoice_from_xero",
)


def normalize_payload(raw: Any) -> NormalizedResponsePayload | None:
    """Unwrap ``raw`` and coerce it into a :class:`NormalizedResponsePayload`.

    Single-element arrays and ``output`` wrapper objects are transport
    artifacts and are peeled off. A mapping with a non-blank chat response, or
    a non-blank bare string, yields a payload. Everything else, including an
    explicitly empty reply, yields None.
    """
    return _normalize(raw, depth=0)


def _normalize(raw: Any, *, depth: int) -> NormalizedResponsePayload | None:
    if depth > MAX_UNWRAP_DEPTH:
        logger.warning("Payload nesting exceeded %d levels", MAX_UNWRAP_DEPTH)
        return None

    if isinstance(raw, NormalizedResponsePayload):
        return raw

    if isinstance(raw, list | tuple):
        if not raw:
            return None
        return _normalize(raw[0], depth=depth + 1)

    if isinstance(raw, Mapping):
        if "output" in raw:
            return _normalize(raw["output"], depth=depth + 1)
        return _from_mapping(raw)

    if isinstance(raw, str):
        if not raw.strip():
            return None
        return NormalizedResponsePayload(chat_response=raw)

    return None


def _from_mapping(raw: Mapping[str, Any]) -> NormalizedResponsePayload | None:
    chat_response = _first_present(raw, CHAT_RESPONSE_KEYS)
    if not isinstance(chat_response, str) or not chat_response.strip():
        return None

    return NormalizedResponsePayload(
        chat_response=chat_response,
        order_reference=_coerce_reference(
            _first_present(raw, ORDER_REFERENCE_KEYS), OrderReference
        ),
        invoice_reference=_coerce_reference(
            _first_present(raw, INVOICE_REFERENCE_KEYS), InvoiceReference
        ),
    )


def _first_present(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    for key in keys:
        if key in raw:
            return raw[key]
    return None


M = TypeVar("M", bound=BaseModel)


def _coerce_reference(value: Any, model: type[M]) -> M | None:
    """Validate a reference record; a malformed one is dropped, not fatal."""
    if value is None:
        return None
    if isinstance(value, model):
        return value
    if isinstance(value, list | tuple):
        value = value[0] if value else None
        if value is None:
            return None
    if not isinstance(value, Mapping):
        logger.warning("Ignoring %s of type %s", model.__name__, type(value).__name__)
        return None
    try:
        return model.model_validate(dict(value))
    except ValidationError as exc:
        logger.warning(
            "Ignoring malformed %s (%d validation errors)",
            model.__name__,
            exc.error_count(),
        )
        return None
