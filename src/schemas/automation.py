"""Schemas for the workflow-automation webhook: request, events and replies.

The webhook answers either with a single JSON document or with a stream of
newline-delimited JSON events. Both shapes converge on
:class:`NormalizedResponsePayload`.
"""

from __future__ import annotations

import logging
from typing import Any, Literal

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    ValidatorFunctionWrapHandler,
    field_validator,
)


logger = logging.getLogger(__name__)


StreamEventType = Literal["begin", "item", "end", "error"]
InvoiceStatus = Literal["draft", "submitted", "authorised", "paid", "voided", "deleted"]


class AutomationRequest(BaseModel):
    """Outbound body posted to the automation webhook."""

    prompt: str = Field(..., min_length=1)
    conversation_id: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


class StreamEventMetadata(BaseModel):
    """Execution-trace metadata attached to stream events."""

    node_id: str | None = Field(
        default=None, validation_alias=AliasChoices("nodeId", "node_id")
    )
    node_name: str | None = Field(
        default=None, validation_alias=AliasChoices("nodeName", "node_name")
    )
    item_index: int | None = Field(
        default=None, validation_alias=AliasChoices("itemIndex", "item_index")
    )
    run_index: int | None = Field(
        default=None, validation_alias=AliasChoices("runIndex", "run_index")
    )
    timestamp: int | float | str | None = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class StreamEvent(BaseModel):
    """One decoded line of the automation event stream.

    Only ``item`` and ``error`` events carry meaningful ``content``, and only
    when it is a string.
    """

    type: StreamEventType
    content: Any = None
    metadata: StreamEventMetadata | None = None

    model_config = ConfigDict(extra="ignore")

    @field_validator("metadata", mode="wrap")
    @classmethod
    def tolerant_metadata(
        cls, v: Any, handler: ValidatorFunctionWrapHandler
    ) -> StreamEventMetadata | None:
        # Trace metadata never costs the event its content.
        try:
            return handler(v)
        except ValidationError as exc:
            logger.warning(
                "Dropping unusable stream event metadata (%d errors)", exc.error_count()
            )
            return None

    @property
    def text(self) -> str | None:
        """String content, or None when the event carries none."""
        return self.content if isinstance(self.content, str) else None


class OrderReference(BaseModel):
    """Order record linked from a reply (Sparklayer)."""

    order_id: str = Field(validation_alias=AliasChoices("orderId", "order_id", "id"))
    customer: str
    date: str
    link: str | None = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)


class InvoiceReference(BaseModel):
    """Invoice record linked from a reply (Xero)."""

    invoice_id: str = Field(
        validation_alias=AliasChoices("invoiceId", "invoice_id", "id")
    )
    amount_due: float = Field(validation_alias=AliasChoices("amountDue", "amount_due"))
    status: InvoiceStatus
    link: str | None = None

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    @field_validator("status", mode="before")
    @classmethod
    def lower_status(cls, v: object) -> object:
        return v.strip().lower() if isinstance(v, str) else v


class NormalizedResponsePayload(BaseModel):
    """Canonical reply shape every response path converges on."""

    chat_response: str = Field(
        validation_alias=AliasChoices("chat_response", "chatResponse")
    )
    order_reference: OrderReference | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "order_reference", "orderReference", "order_from_sparklayer"
        ),
    )
    invoice_reference: InvoiceReference | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "invoice_reference", "invoiceReference", "invoice_from_xero"
        ),
    )

    model_config = ConfigDict(frozen=True)

    @field_validator("chat_response")
    @classmethod
    def non_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("chat_response must not be blank")
        return v
