"""FastAPI dependencies wiring the automation exchange together."""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, Request

from core.config import get_settings
from crud.chat import SqlAlchemyMessageStore
from dependencies.db import DbSession
from services.automation.client import AutomationClient
from services.automation.reconciliation import ReconciliationController


def get_automation_client(request: Request) -> AutomationClient:
    """Client sharing the application's httpx pool when one is running."""
    http_client = getattr(request.app.state, "http_client", None)
    return AutomationClient.from_settings(get_settings(), http_client=http_client)


def get_message_store(db: DbSession) -> SqlAlchemyMessageStore:
    return SqlAlchemyMessageStore(db)


def get_reconciliation_controller(
    store: Annotated[SqlAlchemyMessageStore, Depends(get_message_store)],
    client: Annotated[AutomationClient, Depends(get_automation_client)],
) -> ReconciliationController:
    return ReconciliationController.from_settings(store, client=client)


Controller = Annotated[ReconciliationController, Depends(get_reconciliation_controller)]
