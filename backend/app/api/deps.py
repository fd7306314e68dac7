from __future__ import annotations

from functools import lru_cache
from typing import Generator

from fastapi import Request

from backend.app.db.session import SessionLocal
from backend.services.gateway import InventoryGateway
from backend.services.notifications import NotificationDispatcher


def get_db() -> Generator:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_gateway() -> InventoryGateway:
    return InventoryGateway.from_settings()


@lru_cache
def get_dispatcher() -> NotificationDispatcher:
    # une seule file d'alertes par process
    return NotificationDispatcher.from_settings()


def get_origin(request: Request) -> str | None:
    return request.client.host if request.client else None
