from __future__ import annotations

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db, get_dispatcher, get_gateway
from backend.app.db.models.core_types import SyncType
from backend.app.schemas.sync import SyncLogRead, SyncResultRead, SyncStatusRead
from backend.services.gateway import InventoryGateway
from backend.services.notifications import NotificationDispatcher
from backend.services.sync import (
    SyncCoordinator,
    get_last_successful_sync,
    get_sync_logs,
    is_sync_running,
)

router = APIRouter(prefix="/sync")


@router.post("/{sync_type}", response_model=SyncResultRead)
def run_sync(
    sync_type: SyncType,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    gateway: InventoryGateway = Depends(get_gateway),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Lance un run et attend sa fin.
    Les alertes éventuelles partent après la réponse.
    """
    result = SyncCoordinator.from_settings(db, gateway, dispatcher).run_sync(sync_type)
    background_tasks.add_task(dispatcher.process_pending)
    return result


@router.get("/logs", response_model=list[SyncLogRead])
def list_sync_logs(
    limit: int = Query(default=50, ge=1, le=500),
    sync_type: SyncType | None = None,
    db: Session = Depends(get_db),
):
    return get_sync_logs(db, limit=limit, sync_type=sync_type)


@router.get("/status", response_model=SyncStatusRead)
def sync_status(db: Session = Depends(get_db)):
    running = {t.value: is_sync_running(db, t) for t in SyncType if t != SyncType.smart}
    return {"running": running, "last_successful": get_last_successful_sync(db)}
