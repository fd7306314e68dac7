from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.db.models.models_v1 import InventoryItem
from backend.app.schemas.inventory import InventoryItemRead, InventoryItemWithAnalysis
from backend.services.inventory import analyze_item, get_item, list_items, list_items_needing_reorder

router = APIRouter(prefix="/inventory")


def _with_analysis(item: InventoryItem) -> InventoryItemWithAnalysis:
    return InventoryItemWithAnalysis(
        **InventoryItemRead.model_validate(item).model_dump(),
        analysis=analyze_item(item).as_dict(),
    )


@router.get("", response_model=list[InventoryItemWithAnalysis])
def get_inventory(
    vendor: str | None = None,
    search: str | None = None,
    limit: int = Query(default=500, ge=1, le=5000),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    """
    Inventaire (READ ONLY)
    - les indicateurs (statut, vélocité, rupture) sont recalculés à chaque lecture
    """
    items = list_items(db, vendor=vendor, search=search, limit=limit, offset=offset)
    return [_with_analysis(item) for item in items]


@router.get("/reorder", response_model=list[InventoryItemWithAnalysis])
def get_reorder_candidates(db: Session = Depends(get_db)):
    return [_with_analysis(item) for item in list_items_needing_reorder(db)]


@router.get("/{sku}", response_model=InventoryItemWithAnalysis)
def get_inventory_item(sku: str, db: Session = Depends(get_db)):
    return _with_analysis(get_item(db, sku))
