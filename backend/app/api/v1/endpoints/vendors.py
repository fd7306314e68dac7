from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backend.app.api.deps import get_db
from backend.app.schemas.vendor import VendorRead
from backend.services.vendors import deactivate_vendor, list_vendors

router = APIRouter(prefix="/vendors")


@router.get("", response_model=list[VendorRead])
def get_vendors(active_only: bool = False, db: Session = Depends(get_db)):
    return list_vendors(db, active_only=active_only)


@router.post("/{vendor_id}/deactivate", response_model=VendorRead)
def deactivate(vendor_id: int, db: Session = Depends(get_db)):
    # jamais supprimé, seulement désactivé
    return deactivate_vendor(db, vendor_id)
