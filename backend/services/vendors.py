"""
Fournisseurs.

Identité = nom insensible à la casse (name_key). Jamais supprimés, seulement
désactivés. Créés/mis à jour par la sync ou au premier PO qui les référence.
"""

from __future__ import annotations

import logging
import math
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from backend.app.core.errors import NotFoundError, ValidationError
from backend.app.db.models.models_v1 import Vendor

logger = logging.getLogger(__name__)


def vendor_key(name: str) -> str:
    return " ".join(name.split()).lower()


def find_vendor_by_name(db: Session, name: str | None) -> Vendor | None:
    if not name or not name.strip():
        return None
    return db.execute(select(Vendor).where(Vendor.name_key == vendor_key(name))).scalar_one_or_none()


def get_or_create_vendor(db: Session, name: str, contact_email: str | None = None) -> Vendor:
    """Ne commit pas : l'appelant garde la main sur la transaction."""
    if not name or not name.strip():
        raise ValidationError("Vendor name is required")

    vendor = find_vendor_by_name(db, name)
    if vendor:
        if contact_email and not vendor.contact_email:
            vendor.contact_email = contact_email
        return vendor

    vendor = Vendor(name=name.strip(), name_key=vendor_key(name), contact_email=contact_email, active=True)
    db.add(vendor)
    db.flush()
    logger.info("Vendor %r created on first reference", vendor.name)
    return vendor


def _pick(record: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return value
    return None


def _finite(value: Any) -> float:
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"non-finite number {value!r}")
    return number


def upsert_vendor_record(db: Session, record: dict[str, Any]) -> Vendor:
    """
    Réconcilie un enregistrement fournisseur externe.
    Lève ValidationError si le nom manque. Ne commit pas.
    """
    name = _pick(record, "name", "vendorName", "partyName", "Vendor Name", "Name")
    if not name or not str(name).strip():
        raise ValidationError("External vendor record has no name", {"record_id": record.get("partyId")})

    vendor = find_vendor_by_name(db, str(name))
    if not vendor:
        vendor = Vendor(name=str(name).strip(), name_key=vendor_key(str(name)))
        db.add(vendor)

    vendor.external_id = _pick(record, "partyId", "vendorId", "id") or vendor.external_id
    vendor.contact_name = _pick(record, "contactName", "contact") or vendor.contact_name
    vendor.contact_email = _pick(record, "email", "contactEmail", "Email") or vendor.contact_email
    vendor.phone = _pick(record, "phone", "phoneNumber") or vendor.phone

    lead_time = _pick(record, "leadTimeDays", "leadTime")
    if lead_time is not None:
        vendor.lead_time_days = max(int(_finite(lead_time)), 0)
    min_order = _pick(record, "minimumOrderAmount", "minOrderAmount")
    if min_order is not None:
        vendor.min_order_amount = max(Decimal(str(_finite(min_order))), Decimal("0"))

    status = record.get("statusId") or record.get("status")
    vendor.active = str(status).upper() not in {"INACTIVE", "PARTY_DISABLED"} if status else True

    db.flush()
    return vendor


def list_vendors(db: Session, active_only: bool = False) -> list[Vendor]:
    stmt = select(Vendor).order_by(Vendor.name_key)
    if active_only:
        stmt = stmt.where(Vendor.active.is_(True))
    return list(db.execute(stmt).scalars().all())


def deactivate_vendor(db: Session, vendor_id: int) -> Vendor:
    vendor = db.get(Vendor, vendor_id)
    if not vendor:
        raise NotFoundError("Vendor", vendor_id)
    vendor.active = False
    db.commit()
    db.refresh(vendor)
    logger.info("Vendor %s deactivated", vendor.name)
    return vendor
