"""
Analyse de réapprovisionnement.

Fonctions pures sur les champs stockés d'un InventoryItem (ou tout objet ayant
les mêmes attributs). Aucune I/O : tout est recalculé à la lecture, jamais
persisté.

Règles métier :
    vélocité            = ventes 30j / 30, sinon ventes 90j / 90, sinon 0
    jours avant rupture = floor(stock / vélocité), 999 si vélocité nulle
    urgence             = <=7 critical, <=14 high, <=30 medium, sinon low
    réappro recommandé  = stock <= point de commande
    quantité suggérée   = max(qté de réappro, ceil(vélocité * délai * 1.5), MOQ)
                          arrondie au multiple supérieur de l'incrément
"""

from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from backend.app.core.errors import NotFoundError
from backend.app.db.models.models_v1 import InventoryItem
from backend.app.db.models.core_types import StockStatus, Urgency, DemandTrend

NO_STOCKOUT_SENTINEL = 999
LEAD_TIME_BUFFER = 1.5
OVERSTOCK_MULTIPLE = 4
TREND_THRESHOLD = 0.1

DEFAULT_ORDER_COST = 50.0
DEFAULT_HOLDING_COST_RATE = 0.25


def _int(value: Any) -> int:
    return int(value or 0)


def sales_velocity(item) -> float:
    """Unités vendues par jour."""
    sales_30 = _int(item.sales_last_30_days)
    if sales_30 > 0:
        return sales_30 / 30
    sales_90 = _int(item.sales_last_90_days)
    if sales_90 > 0:
        return sales_90 / 90
    return 0.0


def days_until_stockout(item) -> int:
    velocity = sales_velocity(item)
    if velocity <= 0:
        return NO_STOCKOUT_SENTINEL
    return math.floor(max(_int(item.current_stock), 0) / velocity)


def urgency_for_days(days: int) -> Urgency:
    if days <= 7:
        return Urgency.critical
    if days <= 14:
        return Urgency.high
    if days <= 30:
        return Urgency.medium
    return Urgency.low


def urgency_level(item) -> Urgency:
    return urgency_for_days(days_until_stockout(item))


def is_reorder_recommended(item) -> bool:
    return _int(item.current_stock) <= _int(item.reorder_point)


def overstock_threshold(item) -> int | None:
    if item.max_stock:
        return int(item.max_stock)
    reorder_point = _int(item.reorder_point)
    if reorder_point > 0:
        return reorder_point * OVERSTOCK_MULTIPLE
    return None


def stock_status_level(item) -> StockStatus:
    """
    Précédence : critical > low > overstocked > adequate.

    - critical : stock nul, ou stock <= point de commande avec une rupture
      projetée à 7 jours ou moins
    - low : 0 < stock <= point de commande, rupture au-delà de 7 jours
    - overstocked : stock > max_stock (ou > 4x le point de commande)
    """
    stock = _int(item.current_stock)
    if stock <= 0:
        return StockStatus.critical
    if stock <= _int(item.reorder_point):
        if days_until_stockout(item) <= 7:
            return StockStatus.critical
        return StockStatus.low
    threshold = overstock_threshold(item)
    if threshold is not None and stock > threshold:
        return StockStatus.overstocked
    return StockStatus.adequate


def round_up_to_increment(quantity: int, increment: int) -> int:
    if increment <= 1:
        return quantity
    return math.ceil(quantity / increment) * increment


def suggested_order_quantity(item) -> int:
    velocity = sales_velocity(item)
    lead_time_need = math.ceil(velocity * _int(item.lead_time_days) * LEAD_TIME_BUFFER)
    quantity = max(_int(item.reorder_quantity), lead_time_need, _int(item.min_order_quantity))
    return round_up_to_increment(quantity, _int(item.order_increment))


def economic_order_quantity(
    item,
    order_cost: float = DEFAULT_ORDER_COST,
    holding_cost_rate: float = DEFAULT_HOLDING_COST_RATE,
) -> int:
    # EOQ = sqrt(2 * D * S / H)
    annual_demand = sales_velocity(item) * 365
    if annual_demand <= 0:
        return 0
    return math.ceil(math.sqrt(2 * annual_demand * order_cost / holding_cost_rate))


def demand_trend(item) -> DemandTrend:
    # moyenne 30 derniers jours vs moyenne des 60 jours précédents
    sales_30 = _int(item.sales_last_30_days)
    sales_90 = _int(item.sales_last_90_days)
    recent = sales_30 / 30
    previous = (sales_90 - sales_30) / 60
    if previous <= 0:
        return DemandTrend.stable
    change = (recent - previous) / previous
    if change > TREND_THRESHOLD:
        return DemandTrend.increasing
    if change < -TREND_THRESHOLD:
        return DemandTrend.decreasing
    return DemandTrend.stable


def inventory_value(item) -> Decimal:
    return Decimal(_int(item.current_stock)) * Decimal(item.unit_cost or 0)


@dataclass(frozen=True)
class ItemAnalysis:
    sales_velocity: float
    days_until_stockout: int
    stock_status_level: StockStatus
    urgency_level: Urgency
    reorder_recommended: bool
    suggested_order_quantity: int
    economic_order_quantity: int
    demand_trend: DemandTrend
    inventory_value: Decimal

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def analyze_item(item) -> ItemAnalysis:
    return ItemAnalysis(
        sales_velocity=round(sales_velocity(item), 4),
        days_until_stockout=days_until_stockout(item),
        stock_status_level=stock_status_level(item),
        urgency_level=urgency_level(item),
        reorder_recommended=is_reorder_recommended(item),
        suggested_order_quantity=suggested_order_quantity(item),
        economic_order_quantity=economic_order_quantity(item),
        demand_trend=demand_trend(item),
        inventory_value=inventory_value(item),
    )


# ---------- LECTURES ----------
def get_item(db: Session, sku: str) -> InventoryItem:
    item = db.execute(select(InventoryItem).where(InventoryItem.sku == sku)).scalar_one_or_none()
    if not item:
        raise NotFoundError("InventoryItem", sku)
    return item


def list_items(
    db: Session,
    *,
    vendor: str | None = None,
    search: str | None = None,
    limit: int = 500,
    offset: int = 0,
) -> list[InventoryItem]:
    stmt = select(InventoryItem)
    if vendor:
        stmt = stmt.where(InventoryItem.vendor.ilike(vendor))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(InventoryItem.sku.ilike(pattern) | InventoryItem.product_name.ilike(pattern))
    stmt = stmt.order_by(InventoryItem.sku).limit(limit).offset(offset)
    return list(db.execute(stmt).scalars().all())


def list_items_needing_reorder(db: Session) -> list[InventoryItem]:
    """
    Items actifs dont le stock est au point de commande ou en dessous,
    du plus urgent au moins urgent.
    """
    rows = (
        db.execute(
            select(InventoryItem)
            .where(InventoryItem.discontinued.is_(False))
            .where(InventoryItem.current_stock <= InventoryItem.reorder_point)
            .order_by(InventoryItem.sku)
        )
        .scalars()
        .all()
    )
    return sorted(rows, key=lambda item: (days_until_stockout(item), item.sku))


def record_last_ordered(db: Session, lines: Iterable[tuple[str, int]], ordered_on: date) -> None:
    """Met à jour last_ordered_* des items commandés. Ne commit pas."""
    for sku, quantity in lines:
        db.execute(
            update(InventoryItem)
            .where(InventoryItem.sku == sku)
            .values(last_ordered_date=ordered_on, last_ordered_quantity=quantity)
        )
