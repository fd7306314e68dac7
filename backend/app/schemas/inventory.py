from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel

from backend.app.db.models.core_types import DemandTrend, StockStatus, Urgency


class ItemAnalysisRead(BaseModel):
    # READ ONLY : recalculé à chaque lecture, jamais stocké
    sales_velocity: float
    days_until_stockout: int
    stock_status_level: StockStatus
    urgency_level: Urgency
    reorder_recommended: bool
    suggested_order_quantity: int
    economic_order_quantity: int
    demand_trend: DemandTrend
    inventory_value: Decimal


class InventoryItemRead(BaseModel):
    sku: str
    product_name: str
    current_stock: int
    reserved_stock: int
    on_order_stock: int
    reorder_point: int
    reorder_quantity: int
    max_stock: int | None
    min_order_quantity: int
    order_increment: int
    lead_time_days: int
    vendor: str | None
    unit_cost: Decimal
    location: str
    sales_last_30_days: int
    sales_last_90_days: int
    last_ordered_date: date | None
    last_ordered_quantity: int | None
    discontinued: bool
    last_updated: datetime

    class Config:
        from_attributes = True


class InventoryItemWithAnalysis(InventoryItemRead):
    analysis: ItemAnalysisRead
