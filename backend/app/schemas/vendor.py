from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class VendorRead(BaseModel):
    id: int
    name: str
    contact_name: str | None
    contact_email: str | None
    phone: str | None
    lead_time_days: int
    min_order_amount: Decimal
    active: bool
    external_id: str | None
    updated_at: datetime

    class Config:
        from_attributes = True
