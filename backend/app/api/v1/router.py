from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.sync import router as sync_router
from backend.app.api.v1.endpoints.inventory import router as inventory_router
from backend.app.api.v1.endpoints.vendors import router as vendors_router
from backend.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(sync_router, tags=["sync"])
router.include_router(inventory_router, tags=["inventory"])
router.include_router(vendors_router, tags=["vendors"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
