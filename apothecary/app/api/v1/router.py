from fastapi import APIRouter

from apothecary.app.api.v1.endpoints.health import router as health_router
from apothecary.app.api.v1.endpoints.auth import router as auth_router
from apothecary.app.api.v1.endpoints.products import router as products_router
from apothecary.app.api.v1.endpoints.suppliers import router as suppliers_router
from apothecary.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from apothecary.app.api.v1.endpoints.purchase_receipts import router as purchase_receipts_router
from apothecary.app.api.v1.endpoints.distributions import router as distributions_router
from apothecary.app.api.v1.endpoints.batches import router as batches_router
from apothecary.app.api.v1.endpoints.stock_movements import router as stock_movements_router
from apothecary.app.api.v1.endpoints.notifications import router as notifications_router
from apothecary.app.api.v1.endpoints.forecasting import router as forecasting_router
from apothecary.app.api.v1.endpoints.external_products import router as external_products_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(auth_router, tags=["auth"])
router.include_router(products_router, tags=["products"])
router.include_router(suppliers_router, tags=["suppliers"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(purchase_receipts_router, tags=["purchase_receipts"])
router.include_router(distributions_router, tags=["distributions"])
router.include_router(batches_router, tags=["batches"])
router.include_router(stock_movements_router, tags=["stock_movements"])
router.include_router(notifications_router, tags=["notifications"])
router.include_router(forecasting_router, tags=["forecasting"])
router.include_router(external_products_router, tags=["external_products"])
