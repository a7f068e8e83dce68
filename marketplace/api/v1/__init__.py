"""Version 1 API routers."""

from marketplace.api.v1.inventory import router as inventory_router
from marketplace.api.v1.orders import router as orders_router
from marketplace.api.v1.remittances import router as remittances_router

__all__ = ["inventory_router", "orders_router", "remittances_router"]
