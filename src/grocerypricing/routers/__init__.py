"""API routers for the grocerypricing application."""

from grocerypricing.routers.pricing import router as pricing_router

__all__ = [
    "pricing_router",
]
