"""Store assignment and shopping trip optimization."""

from grocerypricing.plan.optimizer import (
    CityStores,
    OptimizedShoppingPlan,
    ShoppingOptimizer,
    ShoppingStrategy,
    StoreAssignment,
    StoreInfo,
    calculate_confidence,
    find_city,
    get_store_type,
    is_specialty_ingredient,
)

__all__ = [
    "CityStores",
    "OptimizedShoppingPlan",
    "ShoppingOptimizer",
    "ShoppingStrategy",
    "StoreAssignment",
    "StoreInfo",
    "calculate_confidence",
    "find_city",
    "get_store_type",
    "is_specialty_ingredient",
]
