"""
Stock Services - inventory truth for the back office

Usage:
    from stock.services import ConsumptionService, PurchaseOrderService

    # Debit materials for a sold line item
    rows = ConsumptionService.record_sale(
        order_id="1001", product_id=1, product_name="Latte",
        quantity_sold=2, order_item_id="1001-1",
    )

    # Receive a purchase order into stock
    PurchaseOrderService.receive(po_id=1)
"""

# Base utilities
from stock.services.base_service import (
    ServiceError,
    ValidationError,
    NotFoundError,
    InvalidStateError,
    MissingSelectionError,
    DataConsistencyError,
    success_response,
    paginate_queryset,
    to_decimal,
    require_decimal,
    round_decimal,
    generate_number,
    get_date_range,
    BaseService,
)

# Recipe resolution
from .resolution import BundleSelection, resolve_lines

# Materials & products
from .material_service import MaterialService, MaterialCostCache
from .product_service import ProductService
from .recipe_service import RecipeService

# Sales consumption
from .consumption_service import ConsumptionService

# Purchasing & counts
from .purchase_service import PurchaseOrderService
from .count_service import StockCheckService


__all__ = [
    # Base
    "ServiceError",
    "ValidationError",
    "NotFoundError",
    "InvalidStateError",
    "MissingSelectionError",
    "DataConsistencyError",
    "success_response",
    "paginate_queryset",
    "to_decimal",
    "require_decimal",
    "round_decimal",
    "generate_number",
    "get_date_range",
    "BaseService",

    # Resolution
    "BundleSelection",
    "resolve_lines",

    # Materials & products
    "MaterialService",
    "MaterialCostCache",
    "ProductService",
    "RecipeService",

    # Consumption
    "ConsumptionService",

    # Purchasing & counts
    "PurchaseOrderService",
    "StockCheckService",
]
