# Overview: Flask API routes for inventory administration; catalog upkeep, stock adjustments and the stock ledger.

# backend/nursery/routes/admin_inventory.py
"""
Inventory admin routes

Every stock change goes through the inventory ledger: stock is updated with
a conditional UPDATE and an InventoryMovement row is written in the same
transaction. There is no endpoint that sets stock_quantity directly.
"""

from flask import Blueprint, request, g

from ..responses import success, failure, paginated, validation_failure, server_error
from ..services import catalog_service, inventory_service, activity_service
from ..services.inventory_service import InsufficientStockError
from ..validation import ValidationError, ConflictError, NotFoundError, parse_pagination, parse_optional_datetime
from ..decorators import require_auth, require_capability
from ..permissions import Capability


admin_inventory_bp = Blueprint("admin_inventory", __name__, url_prefix="/api/admin/inventory")


def _catalog_failure(e: Exception, context: str):
    if isinstance(e, ValidationError):
        return validation_failure(e)
    if isinstance(e, NotFoundError):
        return failure(str(e), 404)
    if isinstance(e, ConflictError):
        return failure(str(e), 409)
    if isinstance(e, InsufficientStockError):
        return failure(str(e), 400, {"quantity": f"only {e.available or 0} available"})
    return server_error(context, e)


# =============================================================================
# STOCK VIEWS
# =============================================================================

@admin_inventory_bp.get("/status")
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def inventory_status_route():
    """
    Stock-status view, lowest stock first.

    Query: page, limit, status (IN_STOCK | LOW | OUT_OF_STOCK), search
    """
    try:
        page, limit = parse_pagination(request.args)
        products, total = inventory_service.get_inventory_status(
            page=page,
            limit=limit,
            status=request.args.get("status"),
            search=request.args.get("search"),
        )
        return paginated([p.to_dict() for p in products], total, page, limit, key="products")
    except Exception as e:
        return _catalog_failure(e, "Error in inventory_status")


@admin_inventory_bp.get("/low-stock")
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def low_stock_route():
    try:
        products = inventory_service.get_low_stock_items()
        return success([p.to_dict() for p in products], count=len(products))
    except Exception as e:
        return server_error("Error in low_stock", e)


@admin_inventory_bp.get("/movements")
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def movements_route():
    """Query: page, limit, productId, startDate, endDate"""
    try:
        page, limit = parse_pagination(request.args)
        movements, total = inventory_service.get_inventory_movements(
            product_id=request.args.get("productId", type=int),
            start_date=parse_optional_datetime(request.args.get("startDate"), "startDate"),
            end_date=parse_optional_datetime(request.args.get("endDate"), "endDate"),
            page=page,
            limit=limit,
        )
        return paginated([m.to_dict() for m in movements], total, page, limit, key="movements")
    except Exception as e:
        return _catalog_failure(e, "Error in inventory_movements")


@admin_inventory_bp.get("/products/<int:product_id>/stock")
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def check_stock_route(product_id: int):
    """Query: quantity (default 1)"""
    try:
        quantity = request.args.get("quantity", 1, type=int)
        return success(inventory_service.check_stock(product_id, quantity).to_dict())
    except Exception as e:
        return server_error("Error in check_stock", e)


# =============================================================================
# STOCK CHANGES
# =============================================================================

@admin_inventory_bp.put("/products/<int:product_id>/stock")
@admin_inventory_bp.post("/products/<int:product_id>/stock")
@require_auth
@require_capability(Capability.MANAGE_INVENTORY)
def update_stock_route(product_id: int):
    """
    Restock or adjust.

    Request body: {"quantity": 10, "operation": "increase" | "decrease", "reason": "restock", "notes": "..."}
    """
    data = request.get_json(silent=True) or {}
    try:
        movement = inventory_service.update_stock(
            product_id,
            data.get("quantity"),
            data.get("operation"),
            reason=data.get("reason") or ("restock" if data.get("operation") == "increase" else "adjustment"),
            actor_user_id=g.current_user.id,
            notes=data.get("notes"),
        )
        activity_service.log_activity(
            g.current_user.id, "STOCK_UPDATED", entity_type="product", entity_id=product_id,
            details={"operation": movement.movement_type, "quantity": movement.quantity, "stock_after": movement.stock_after},
            commit=True,
        )
        return success(movement.to_dict(), message="Stock updated successfully")
    except Exception as e:
        return _catalog_failure(e, "Error in update_stock")


@admin_inventory_bp.put("/products/<int:product_id>/thresholds")
@require_auth
@require_capability(Capability.MANAGE_INVENTORY)
def update_thresholds_route(product_id: int):
    """Request body: {"minThreshold": 5, "maxThreshold": 100, "reorderQuantity": 50}"""
    data = request.get_json(silent=True) or {}
    try:
        product = inventory_service.update_thresholds(
            product_id,
            data.get("minThreshold"),
            data.get("maxThreshold"),
            data.get("reorderQuantity"),
        )
        return success(product.to_dict(), message="Thresholds updated successfully")
    except Exception as e:
        return _catalog_failure(e, "Error in update_thresholds")


# =============================================================================
# CATALOG
# =============================================================================

@admin_inventory_bp.get("/products/<int:product_id>")
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def get_product_route(product_id: int):
    try:
        return success(catalog_service.get_product(product_id).to_dict(include_images=True))
    except Exception as e:
        return _catalog_failure(e, "Error in get_product")


@admin_inventory_bp.post("/addproduct")
@admin_inventory_bp.post("/products")
@require_auth
@require_capability(Capability.MANAGE_CATALOG)
def add_product_route():
    """
    Create a product. Opening stock is written through the ledger.

    Request body:
    {
        "name": "Monstera Deliciosa",
        "sku": "PLT-MON-001",
        "category_id": 3,
        "price_cents": 149900,
        "stock_quantity": 20,
        "care_level": "easy",
        "images": [{"image_url": "...", "is_primary": true}]
    }
    """
    data = request.get_json(silent=True) or {}
    try:
        product = catalog_service.create_product(data, actor_user_id=g.current_user.id)
        activity_service.log_activity(
            g.current_user.id, "PRODUCT_CREATED", entity_type="product", entity_id=product.id,
            details={"sku": product.sku}, commit=True,
        )
        return success(product.to_dict(include_images=True), message="Product added successfully", status=201)
    except Exception as e:
        return _catalog_failure(e, "Error in add_product")


@admin_inventory_bp.put("/products/<int:product_id>")
@admin_inventory_bp.patch("/products/<int:product_id>")
@require_auth
@require_capability(Capability.MANAGE_CATALOG)
def update_product_route(product_id: int):
    """Partial update. stock_quantity is not writable here; use /stock."""
    data = request.get_json(silent=True) or {}
    try:
        product = catalog_service.update_product(product_id, data)
        return success(product.to_dict(include_images=True), message="Product updated successfully")
    except Exception as e:
        return _catalog_failure(e, "Error in update_product")


@admin_inventory_bp.get("/categories")
@require_auth
@require_capability(Capability.VIEW_INVENTORY)
def list_categories_route():
    try:
        categories = catalog_service.list_categories(include_inactive=True)
        return success([c.to_dict() for c in categories])
    except Exception as e:
        return server_error("Error in admin list_categories", e)


@admin_inventory_bp.post("/categories")
@require_auth
@require_capability(Capability.MANAGE_CATALOG)
def create_category_route():
    """Request body: {"name", "slug", "description", "parent_id", "image_url", "is_active", "display_order"}"""
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.create_category(data)
        return success(category.to_dict(), message="Category created successfully", status=201)
    except Exception as e:
        return _catalog_failure(e, "Error in create_category")


@admin_inventory_bp.put("/categories/<int:category_id>")
@require_auth
@require_capability(Capability.MANAGE_CATALOG)
def update_category_route(category_id: int):
    data = request.get_json(silent=True) or {}
    try:
        category = catalog_service.update_category(category_id, data)
        return success(category.to_dict(), message="Category updated successfully")
    except Exception as e:
        return _catalog_failure(e, "Error in update_category")


@admin_inventory_bp.delete("/categories/<int:category_id>")
@require_auth
@require_capability(Capability.MANAGE_CATALOG)
def delete_category_route(category_id: int):
    try:
        catalog_service.delete_category(category_id)
        return success(message="Category deleted successfully")
    except Exception as e:
        return _catalog_failure(e, "Error in delete_category")
