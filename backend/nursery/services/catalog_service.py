# Overview: Service-layer operations for the catalog; product listing/search and admin product/category management.

from __future__ import annotations

from sqlalchemy import func

from ..extensions import db
from ..models import Category, Product, ProductImage, ProductReview
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    ConflictError,
    NotFoundError,
    validate_payload,
    enforce_rules_product,
    CARE_LEVELS,
)
from .concurrency import run_with_retry
from .identifier_service import unique_slug
from . import inventory_service


SORT_OPTIONS = ("newest", "price_low", "price_high", "rating", "name")
DEFAULT_PAGE_SIZE = 12


PRODUCT_POLICY = ModelValidationPolicy(
    writable_fields={
        "sku", "name", "botanical_name", "description", "price_cents", "category_id",
        "min_stock_threshold", "max_stock_threshold", "reorder_quantity",
        "care_level", "light_requirement", "watering_frequency", "image_url", "is_active",
    },
    required_on_create={"sku", "name", "price_cents", "category_id"},
)

CATEGORY_POLICY = ModelValidationPolicy(
    writable_fields={"name", "description", "parent_id", "image_url", "display_order", "is_active"},
    required_on_create={"name"},
)


def _rating_subquery():
    return (
        db.session.query(
            ProductReview.product_id.label("product_id"),
            func.avg(ProductReview.rating).label("avg_rating"),
            func.count(ProductReview.id).label("review_count"),
        )
        .filter(ProductReview.is_approved.is_(True))
        .group_by(ProductReview.product_id)
        .subquery()
    )


def _with_rating(product: Product, avg_rating, review_count) -> dict:
    data = product.to_dict()
    data["avg_rating"] = round(float(avg_rating), 2) if avg_rating is not None else None
    data["review_count"] = int(review_count or 0)
    return data


# =============================================================================
# STOREFRONT
# =============================================================================

def list_products(
    *,
    page: int = 1,
    limit: int = DEFAULT_PAGE_SIZE,
    category: str | None = None,
    search: str | None = None,
    sort: str = "newest",
    min_price: int | None = None,
    max_price: int | None = None,
    care_level: str | None = None,
) -> tuple[list[dict], int]:
    """
    Public catalog page. Only active products in active categories.

    category is a category slug; search matches name, description and
    botanical name; prices are minor units.
    """
    if sort not in SORT_OPTIONS:
        sort = "newest"
    if care_level and care_level not in CARE_LEVELS:
        raise ValidationError(
            f"careLevel must be one of: {', '.join(CARE_LEVELS)}",
            {"careLevel": f"must be one of: {', '.join(CARE_LEVELS)}"},
        )
    if min_price is not None and max_price is not None and min_price > max_price:
        raise ValidationError("minPrice cannot exceed maxPrice", {"minPrice": "cannot exceed maxPrice"})

    ratings = _rating_subquery()
    q = (
        db.session.query(Product, ratings.c.avg_rating, ratings.c.review_count)
        .join(Category, Product.category_id == Category.id)
        .outerjoin(ratings, ratings.c.product_id == Product.id)
        .filter(Product.is_active.is_(True), Category.is_active.is_(True))
    )

    if category:
        q = q.filter(Category.slug == category)
    if search:
        like = f"%{search.strip()}%"
        q = q.filter(db.or_(
            Product.name.ilike(like),
            Product.description.ilike(like),
            Product.botanical_name.ilike(like),
        ))
    if min_price is not None:
        q = q.filter(Product.price_cents >= min_price)
    if max_price is not None:
        q = q.filter(Product.price_cents <= max_price)
    if care_level:
        q = q.filter(Product.care_level == care_level)

    if sort == "price_low":
        q = q.order_by(Product.price_cents.asc(), Product.id.desc())
    elif sort == "price_high":
        q = q.order_by(Product.price_cents.desc(), Product.id.desc())
    elif sort == "rating":
        q = q.order_by(func.coalesce(ratings.c.avg_rating, 0).desc(), Product.id.desc())
    elif sort == "name":
        q = q.order_by(Product.name.asc())
    else:
        q = q.order_by(Product.id.desc())

    total = q.count()
    rows = q.offset((page - 1) * limit).limit(limit).all()
    return [_with_rating(p, avg, count) for p, avg, count in rows], total


def get_product_by_slug(slug: str) -> dict:
    ratings = _rating_subquery()
    row = (
        db.session.query(Product, ratings.c.avg_rating, ratings.c.review_count)
        .outerjoin(ratings, ratings.c.product_id == Product.id)
        .filter(Product.slug == slug, Product.is_active.is_(True))
        .first()
    )
    if row is None:
        raise NotFoundError("Product not found")
    product, avg, count = row
    data = _with_rating(product, avg, count)
    data["images"] = [img.to_dict() for img in product.images]
    return data


def list_categories(include_inactive: bool = False) -> list[Category]:
    q = db.session.query(Category)
    if not include_inactive:
        q = q.filter(Category.is_active.is_(True))
    return q.order_by(Category.display_order.asc(), Category.name.asc()).all()


# =============================================================================
# ADMIN: PRODUCTS
# =============================================================================

def _require_category(category_id) -> Category:
    category = db.session.get(Category, category_id)
    if category is None:
        raise ValidationError("Category not found", {"category_id": "does not exist"})
    return category


def create_product(payload: dict, actor_user_id: int | None = None) -> Product:
    """
    Create a product. The slug is derived from the name. Initial stock goes
    through the stock ledger so it is recorded as a movement.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    initial_stock = payload.get("stock_quantity", 0) or 0
    if isinstance(initial_stock, bool) or not isinstance(initial_stock, int) or initial_stock < 0:
        raise ValidationError("stock_quantity must be a non-negative integer",
                              {"stock_quantity": "must be a non-negative integer"})

    _require_category(patch["category_id"])
    if db.session.query(Product.id).filter(Product.sku == patch["sku"]).first():
        raise ConflictError(f"SKU {patch['sku']} already exists")

    images = payload.get("images") or []

    try:
        product = Product(**patch)
        product.slug = unique_slug(Product, patch["name"])
        product.stock_quantity = 0
        db.session.add(product)
        db.session.flush()

        for index, image in enumerate(images):
            url = image.get("image_url") if isinstance(image, dict) else image
            if not url:
                continue
            db.session.add(ProductImage(
                product_id=product.id,
                image_url=url,
                alt_text=image.get("alt_text") if isinstance(image, dict) else None,
                display_order=index,
                is_primary=index == 0,
            ))

        if initial_stock > 0:
            inventory_service.apply_stock_change(
                product.id,
                initial_stock,
                inventory_service.OPERATION_INCREASE,
                reason="initial_stock",
                actor_user_id=actor_user_id,
                notes="Initial stock",
            )
        inventory_service.check_and_notify_low_stock(product.id)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    return product


def update_product(product_id: int, payload: dict) -> Product:
    """
    Patch product attributes. stock_quantity is ignored here; stock only
    changes through the stock ledger.
    """
    patch = validate_payload(model=Product, payload=payload, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    if "category_id" in patch:
        _require_category(patch["category_id"])

    def _op():
        product = db.session.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product not found")
        if "sku" in patch and patch["sku"] != product.sku:
            taken = db.session.query(Product.id).filter(Product.sku == patch["sku"], Product.id != product_id).first()
            if taken:
                raise ConflictError(f"SKU {patch['sku']} already exists")
        for key, value in patch.items():
            setattr(product, key, value)
        if "name" in patch:
            product.slug = unique_slug(Product, patch["name"], exclude_id=product.id)
        db.session.commit()
        return product

    return run_with_retry(_op)


def get_product(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


# =============================================================================
# ADMIN: CATEGORIES
# =============================================================================

def _validate_parent(parent_id, category_id: int | None = None) -> None:
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise ValidationError("A category cannot be its own parent", {"parent_id": "cannot reference itself"})
    parent = db.session.get(Category, parent_id)
    if parent is None:
        raise ValidationError("Parent category not found", {"parent_id": "does not exist"})
    # Walk up to reject cycles
    seen = set()
    while parent is not None and parent.id not in seen:
        if category_id is not None and parent.id == category_id:
            raise ValidationError("Category hierarchy cannot contain cycles", {"parent_id": "would create a cycle"})
        seen.add(parent.id)
        parent = parent.parent


def create_category(payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=False)
    _validate_parent(patch.get("parent_id"))

    category = Category(**patch)
    category.slug = unique_slug(Category, payload.get("slug") or patch["name"])
    db.session.add(category)
    db.session.commit()
    return category


def update_category(category_id: int, payload: dict) -> Category:
    patch = validate_payload(model=Category, payload=payload, policy=CATEGORY_POLICY, partial=True)

    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    if "parent_id" in patch:
        _validate_parent(patch["parent_id"], category_id)

    for key, value in patch.items():
        setattr(category, key, value)
    if payload.get("slug"):
        category.slug = unique_slug(Category, payload["slug"], exclude_id=category.id)
    db.session.commit()
    return category


def delete_category(category_id: int) -> None:
    category = db.session.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category not found")
    if db.session.query(Product.id).filter(Product.category_id == category_id).first():
        raise ConflictError("Category still has products; move or deactivate them first")
    if db.session.query(Category.id).filter(Category.parent_id == category_id).first():
        raise ConflictError("Category still has subcategories")
    db.session.delete(category)
    db.session.commit()
