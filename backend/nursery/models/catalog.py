from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from nursery.time_utils import to_utc_z


STOCK_IN = "IN_STOCK"
STOCK_LOW = "LOW"
STOCK_OUT = "OUT_OF_STOCK"


def classify_stock(quantity: int, min_threshold: int) -> str:
    """Stock-status view: OUT_OF_STOCK at zero, LOW at or under the minimum threshold."""
    if quantity <= 0:
        return STOCK_OUT
    if quantity <= min_threshold:
        return STOCK_LOW
    return STOCK_IN


class Category(db.Model):
    """Hierarchical product category (self-referential parent)."""
    __tablename__ = "categories"
    __table_args__ = (
        db.Index("ix_categories_active_order", "is_active", "display_order"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=True, index=True)
    name = db.Column(db.String(120), nullable=False)
    slug = db.Column(db.String(140), nullable=False, unique=True, index=True)
    description = db.Column(db.Text, nullable=True)
    image_url = db.Column(db.String(512), nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    parent = db.relationship("Category", remote_side=[id], backref=db.backref("children", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "parent_id": self.parent_id,
            "name": self.name,
            "slug": self.slug,
            "description": self.description,
            "image_url": self.image_url,
            "display_order": self.display_order,
            "is_active": self.is_active,
        }


class Product(db.Model):
    """
    Plant (or accessory) for sale.

    STOCK: stock_quantity is mutated exclusively through
    inventory_service.apply_stock_change, which uses an atomic conditional UPDATE
    and writes an InventoryMovement in the same transaction. Nothing else
    assigns stock_quantity after creation.

    Prices are stored in minor units (paise for INR).
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock_quantity >= 0", name="ck_products_stock_non_negative"),
        db.Index("ix_products_category_active", "category_id", "is_active"),
        db.Index("ix_products_name", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    category_id = db.Column(db.Integer, db.ForeignKey("categories.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False, unique=True)
    name = db.Column(db.String(255), nullable=False)
    slug = db.Column(db.String(280), nullable=False, unique=True, index=True)
    botanical_name = db.Column(db.String(255), nullable=True)
    description = db.Column(db.Text, nullable=True)

    price_cents = db.Column(db.Integer, nullable=False)

    stock_quantity = db.Column(db.Integer, nullable=False, default=0)
    min_stock_threshold = db.Column(db.Integer, nullable=False, default=10)
    max_stock_threshold = db.Column(db.Integer, nullable=False, default=1000)
    reorder_quantity = db.Column(db.Integer, nullable=False, default=50)

    # Plant attributes
    care_level = db.Column(db.String(16), nullable=True)
    light_requirement = db.Column(db.String(64), nullable=True)
    watering_frequency = db.Column(db.String(64), nullable=True)
    image_url = db.Column(db.String(512), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    category = db.relationship("Category", backref=db.backref("products", lazy=True))
    images = db.relationship(
        "ProductImage",
        back_populates="product",
        order_by="ProductImage.display_order",
        cascade="all, delete-orphan",
    )
    __mapper_args__ = {"version_id_col": version_id}

    @hybrid_property
    def stock_status(self) -> str:
        return classify_stock(self.stock_quantity or 0, self.min_stock_threshold or 0)

    @stock_status.expression
    def stock_status(cls):
        return db.case(
            (cls.stock_quantity <= 0, STOCK_OUT),
            (cls.stock_quantity <= cls.min_stock_threshold, STOCK_LOW),
            else_=STOCK_IN,
        )

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock_quantity}>"

    def to_dict(self, include_images: bool = False) -> dict:
        data = {
            "id": self.id,
            "category_id": self.category_id,
            "category": self.category.slug if self.category else None,
            "sku": self.sku,
            "name": self.name,
            "slug": self.slug,
            "botanical_name": self.botanical_name,
            "description": self.description,
            "price_cents": self.price_cents,
            "stock_quantity": self.stock_quantity,
            "stock_status": self.stock_status,
            "min_stock_threshold": self.min_stock_threshold,
            "max_stock_threshold": self.max_stock_threshold,
            "reorder_quantity": self.reorder_quantity,
            "care_level": self.care_level,
            "light_requirement": self.light_requirement,
            "watering_frequency": self.watering_frequency,
            "image_url": self.image_url,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_images:
            data["images"] = [img.to_dict() for img in self.images]
        return data


class ProductImage(db.Model):
    __tablename__ = "product_images"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    image_url = db.Column(db.String(512), nullable=False)
    alt_text = db.Column(db.String(255), nullable=True)
    display_order = db.Column(db.Integer, nullable=False, default=0)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)

    product = db.relationship("Product", back_populates="images")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "image_url": self.image_url,
            "alt_text": self.alt_text,
            "display_order": self.display_order,
            "is_primary": self.is_primary,
        }
