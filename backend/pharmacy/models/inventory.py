from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z
from .common import uuid_pk, uuid_fk


class Product(db.Model):
    """
    Sellable product (drug, supplement, device).

    stock is the live on-hand quantity. Online orders decrement it with a
    conditional UPDATE, never with read-then-write.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.CheckConstraint("stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = uuid_pk()
    name = db.Column(db.String(255), nullable=False)
    generic_name = db.Column(db.String(255), nullable=True)
    brand = db.Column(db.String(255), nullable=True)
    category = db.Column(db.String(100), nullable=False, default="general", index=True)
    manufacturer = db.Column(db.String(255), nullable=True)
    product_type = db.Column(db.String(32), nullable=False, default="drug")

    sku = db.Column(db.String(100), nullable=False, unique=True)
    barcode = db.Column(db.String(100), nullable=True, unique=True)
    price_cents = db.Column(db.Integer, nullable=False)
    cost_cents = db.Column(db.Integer, nullable=False, default=0)
    stock = db.Column(db.Integer, nullable=False, default=0)
    min_stock = db.Column(db.Integer, nullable=False, default=10)
    unit = db.Column(db.String(50), nullable=False, default="piece")

    batch_number = db.Column(db.String(100), nullable=True)
    expiry_date = db.Column(db.Date, nullable=True)
    prescription_required = db.Column(db.Boolean, nullable=False, default=False)
    controlled_substance = db.Column(db.Boolean, nullable=False, default=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "generic_name": self.generic_name,
            "brand": self.brand,
            "category": self.category,
            "manufacturer": self.manufacturer,
            "product_type": self.product_type,
            "sku": self.sku,
            "barcode": self.barcode,
            "price_cents": self.price_cents,
            "stock": self.stock,
            "unit": self.unit,
            "batch_number": self.batch_number,
            "expiry_date": self.expiry_date.isoformat() if self.expiry_date else None,
            "prescription_required": self.prescription_required,
            "controlled_substance": self.controlled_substance,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Supplier(db.Model):
    __tablename__ = "suppliers"

    id = uuid_pk()
    name = db.Column(db.String(255), nullable=False)
    contact_person = db.Column(db.String(255), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(20), nullable=True)
    city = db.Column(db.String(100), nullable=True)
    country = db.Column(db.String(100), nullable=False, default="Philippines")
    license_number = db.Column(db.String(100), nullable=True)
    payment_terms = db.Column(db.String(100), nullable=False, default="NET 30")
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "contact_person": self.contact_person,
            "email": self.email,
            "phone": self.phone,
            "payment_terms": self.payment_terms,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class StockMovement(db.Model):
    """
    Append-only stock ledger.

    quantity is signed: negative for outflow (online order), positive for
    inflow (cancellation restock, receiving).
    """
    __tablename__ = "stock_movements"

    id = uuid_pk()
    product_id = uuid_fk("products.id", nullable=False)
    type = db.Column(db.String(32), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(255), nullable=False)
    reference = db.Column(db.String(100), nullable=True, index=True)

    stock_before = db.Column(db.Integer, nullable=False)
    stock_after = db.Column(db.Integer, nullable=False)

    user_id = uuid_fk("users.id")
    supplier_id = uuid_fk("suppliers.id")
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "type": self.type,
            "quantity": self.quantity,
            "reason": self.reason,
            "reference": self.reference,
            "stock_before": self.stock_before,
            "stock_after": self.stock_after,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
        }


class PurchaseHistory(db.Model):
    __tablename__ = "purchase_history"

    id = uuid_pk()
    customer_id = uuid_fk("customers.id", nullable=False)
    product_id = uuid_fk("products.id", nullable=False)
    sale_id = uuid_fk("sales.id")

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    purchase_date = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    prescription_number = db.Column(db.String(100), nullable=True)
    prescribed_by = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "product_id": self.product_id,
            "sale_id": self.sale_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "purchase_date": to_utc_z(self.purchase_date),
        }
