from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z
from .common import uuid_pk, uuid_fk


class Sale(db.Model):
    """In-store (counter) sale. Recorded by the POS collaborator; replicated here."""
    __tablename__ = "sales"

    id = uuid_pk()
    customer_id = uuid_fk("customers.id")
    sale_number = db.Column(db.String(50), nullable=False, unique=True)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(50), nullable=False)
    payment_status = db.Column(db.String(50), nullable=False, default="completed")
    payment_reference = db.Column(db.String(100), nullable=True)

    prescription_number = db.Column(db.String(100), nullable=True)
    pharmacist_id = uuid_fk("users.id")
    cashier_id = uuid_fk("users.id")

    status = db.Column(db.String(50), nullable=False, default="completed")
    notes = db.Column(db.Text, nullable=True)
    refunded_at = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "sale_number": self.sale_number,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class SaleItem(db.Model):
    __tablename__ = "sale_items"

    id = uuid_pk()
    sale_id = uuid_fk("sales.id", nullable=False)
    product_id = uuid_fk("products.id", nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    batch_number = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    sale = db.relationship("Sale", backref=db.backref("items", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sale_id": self.sale_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "created_at": to_utc_z(self.created_at),
        }
