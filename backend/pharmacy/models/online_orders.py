from __future__ import annotations

from ..extensions import db
from ..encryption import EncryptedField, EncryptedListField, FieldCipher
from ..time_utils import utcnow, to_utc_z
from .common import uuid_pk, uuid_fk


class OrderStatus:
    PENDING = "pending"
    PAYMENT_PENDING = "payment_pending"
    PAID = "paid"
    PROCESSING = "processing"
    PRESCRIPTION_NEEDED = "prescription_needed"
    READY = "ready"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    PICKED_UP = "picked_up"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    ALL = (
        PENDING, PAYMENT_PENDING, PAID, PROCESSING, PRESCRIPTION_NEEDED, READY,
        OUT_FOR_DELIVERY, DELIVERED, PICKED_UP, CANCELLED, REFUNDED,
    )
    TERMINAL = (DELIVERED, PICKED_UP, CANCELLED, REFUNDED)


class OrderType:
    DELIVERY = "delivery"
    PICKUP = "pickup"

    ALL = (DELIVERY, PICKUP)


class ItemStatus:
    PENDING = "pending"
    IN_STOCK = "in_stock"
    OUT_OF_STOCK = "out_of_stock"
    SUBSTITUTED = "substituted"
    READY = "ready"
    CANCELLED = "cancelled"

    ALL = (PENDING, IN_STOCK, OUT_OF_STOCK, SUBSTITUTED, READY, CANCELLED)


class OnlineOrder(db.Model):
    """
    Online order aggregate root.

    Created only by OrderService.create_order, mutated only through status
    transitions and staff assignment, never deleted. paid_at and
    actual_delivery_date are stamped once and never cleared.
    """
    __tablename__ = "online_orders"
    __table_args__ = (
        db.Index("ix_online_orders_status_created", "status", "created_at"),
    )

    id = uuid_pk()

    # Owner: registered customer, or guest contact details
    customer_id = uuid_fk("customers.id")
    guest_email = db.Column(db.String(255), nullable=True)
    guest_phone = db.Column(db.String(20), nullable=True)
    guest_name = db.Column(db.String(200), nullable=True)

    # ORD-YYYYMMDD-xxxxxxxx
    order_number = db.Column(db.String(50), nullable=False, unique=True)
    status = db.Column(db.String(32), nullable=False, default=OrderStatus.PENDING)
    order_type = db.Column(db.String(16), nullable=False, default=OrderType.DELIVERY)

    subtotal_cents = db.Column(db.Integer, nullable=False)
    tax_cents = db.Column(db.Integer, nullable=False, default=0)
    delivery_fee_cents = db.Column(db.Integer, nullable=False, default=0)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)
    total_cents = db.Column(db.Integer, nullable=False)

    payment_method = db.Column(db.String(50), nullable=True)
    payment_status = db.Column(db.String(50), nullable=False, default="pending")
    payment_reference = db.Column(db.String(100), nullable=True)
    paid_at = db.Column(db.DateTime, nullable=True)

    # Ciphertext; read through delivery_address_field()
    delivery_address_ciphertext = db.Column("delivery_address", db.Text, nullable=True)
    delivery_city = db.Column(db.String(100), nullable=True)
    delivery_state = db.Column(db.String(100), nullable=True)
    delivery_zip_code = db.Column(db.String(20), nullable=True)
    delivery_notes = db.Column(db.Text, nullable=True)

    prescription_required = db.Column(db.Boolean, nullable=False, default=False)
    prescription_uploaded = db.Column(db.Boolean, nullable=False, default=False)
    prescription_images_ciphertext = db.Column("prescription_images", db.Text, nullable=True)
    prescription_notes = db.Column(db.Text, nullable=True)

    expected_delivery_date = db.Column(db.DateTime, nullable=True)
    actual_delivery_date = db.Column(db.DateTime, nullable=True)
    tracking_number = db.Column(db.String(100), nullable=True)

    pharmacist_id = uuid_fk("users.id")
    delivery_person_id = uuid_fk("users.id")

    customer_notes = db.Column(db.Text, nullable=True)
    pharmacy_notes = db.Column(db.Text, nullable=True)

    qr_code = db.Column(db.String(100), nullable=True, unique=True)

    created_by = db.Column(db.String(36), nullable=True)
    updated_by = db.Column(db.String(36), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    customer = db.relationship("Customer")
    items = db.relationship(
        "OnlineOrderItem",
        backref="order",
        lazy=True,
        order_by="OnlineOrderItem.created_at",
    )
    history = db.relationship(
        "OrderStatusHistory",
        backref="order",
        lazy=True,
        order_by="OrderStatusHistory.created_at",
    )

    __mapper_args__ = {"version_id_col": version_id}

    def delivery_address_field(self, cipher: FieldCipher) -> EncryptedField:
        return EncryptedField.from_column(cipher, self.delivery_address_ciphertext)

    def prescription_images_field(self, cipher: FieldCipher) -> EncryptedListField:
        return EncryptedListField.from_column(cipher, self.prescription_images_ciphertext)

    @property
    def is_terminal(self) -> bool:
        return self.status in OrderStatus.TERMINAL

    def __repr__(self) -> str:
        return f"<OnlineOrder {self.order_number} status={self.status}>"

    def to_dict(
        self,
        cipher: FieldCipher | None = None,
        *,
        include_items: bool = False,
        include_history: bool = False,
    ) -> dict:
        """
        Serialize the order. Protected fields are decrypted only when a
        cipher is supplied; otherwise only their presence is reported.
        """
        data = {
            "id": self.id,
            "customer_id": self.customer_id,
            "guest_email": self.guest_email,
            "guest_phone": self.guest_phone,
            "guest_name": self.guest_name,
            "order_number": self.order_number,
            "status": self.status,
            "order_type": self.order_type,
            "subtotal_cents": self.subtotal_cents,
            "tax_cents": self.tax_cents,
            "delivery_fee_cents": self.delivery_fee_cents,
            "discount_cents": self.discount_cents,
            "total_cents": self.total_cents,
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "payment_reference": self.payment_reference,
            "paid_at": to_utc_z(self.paid_at),
            "delivery_city": self.delivery_city,
            "delivery_state": self.delivery_state,
            "delivery_zip_code": self.delivery_zip_code,
            "delivery_notes": self.delivery_notes,
            "prescription_required": self.prescription_required,
            "prescription_uploaded": self.prescription_uploaded,
            "prescription_notes": self.prescription_notes,
            "expected_delivery_date": to_utc_z(self.expected_delivery_date),
            "actual_delivery_date": to_utc_z(self.actual_delivery_date),
            "tracking_number": self.tracking_number,
            "pharmacist_id": self.pharmacist_id,
            "delivery_person_id": self.delivery_person_id,
            "customer_notes": self.customer_notes,
            "pharmacy_notes": self.pharmacy_notes,
            "qr_code": self.qr_code,
            "created_by": self.created_by,
            "updated_by": self.updated_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
            "version_id": self.version_id,
        }
        if cipher is not None:
            data["delivery_address"] = self.delivery_address_field(cipher).to_json()
            data["prescription_images"] = self.prescription_images_field(cipher).to_json()
        else:
            data["has_delivery_address"] = self.delivery_address_ciphertext is not None
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
        if include_history:
            data["history"] = [entry.to_dict() for entry in self.history]
        return data


class OnlineOrderItem(db.Model):
    """Order line. Price and total are snapshots from the cart line."""
    __tablename__ = "online_order_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_online_order_items_quantity_positive"),
    )

    id = uuid_pk()
    order_id = uuid_fk("online_orders.id", nullable=False)
    product_id = uuid_fk("products.id", nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    total_price_cents = db.Column(db.Integer, nullable=False)
    discount_cents = db.Column(db.Integer, nullable=False, default=0)

    dosage = db.Column(db.String(100), nullable=True)
    instructions = db.Column(db.Text, nullable=True)
    duration = db.Column(db.String(100), nullable=True)

    status = db.Column(db.String(32), nullable=False, default=ItemStatus.PENDING)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "total_price_cents": self.total_price_cents,
            "discount_cents": self.discount_cents,
            "dosage": self.dosage,
            "instructions": self.instructions,
            "duration": self.duration,
            "status": self.status,
            "notes": self.notes,
        }


class ShoppingCart(db.Model):
    """
    One cart line. Owned by exactly one of customer_id / session_id.

    unit_price_cents is captured when the line is added or merged, not
    live-priced. A line is visible only while now < expires_at.
    """
    __tablename__ = "shopping_carts"
    __table_args__ = (
        db.CheckConstraint(
            "(customer_id IS NULL) <> (session_id IS NULL)",
            name="ck_shopping_carts_single_owner",
        ),
        db.CheckConstraint("quantity > 0", name="ck_shopping_carts_quantity_positive"),
        db.UniqueConstraint("customer_id", "product_id", name="uq_shopping_carts_customer_product"),
        db.UniqueConstraint("session_id", "product_id", name="uq_shopping_carts_session_product"),
    )

    id = uuid_pk()
    customer_id = uuid_fk("customers.id")
    session_id = db.Column(db.String(100), nullable=True, index=True)
    product_id = uuid_fk("products.id", nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    dosage = db.Column(db.String(100), nullable=True)
    instructions = db.Column(db.Text, nullable=True)
    duration = db.Column(db.String(100), nullable=True)

    added_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    product = db.relationship("Product")

    @property
    def line_total_cents(self) -> int:
        return self.quantity * self.unit_price_cents

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "session_id": self.session_id,
            "product_id": self.product_id,
            "quantity": self.quantity,
            "unit_price_cents": self.unit_price_cents,
            "line_total_cents": self.line_total_cents,
            "dosage": self.dosage,
            "instructions": self.instructions,
            "duration": self.duration,
            "added_at": to_utc_z(self.added_at),
            "expires_at": to_utc_z(self.expires_at),
        }


class OrderStatusHistory(db.Model):
    """Append-only status log. One row at creation and one per transition."""
    __tablename__ = "order_status_histories"

    id = uuid_pk()
    order_id = uuid_fk("online_orders.id", nullable=False)

    previous_status = db.Column(db.String(32), nullable=True)
    new_status = db.Column(db.String(32), nullable=False)
    reason = db.Column(db.Text, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    updated_by_user = uuid_fk("users.id")
    is_system_update = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "reason": self.reason,
            "notes": self.notes,
            "updated_by_user": self.updated_by_user,
            "is_system_update": self.is_system_update,
            "created_at": to_utc_z(self.created_at),
        }


class PrescriptionUpload(db.Model):
    """Prescription image metadata. Storage locations are ciphertext."""
    __tablename__ = "prescription_uploads"

    id = uuid_pk()
    order_id = uuid_fk("online_orders.id")
    customer_id = uuid_fk("customers.id")

    file_name = db.Column(db.String(255), nullable=False)
    file_size = db.Column(db.BigInteger, nullable=False)
    mime_type = db.Column(db.String(100), nullable=False)
    file_hash = db.Column(db.String(64), nullable=False)

    storage_path = db.Column(db.Text, nullable=True)
    cloud_url = db.Column(db.Text, nullable=True)

    verified_by = uuid_fk("users.id")
    verified_at = db.Column(db.DateTime, nullable=True)
    is_valid = db.Column(db.Boolean, nullable=True)
    verification_notes = db.Column(db.Text, nullable=True)
    retention_date = db.Column(db.DateTime, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "order_id": self.order_id,
            "customer_id": self.customer_id,
            "file_name": self.file_name,
            "file_size": self.file_size,
            "mime_type": self.mime_type,
            "file_hash": self.file_hash,
            "verified_by": self.verified_by,
            "verified_at": to_utc_z(self.verified_at),
            "is_valid": self.is_valid,
            "created_at": to_utc_z(self.created_at),
        }
