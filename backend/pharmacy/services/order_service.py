# Overview: Online order orchestration: cart checkout, stock reservation and the order status machine.

"""
Order service.

create_order turns an owner's visible cart into an order in one primary
transaction: stock is decremented with a conditional UPDATE checked by row
count, the order and its items are inserted, a tracking QR is attached on a
best-effort basis, the initial history row is written and the cart is
cleared. The ordered lines are deleted by id first, so two checkouts of one
cart cannot both succeed. Any failure rolls the whole thing back.

Status changes follow ALLOWED_TRANSITIONS. override=True lets staff make a
correction outside the graph; the history row records that it was forced.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from ..db_router import get_router
from ..encryption import EncryptedField, FieldCipher
from ..errors import (
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    PharmacyError,
    TransactionError,
    ValidationError,
)
from ..extensions import db
from ..models import (
    Customer,
    ItemStatus,
    OnlineOrder,
    OnlineOrderItem,
    OrderStatus,
    OrderStatusHistory,
    OrderType,
    Product,
    ShoppingCart,
    StockMovement,
    User,
)
from ..models.common import new_id
from ..time_utils import utcnow, date_stamp, to_utc_z
from . import qr_service
from .audit_service import record_event
from .cart_service import CartOwner
from .concurrency import lock_for_update, primary_write, run_with_retry, statement_table


logger = logging.getLogger(__name__)

TAX_RATE = Decimal("0.12")
DELIVERY_LEAD_DAYS = 3
ORDER_NUMBER_ATTEMPTS = 2

ALLOWED_TRANSITIONS: dict[str, tuple[str, ...]] = {
    OrderStatus.PENDING: (
        OrderStatus.PAYMENT_PENDING,
        OrderStatus.PAID,
        OrderStatus.PRESCRIPTION_NEEDED,
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    ),
    OrderStatus.PAYMENT_PENDING: (OrderStatus.PAID, OrderStatus.CANCELLED),
    OrderStatus.PAID: (
        OrderStatus.PROCESSING,
        OrderStatus.PRESCRIPTION_NEEDED,
        OrderStatus.REFUNDED,
        OrderStatus.CANCELLED,
    ),
    OrderStatus.PRESCRIPTION_NEEDED: (
        OrderStatus.PAYMENT_PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    ),
    OrderStatus.PROCESSING: (OrderStatus.READY, OrderStatus.CANCELLED),
    OrderStatus.READY: (OrderStatus.OUT_FOR_DELIVERY, OrderStatus.PICKED_UP, OrderStatus.CANCELLED),
    OrderStatus.OUT_FOR_DELIVERY: (OrderStatus.DELIVERED, OrderStatus.CANCELLED),
    OrderStatus.DELIVERED: (OrderStatus.REFUNDED,),
    OrderStatus.PICKED_UP: (),
    OrderStatus.CANCELLED: (),
    OrderStatus.REFUNDED: (),
}

# Statuses that only make sense for one fulfilment type
ORDER_TYPE_ONLY = {
    OrderStatus.OUT_FOR_DELIVERY: OrderType.DELIVERY,
    OrderStatus.PICKED_UP: OrderType.PICKUP,
}


@dataclass
class CreateOrderRequest:
    customer_id: str | None = None
    session_id: str | None = None
    guest_name: str | None = None
    guest_email: str | None = None
    guest_phone: str | None = None
    order_type: str = OrderType.DELIVERY
    payment_method: str | None = None
    delivery_address: str | None = None
    delivery_city: str | None = None
    delivery_state: str | None = None
    delivery_zip_code: str | None = None
    delivery_notes: str | None = None
    delivery_fee_cents: int = 0
    discount_cents: int = 0
    customer_notes: str | None = None

    @property
    def owner(self) -> CartOwner:
        return CartOwner(customer_id=self.customer_id, session_id=self.session_id)

    @classmethod
    def from_payload(cls, data: dict) -> "CreateOrderRequest":
        known = cls.__dataclass_fields__.keys()
        return cls(**{key: value for key, value in data.items() if key in known and value is not None})


@dataclass
class OrderSearchFilters:
    status: str | None = None
    order_type: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    customer_id: str | None = None
    pharmacist_id: str | None = None
    prescription_required: bool | None = None
    limit: int = 20
    offset: int = 0


def compute_tax(subtotal_cents: int) -> int:
    """12% of subtotal, rounded half-up to the cent."""
    tax = (Decimal(subtotal_cents) * TAX_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    return int(tax)


def generate_order_number(now: datetime | None = None) -> str:
    return f"ORD-{date_stamp(now or utcnow())}-{secrets.token_hex(4)}"


def allowed_transitions(status: str, order_type: str | None = None) -> tuple[str, ...]:
    targets = ALLOWED_TRANSITIONS.get(status, ())
    if order_type is None:
        return targets
    return tuple(t for t in targets if ORDER_TYPE_ONLY.get(t, order_type) == order_type)


def _check_transition(order: OnlineOrder, new_status: str, override: bool) -> bool:
    """Return True when the move is outside the graph and allowed only by override."""
    if new_status == order.status:
        raise InvalidTransitionError(
            f"Order is already {new_status}",
            details={"status": order.status},
        )
    if new_status in allowed_transitions(order.status, order.order_type):
        return False
    if override:
        return True
    raise InvalidTransitionError(
        f"Cannot change order status from {order.status} to {new_status}",
        details={
            "from": order.status,
            "to": new_status,
            "allowed": list(allowed_transitions(order.status, order.order_type)),
        },
    )


def _non_negative_int(name: str, value) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{name} must be a non-negative integer", details={name: value})
    return value


def _validate_create_request(req: CreateOrderRequest) -> None:
    req.owner.validate()
    if req.order_type not in OrderType.ALL:
        raise ValidationError(
            "order_type must be delivery or pickup",
            details={"order_type": req.order_type},
        )
    _non_negative_int("delivery_fee_cents", req.delivery_fee_cents)
    _non_negative_int("discount_cents", req.discount_cents)

    if req.customer_id:
        if db.session.get(Customer, req.customer_id) is None:
            raise NotFoundError("Customer not found", details={"customer_id": req.customer_id})
    elif not req.guest_name or not (req.guest_email or req.guest_phone):
        raise ValidationError("Guest orders need guest_name and guest_email or guest_phone")


def _visible_cart_lines(owner: CartOwner, now: datetime) -> list[ShoppingCart]:
    # Read on the primary inside the order transaction, never from the replica.
    return (
        lock_for_update(
            db.session.query(ShoppingCart)
            .filter(owner.criteria(), ShoppingCart.expires_at > now)
            .order_by(ShoppingCart.added_at, ShoppingCart.id)
        )
        .all()
    )


def _consume_cart_lines(owner: CartOwner, lines: list[ShoppingCart]) -> None:
    """
    Delete exactly the lines being ordered.

    A concurrent checkout of the same cart that committed first has already
    deleted them, so a short row count means this cart is no longer there to
    order. SQLite ignores FOR UPDATE, which makes this the check that holds.
    """
    ids = [line.id for line in lines]
    deleted = (
        db.session.query(ShoppingCart)
        .filter(ShoppingCart.id.in_(ids))
        .delete(synchronize_session=False)
    )
    if deleted != len(ids):
        raise EmptyCartError("Cart was already checked out", details={
            "customer_id": owner.customer_id,
            "session_id": owner.session_id,
        })
    # Whatever is left is expired; the checkout empties the whole cart.
    db.session.query(ShoppingCart).filter(owner.criteria()).delete(synchronize_session=False)


def _current_stock(product_id: str):
    return db.session.execute(
        select(Product.stock, Product.name).where(Product.id == product_id)
    ).first()


def _reserve_stock(lines: list[ShoppingCart], order_id: str, order_number: str, actor_id: str | None, now: datetime) -> None:
    """Conditional decrement per line. Zero rows updated means not enough stock."""
    for line in lines:
        result = db.session.execute(
            update(Product)
            .where(Product.id == line.product_id, Product.stock >= line.quantity)
            .values(stock=Product.stock - line.quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        row = _current_stock(line.product_id)
        if result.rowcount != 1:
            raise InsufficientStockError(
                available=row.stock if row else 0,
                requested=line.quantity,
                product_id=line.product_id,
                product_name=row.name if row else None,
            )
        db.session.add(StockMovement(
            product_id=line.product_id,
            type="online_order",
            quantity=-line.quantity,
            reason="Online order",
            reference=order_number,
            stock_before=row.stock + line.quantity,
            stock_after=row.stock,
            user_id=actor_id,
            notes=f"order_id={order_id}",
            created_at=now,
        ))


def _restock(order: OnlineOrder, actor_id: str | None, now: datetime) -> None:
    for item in order.items:
        if item.status == ItemStatus.CANCELLED:
            continue
        db.session.execute(
            update(Product)
            .where(Product.id == item.product_id)
            .values(stock=Product.stock + item.quantity, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        row = _current_stock(item.product_id)
        db.session.add(StockMovement(
            product_id=item.product_id,
            type="online_order_cancel",
            quantity=item.quantity,
            reason="Online order cancelled",
            reference=order.order_number,
            stock_before=row.stock - item.quantity,
            stock_after=row.stock,
            user_id=actor_id,
            notes=f"order_id={order.id}",
            created_at=now,
        ))
        item.status = ItemStatus.CANCELLED


def _insert_order(order: OnlineOrder, now: datetime) -> None:
    """Insert inside a savepoint; an order_number clash regenerates the number once."""
    for attempt in range(ORDER_NUMBER_ATTEMPTS):
        try:
            with db.session.begin_nested():
                db.session.add(order)
            return
        except IntegrityError as exc:
            if attempt >= ORDER_NUMBER_ATTEMPTS - 1 or "order_number" not in str(exc.orig):
                raise
            logger.warning("Order number %s already taken, regenerating", order.order_number)
            order.order_number = generate_order_number(now)


def _attach_tracking_qr(order: OnlineOrder, actor_id: str | None) -> None:
    # An order is never refused because its QR could not be issued.
    try:
        with db.session.begin_nested():
            qr_service.generate_order_qr(order.id, actor_id, commit=False)
    except (PharmacyError, SQLAlchemyError):
        logger.warning(
            "Tracking QR issuance failed for order %s; continuing without code",
            order.order_number,
            exc_info=True,
        )


def create_order(req: CreateOrderRequest, cipher: FieldCipher, actor_id: str | None = None) -> OnlineOrder:
    """
    Check out the owner's cart.

    Raises ValidationError, EmptyCartError, InsufficientStockError,
    EncryptionError or TransactionError. Nothing is visible unless the whole
    order commits.
    """
    owner = req.owner
    try:
        _validate_create_request(req)
        now = utcnow()

        lines = _visible_cart_lines(owner, now)
        if not lines:
            raise EmptyCartError("Cart is empty", details={
                "customer_id": owner.customer_id,
                "session_id": owner.session_id,
            })

        subtotal = sum(line.quantity * line.unit_price_cents for line in lines)
        tax = compute_tax(subtotal)
        gross = subtotal + tax + req.delivery_fee_cents
        if req.discount_cents > gross:
            raise ValidationError(
                "discount_cents exceeds order amount",
                details={"discount_cents": req.discount_cents, "gross_cents": gross},
            )
        prescription_required = any(line.product.prescription_required for line in lines)

        # Encrypt before any write so a key problem leaves nothing behind.
        address = EncryptedField(cipher).set(req.delivery_address).to_column()

        order = OnlineOrder(
            id=new_id(),
            customer_id=req.customer_id,
            guest_name=None if req.customer_id else req.guest_name,
            guest_email=None if req.customer_id else req.guest_email,
            guest_phone=None if req.customer_id else req.guest_phone,
            order_number=generate_order_number(now),
            status=OrderStatus.PENDING,
            order_type=req.order_type,
            subtotal_cents=subtotal,
            tax_cents=tax,
            delivery_fee_cents=req.delivery_fee_cents,
            discount_cents=req.discount_cents,
            total_cents=gross - req.discount_cents,
            payment_method=req.payment_method,
            payment_status="pending",
            delivery_address_ciphertext=address,
            delivery_city=req.delivery_city,
            delivery_state=req.delivery_state,
            delivery_zip_code=req.delivery_zip_code,
            delivery_notes=req.delivery_notes,
            prescription_required=prescription_required,
            expected_delivery_date=now + timedelta(days=DELIVERY_LEAD_DAYS) if req.order_type == OrderType.DELIVERY else None,
            customer_notes=req.customer_notes,
            created_by=actor_id,
            updated_by=actor_id,
            created_at=now,
            updated_at=now,
        )

        # Claiming the cart lines opens the write transaction before any savepoint.
        _consume_cart_lines(owner, lines)
        _reserve_stock(lines, order.id, order.order_number, actor_id, now)
        _insert_order(order, now)

        for line in lines:
            db.session.add(OnlineOrderItem(
                order_id=order.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price_cents=line.unit_price_cents,
                total_price_cents=line.line_total_cents,
                dosage=line.dosage,
                instructions=line.instructions,
                duration=line.duration,
                status=ItemStatus.PENDING,
                created_at=now,
            ))
        db.session.flush()

        _attach_tracking_qr(order, actor_id)

        db.session.add(OrderStatusHistory(
            order_id=order.id,
            previous_status=None,
            new_status=OrderStatus.PENDING,
            reason="Order created",
            updated_by_user=actor_id,
            is_system_update=True,
            created_at=now,
        ))

        db.session.commit()
    except PharmacyError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Order creation failed")
        raise TransactionError(
            "Failed to create order",
            operation="create_order",
            table=statement_table(exc, "online_orders"),
        ) from exc

    logger.info("Created order %s (%s items, total %s)", order.order_number, len(lines), order.total_cents)
    record_event(
        "order.create", "online_order", order.id,
        actor_id=actor_id,
        new_values={"order_number": order.order_number, "total_cents": order.total_cents},
    )
    return order


def update_order_status(
    order_id: str,
    new_status: str,
    reason: str | None = None,
    actor_id: str | None = None,
    *,
    override: bool = False,
    notes: str | None = None,
) -> OnlineOrder:
    """
    Move an order to new_status and append history in one transaction.

    paid stamps paid_at, delivered stamps actual_delivery_date (only when
    unset), cancelled returns stock for every non-cancelled item.
    """
    if new_status not in OrderStatus.ALL:
        raise ValidationError("Unknown order status", details={"status": new_status})

    def _op():
        order = lock_for_update(db.session.query(OnlineOrder).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})

        previous = order.status
        forced = _check_transition(order, new_status, override)
        now = utcnow()

        order.status = new_status
        order.updated_by = actor_id
        if new_status == OrderStatus.PAID:
            if order.paid_at is None:
                order.paid_at = now
            order.payment_status = "paid"
        elif new_status == OrderStatus.DELIVERED:
            if order.actual_delivery_date is None:
                order.actual_delivery_date = now
        elif new_status == OrderStatus.REFUNDED:
            order.payment_status = "refunded"
        elif new_status == OrderStatus.CANCELLED:
            _restock(order, actor_id, now)

        history_notes = notes
        if forced:
            history_notes = f"Status override from {previous}" + (f": {notes}" if notes else "")

        db.session.add(OrderStatusHistory(
            order_id=order.id,
            previous_status=previous,
            new_status=new_status,
            reason=reason,
            notes=history_notes,
            updated_by_user=actor_id,
            is_system_update=actor_id is None,
            created_at=now,
        ))
        db.session.commit()
        return order, previous

    try:
        order, previous = run_with_retry(_op)
    except PharmacyError:
        db.session.rollback()
        raise
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.exception("Status update failed for order %s", order_id)
        raise TransactionError(
            "Failed to update order status",
            operation="update_order_status",
            table=statement_table(exc, "online_orders"),
        ) from exc

    logger.info("Order %s: %s -> %s", order.order_number, previous, new_status)
    record_event(
        "order.status", "online_order", order.id,
        actor_id=actor_id,
        old_values={"status": previous},
        new_values={"status": new_status, "reason": reason, "override": override},
    )
    return order


def assign_staff(
    order_id: str,
    pharmacist_id: str | None = None,
    delivery_person_id: str | None = None,
    actor_id: str | None = None,
) -> OnlineOrder:
    if pharmacist_id is None and delivery_person_id is None:
        raise ValidationError("pharmacist_id or delivery_person_id is required")

    for user_id in (pharmacist_id, delivery_person_id):
        if user_id is not None and db.session.get(User, user_id) is None:
            raise NotFoundError("User not found", details={"user_id": user_id})

    def _op():
        order = lock_for_update(db.session.query(OnlineOrder).filter_by(id=order_id)).first()
        if order is None:
            raise NotFoundError("Order not found", details={"order_id": order_id})
        if pharmacist_id is not None:
            order.pharmacist_id = pharmacist_id
        if delivery_person_id is not None:
            order.delivery_person_id = delivery_person_id
        order.updated_by = actor_id
        db.session.commit()
        return order

    with primary_write("assign_staff", "online_orders"):
        order = run_with_retry(_op)
    record_event(
        "order.assign", "online_order", order.id,
        actor_id=actor_id,
        new_values={"pharmacist_id": pharmacist_id, "delivery_person_id": delivery_person_id},
    )
    return order


def get_order(order_id: str) -> OnlineOrder:
    order = db.session.get(OnlineOrder, order_id)
    if order is None:
        raise NotFoundError("Order not found", details={"order_id": order_id})
    return order


def get_order_by_number(order_number: str) -> OnlineOrder:
    order = db.session.query(OnlineOrder).filter_by(order_number=order_number).first()
    if order is None:
        raise NotFoundError("Order not found", details={"order_number": order_number})
    return order


def track_order(order_number: str) -> dict:
    """Public tracking view: order summary plus the ordered status history."""
    order = get_order_by_number(order_number)
    return {
        "order_number": order.order_number,
        "status": order.status,
        "order_type": order.order_type,
        "expected_delivery_date": to_utc_z(order.expected_delivery_date),
        "actual_delivery_date": to_utc_z(order.actual_delivery_date),
        "tracking_number": order.tracking_number,
        "history": [entry.to_dict() for entry in order.history],
    }


def get_customer_orders(customer_id: str, limit: int = 20, offset: int = 0) -> tuple[list[OnlineOrder], int]:
    return search_orders(OrderSearchFilters(customer_id=customer_id, limit=limit, offset=offset))


def search_orders(filters: OrderSearchFilters) -> tuple[list[OnlineOrder], int]:
    """Filtered page of orders, newest first. total counts the same predicate."""
    with get_router().read_session() as session:
        query = session.query(OnlineOrder)
        if filters.status:
            query = query.filter(OnlineOrder.status == filters.status)
        if filters.order_type:
            query = query.filter(OnlineOrder.order_type == filters.order_type)
        if filters.date_from:
            query = query.filter(OnlineOrder.created_at >= filters.date_from)
        if filters.date_to:
            query = query.filter(OnlineOrder.created_at <= filters.date_to)
        if filters.customer_id:
            query = query.filter(OnlineOrder.customer_id == filters.customer_id)
        if filters.pharmacist_id:
            query = query.filter(OnlineOrder.pharmacist_id == filters.pharmacist_id)
        if filters.prescription_required is not None:
            query = query.filter(OnlineOrder.prescription_required == filters.prescription_required)

        total = query.count()
        orders = (
            query.order_by(OnlineOrder.created_at.desc(), OnlineOrder.id)
            .limit(filters.limit)
            .offset(filters.offset)
            .all()
        )
    return orders, total


def decrypt_delivery_address(order: OnlineOrder, cipher: FieldCipher) -> str | None:
    return order.delivery_address_field(cipher).get()
