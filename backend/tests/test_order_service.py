import threading
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from pharmacy.extensions import db
from pharmacy.errors import (
    CodeGenerationExhaustedError,
    EmptyCartError,
    InsufficientStockError,
    InvalidTransitionError,
    TransactionError,
    ValidationError,
)
from pharmacy.models import (
    ItemStatus,
    OnlineOrder,
    OnlineOrderItem,
    OrderStatus,
    OrderStatusHistory,
    Product,
    QRCode,
    ShoppingCart,
    StockMovement,
)
from pharmacy.services import cart_service, order_service, qr_service
from pharmacy.services.cart_service import CartOwner
from pharmacy.services.order_service import CreateOrderRequest, OrderSearchFilters, compute_tax
from pharmacy.time_utils import utcnow


def _fill_cart(customer, *items):
    owner = CartOwner(customer_id=customer.id)
    for product, quantity in items:
        cart_service.add_to_cart(owner, product.id, quantity)
    return owner


def _pickup(customer, **kwargs):
    return CreateOrderRequest(customer_id=customer.id, order_type="pickup", **kwargs)


def test_pickup_order_totals_and_atomic_cart_clear(customer, product_a, product_b, cipher):
    owner = _fill_cart(customer, (product_a, 2), (product_b, 1))

    order = order_service.create_order(_pickup(customer), cipher)

    assert order.subtotal_cents == 4500
    assert order.tax_cents == 540
    assert order.delivery_fee_cents == 0
    assert order.total_cents == 5040
    assert order.prescription_required is False
    assert order.status == OrderStatus.PENDING
    assert order.expected_delivery_date is None
    assert order.delivery_address_ciphertext is None
    assert order.order_number.startswith("ORD-" + utcnow().strftime("%Y%m%d") + "-")
    assert len(order.order_number) == len("ORD-20250214-a1b2c3d4")

    items = {i.product_id: i for i in order.items}
    assert items[product_a.id].quantity == 2
    assert items[product_a.id].unit_price_cents == 1000
    assert items[product_a.id].total_price_cents == 2000
    assert items[product_b.id].quantity == 1

    assert cart_service.get_cart(owner) == []
    history = db.session.query(OrderStatusHistory).filter_by(order_id=order.id).all()
    assert len(history) == 1
    assert history[0].previous_status is None
    assert history[0].new_status == OrderStatus.PENDING
    assert history[0].is_system_update is True


def test_order_decrements_stock_and_records_movements(customer, product_a, product_b, cipher):
    _fill_cart(customer, (product_a, 2), (product_b, 1))
    order = order_service.create_order(_pickup(customer), cipher)

    assert db.session.get(Product, product_a.id).stock == 8
    assert db.session.get(Product, product_b.id).stock == 4
    movements = db.session.query(StockMovement).filter_by(reference=order.order_number).all()
    assert sorted(m.quantity for m in movements) == [-2, -1]


def test_order_gets_tracking_qr(customer, product_a, cipher):
    _fill_cart(customer, (product_a, 1))
    order = order_service.create_order(_pickup(customer), cipher)

    assert order.qr_code is not None
    qr = db.session.query(QRCode).filter_by(code=order.qr_code).one()
    assert qr.entity_id == order.id
    assert qr.type == "order"
    assert qr.expires_at is None


def test_delivery_order_encrypts_address(customer, product_rx, cipher):
    _fill_cart(customer, (product_rx, 1))
    req = CreateOrderRequest(
        customer_id=customer.id,
        order_type="delivery",
        delivery_address="12 Mabini St, Quezon City",
        delivery_city="Quezon City",
        delivery_fee_cents=5000,
        discount_cents=100,
    )

    order = order_service.create_order(req, cipher)

    assert order.prescription_required is True
    assert order.total_cents == 1500 + 180 + 5000 - 100
    assert "Mabini" not in order.delivery_address_ciphertext
    assert order_service.decrypt_delivery_address(order, cipher) == "12 Mabini St, Quezon City"
    assert order.expected_delivery_date - order.created_at == timedelta(days=3)
    assert order.to_dict(cipher)["delivery_address"] == "12 Mabini St, Quezon City"
    assert "delivery_address" not in order.to_dict()


def test_delivery_order_without_address(customer, product_a, cipher):
    _fill_cart(customer, (product_a, 1))

    order = order_service.create_order(
        CreateOrderRequest(customer_id=customer.id, order_type="delivery"), cipher,
    )

    assert order.order_type == "delivery"
    assert order.delivery_address_ciphertext is None
    assert order_service.decrypt_delivery_address(order, cipher) is None
    assert order.expected_delivery_date - order.created_at == timedelta(days=3)


def test_insufficient_stock_on_later_line_rolls_back_everything(customer, product_a, product_b, product_rx, cipher):
    owner = _fill_cart(customer, (product_a, 2), (product_rx, 1), (product_b, 3))
    db.session.query(Product).filter_by(id=product_b.id).update({"stock": 2})
    db.session.commit()

    with pytest.raises(InsufficientStockError) as exc_info:
        order_service.create_order(_pickup(customer), cipher)

    assert exc_info.value.product_id == product_b.id
    assert exc_info.value.available == 2
    assert exc_info.value.requested == 3
    assert db.session.query(OnlineOrder).count() == 0
    assert db.session.query(OnlineOrderItem).count() == 0
    assert db.session.query(StockMovement).count() == 0
    assert len(cart_service.get_cart(owner)) == 3
    assert db.session.get(Product, product_a.id).stock == 10


def test_empty_cart(customer, cipher):
    with pytest.raises(EmptyCartError):
        order_service.create_order(_pickup(customer), cipher)


def test_expired_lines_do_not_count(customer, product_a, cipher):
    _fill_cart(customer, (product_a, 1))
    db.session.query(ShoppingCart).update({"expires_at": utcnow() - timedelta(seconds=1)})
    db.session.commit()

    with pytest.raises(EmptyCartError):
        order_service.create_order(_pickup(customer), cipher)


def test_concurrent_checkouts_of_one_cart_order_it_once(app, customer, product_a, monkeypatch):
    _fill_cart(customer, (product_a, 2))
    customer_id, product_id = customer.id, product_a.id

    # Both checkouts read the cart before either one writes.
    both_loaded = threading.Barrier(2)
    load_lines = order_service._visible_cart_lines

    def load_then_wait(owner, now):
        lines = load_lines(owner, now)
        both_loaded.wait(timeout=5)
        return lines

    monkeypatch.setattr(order_service, "_visible_cart_lines", load_then_wait)

    outcomes = []

    def checkout():
        with app.app_context():
            try:
                order = order_service.create_order(
                    CreateOrderRequest(customer_id=customer_id, order_type="pickup"),
                    app.extensions["field_cipher"],
                )
                outcomes.append(order.order_number)
            except EmptyCartError as exc:
                outcomes.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=checkout) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert len(outcomes) == 2
    assert sum(isinstance(outcome, EmptyCartError) for outcome in outcomes) == 1
    db.session.expire_all()
    assert db.session.query(OnlineOrder).count() == 1
    assert db.session.query(OnlineOrderItem).count() == 1
    assert db.session.get(Product, product_id).stock == 8
    assert db.session.query(ShoppingCart).count() == 0


def test_checkout_also_removes_expired_lines(customer, product_a, product_b, cipher):
    _fill_cart(customer, (product_a, 1), (product_b, 1))
    db.session.query(ShoppingCart).filter_by(product_id=product_b.id).update(
        {"expires_at": utcnow() - timedelta(seconds=1)}
    )
    db.session.commit()

    order = order_service.create_order(_pickup(customer), cipher)

    assert [item.product_id for item in order.items] == [product_a.id]
    assert db.session.query(ShoppingCart).count() == 0
    assert db.session.get(Product, product_b.id).stock == 5


def test_failed_commit_reports_target_and_leaves_nothing(customer, product_a, cipher, monkeypatch):
    owner = _fill_cart(customer, (product_a, 1))

    def fail():
        raise OperationalError("COMMIT", {}, Exception("disk I/O error"))

    monkeypatch.setattr(db.session, "commit", fail)
    with pytest.raises(TransactionError) as exc_info:
        order_service.create_order(_pickup(customer), cipher)
    monkeypatch.undo()

    assert exc_info.value.details == {"target": "primary", "operation": "create_order", "table": "online_orders"}
    assert db.session.query(OnlineOrder).count() == 0
    assert db.session.query(QRCode).count() == 0
    assert db.session.get(Product, product_a.id).stock == 10
    assert len(cart_service.get_cart(owner)) == 1


@pytest.mark.parametrize("kwargs", [
    {"order_type": "drone"},
    {"order_type": "pickup", "delivery_fee_cents": -1},
    {"order_type": "pickup", "discount_cents": 999999},
])
def test_invalid_requests_write_nothing(customer, product_a, cipher, kwargs):
    owner = _fill_cart(customer, (product_a, 1))

    with pytest.raises(ValidationError):
        order_service.create_order(CreateOrderRequest(customer_id=customer.id, **kwargs), cipher)

    assert db.session.query(OnlineOrder).count() == 0
    assert len(cart_service.get_cart(owner)) == 1


def test_guest_order_requires_contact(product_a, cipher):
    owner = CartOwner(session_id="guest-1")
    cart_service.add_to_cart(owner, product_a.id, 1)

    with pytest.raises(ValidationError):
        order_service.create_order(CreateOrderRequest(session_id="guest-1", order_type="pickup"), cipher)

    order = order_service.create_order(CreateOrderRequest(
        session_id="guest-1",
        order_type="pickup",
        guest_name="Ana Santos",
        guest_phone="09171234567",
    ), cipher)
    assert order.customer_id is None
    assert order.guest_name == "Ana Santos"
    assert cart_service.get_cart(owner) == []


def test_qr_failure_does_not_block_order(customer, product_a, cipher, monkeypatch):
    _fill_cart(customer, (product_a, 1))

    def exhausted():
        raise CodeGenerationExhaustedError("no codes left")

    monkeypatch.setattr(qr_service, "generate_code", exhausted)
    order = order_service.create_order(_pickup(customer), cipher)

    assert order.qr_code is None
    assert db.session.query(OnlineOrder).count() == 1
    assert db.session.query(QRCode).count() == 0


def test_order_number_collision_is_retried_once(customer, product_a, product_b, cipher, monkeypatch):
    _fill_cart(customer, (product_a, 1))
    first = order_service.create_order(_pickup(customer), cipher)

    numbers = iter([first.order_number, "ORD-20261019-deadbeef"])
    monkeypatch.setattr(order_service, "generate_order_number", lambda now=None: next(numbers))
    _fill_cart(customer, (product_b, 1))

    second = order_service.create_order(_pickup(customer), cipher)
    assert second.order_number == "ORD-20261019-deadbeef"
    assert db.session.query(OnlineOrder).count() == 2


def test_compute_tax_rounds_half_up():
    assert compute_tax(4500) == 540
    assert compute_tax(1) == 0
    assert compute_tax(5) == 1  # 0.6 cents
    assert compute_tax(125) == 15
    assert compute_tax(0) == 0


# ----------------------------------------------------------------------
# Status machine

@pytest.fixture
def pickup_order(customer, product_a, cipher):
    _fill_cart(customer, (product_a, 2))
    return order_service.create_order(_pickup(customer), cipher)


def test_paid_stamps_paid_at_once(pickup_order, pharmacist):
    order = order_service.update_order_status(pickup_order.id, OrderStatus.PAID, "cash", pharmacist.id)
    paid_at = order.paid_at
    assert paid_at is not None
    assert order.payment_status == "paid"

    order_service.update_order_status(order.id, OrderStatus.PROCESSING, actor_id=pharmacist.id)
    order = order_service.update_order_status(
        order.id, OrderStatus.PAID, "correction", pharmacist.id, override=True,
    )
    assert order.paid_at == paid_at


def test_pickup_flow_and_history(pickup_order, pharmacist):
    for status in (OrderStatus.PROCESSING, OrderStatus.READY, OrderStatus.PICKED_UP):
        order_service.update_order_status(pickup_order.id, status, actor_id=pharmacist.id)

    history = order_service.track_order(pickup_order.order_number)["history"]
    assert [h["new_status"] for h in history] == ["pending", "processing", "ready", "picked_up"]
    assert [h["previous_status"] for h in history] == [None, "pending", "processing", "ready"]
    assert history[1]["is_system_update"] is False


def test_system_update_when_no_actor(pickup_order):
    order_service.update_order_status(pickup_order.id, OrderStatus.PAYMENT_PENDING)
    last = db.session.query(OrderStatusHistory).filter_by(new_status="payment_pending").one()
    assert last.is_system_update is True


def test_delivery_only_status_rejected_for_pickup(pickup_order, pharmacist):
    order_service.update_order_status(pickup_order.id, OrderStatus.PROCESSING, actor_id=pharmacist.id)
    order_service.update_order_status(pickup_order.id, OrderStatus.READY, actor_id=pharmacist.id)

    with pytest.raises(InvalidTransitionError):
        order_service.update_order_status(pickup_order.id, OrderStatus.OUT_FOR_DELIVERY, actor_id=pharmacist.id)


def test_invalid_transition_leaves_order_and_history_untouched(pickup_order, pharmacist):
    with pytest.raises(InvalidTransitionError):
        order_service.update_order_status(pickup_order.id, OrderStatus.DELIVERED, actor_id=pharmacist.id)
    with pytest.raises(InvalidTransitionError):
        order_service.update_order_status(pickup_order.id, OrderStatus.PENDING, actor_id=pharmacist.id)

    assert db.session.get(OnlineOrder, pickup_order.id).status == OrderStatus.PENDING
    assert db.session.query(OrderStatusHistory).filter_by(order_id=pickup_order.id).count() == 1


def test_override_is_recorded(pickup_order, pharmacist):
    order_service.update_order_status(pickup_order.id, OrderStatus.CANCELLED, actor_id=pharmacist.id)
    order_service.update_order_status(
        pickup_order.id, OrderStatus.PENDING, "cancelled by mistake", pharmacist.id, override=True,
    )

    last = (
        db.session.query(OrderStatusHistory)
        .filter_by(order_id=pickup_order.id, new_status=OrderStatus.PENDING, previous_status=OrderStatus.CANCELLED)
        .one()
    )
    assert "override" in last.notes.lower()


def test_cancel_restocks_items(pickup_order, product_a, pharmacist):
    assert db.session.get(Product, product_a.id).stock == 8

    order = order_service.update_order_status(pickup_order.id, OrderStatus.CANCELLED, actor_id=pharmacist.id)

    assert db.session.get(Product, product_a.id).stock == 10
    assert all(item.status == ItemStatus.CANCELLED for item in order.items)


def test_delivered_stamps_actual_delivery_date(customer, product_a, cipher, pharmacist):
    _fill_cart(customer, (product_a, 1))
    order = order_service.create_order(CreateOrderRequest(
        customer_id=customer.id, order_type="delivery", delivery_address="Somewhere 1",
    ), cipher)

    for status in (OrderStatus.PAID, OrderStatus.PROCESSING, OrderStatus.READY,
                   OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED):
        order = order_service.update_order_status(order.id, status, actor_id=pharmacist.id)

    assert order.actual_delivery_date is not None
    order = order_service.update_order_status(order.id, OrderStatus.REFUNDED, actor_id=pharmacist.id)
    assert order.payment_status == "refunded"
    assert order.actual_delivery_date is not None


def test_allowed_transitions_respects_order_type():
    assert OrderStatus.PICKED_UP not in order_service.allowed_transitions(OrderStatus.READY, "delivery")
    assert OrderStatus.OUT_FOR_DELIVERY in order_service.allowed_transitions(OrderStatus.READY, "delivery")
    assert order_service.allowed_transitions(OrderStatus.REFUNDED) == ()


def test_assign_staff(pickup_order, pharmacist):
    order = order_service.assign_staff(pickup_order.id, pharmacist_id=pharmacist.id, actor_id=pharmacist.id)
    assert order.pharmacist_id == pharmacist.id

    with pytest.raises(ValidationError):
        order_service.assign_staff(pickup_order.id)


# ----------------------------------------------------------------------
# Search

def test_search_counts_and_pages_with_same_filter(customer, product_a, product_b, product_rx, cipher):
    for product in (product_a, product_b, product_rx):
        _fill_cart(customer, (product, 1))
        order_service.create_order(_pickup(customer), cipher)

    orders, total = order_service.search_orders(OrderSearchFilters(prescription_required=False, limit=1))
    assert total == 2
    assert len(orders) == 1

    orders, total = order_service.search_orders(OrderSearchFilters(customer_id=customer.id))
    assert total == 3
    assert orders[0].created_at >= orders[-1].created_at

    orders, total = order_service.search_orders(OrderSearchFilters(status=OrderStatus.PAID))
    assert (orders, total) == ([], 0)

    orders, total = order_service.get_customer_orders(customer.id, limit=2, offset=2)
    assert total == 3
    assert len(orders) == 1
