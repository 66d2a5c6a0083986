# Overview: Shopping cart operations for registered customers and anonymous sessions.

"""
Cart store.

A cart is the set of ShoppingCart rows owned by one customer id or one
session id. Lines carry a price snapshot and expire 24 hours after their last
add or update. Expired lines are hidden from reads but not purged here.
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from ..errors import InsufficientStockError, InvalidOwnerError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Product, ShoppingCart
from ..time_utils import utcnow, hours_from
from ..db_router import get_router
from .concurrency import DEFAULT_RETRY_ON, lock_for_update, primary_write, run_with_retry


CART_TTL_HOURS = 24

# A concurrent insert of the same (owner, product) line trips the unique
# constraint; the retry then finds the row and merges into it.
CART_RETRY_ON = DEFAULT_RETRY_ON + (IntegrityError,)


@dataclass(frozen=True)
class CartOwner:
    customer_id: str | None = None
    session_id: str | None = None

    def validate(self) -> "CartOwner":
        if bool(self.customer_id) == bool(self.session_id):
            raise InvalidOwnerError(
                "Exactly one of customer_id or session_id is required",
                details={"customer_id": self.customer_id, "session_id": self.session_id},
            )
        return self

    def criteria(self):
        if self.customer_id:
            return ShoppingCart.customer_id == self.customer_id
        return ShoppingCart.session_id == self.session_id

    def owns(self, line: ShoppingCart) -> bool:
        if self.customer_id:
            return line.customer_id == self.customer_id
        return line.session_id == self.session_id


@dataclass(frozen=True)
class PrescriptionInfo:
    """Optional per-line annotations. Only supplied fields overwrite a line."""
    dosage: str | None = None
    instructions: str | None = None
    duration: str | None = None

    @classmethod
    def from_payload(cls, data: dict | None) -> "PrescriptionInfo | None":
        if not data:
            return None
        info = cls(
            dosage=data.get("dosage"),
            instructions=data.get("instructions"),
            duration=data.get("duration"),
        )
        if info.dosage is None and info.instructions is None and info.duration is None:
            return None
        return info

    def apply(self, line: ShoppingCart) -> None:
        if self.dosage is not None:
            line.dosage = self.dosage
        if self.instructions is not None:
            line.instructions = self.instructions
        if self.duration is not None:
            line.duration = self.duration


@dataclass(frozen=True)
class CartSummary:
    line_count: int
    item_count: int
    subtotal_cents: int

    def to_dict(self) -> dict:
        return {
            "line_count": self.line_count,
            "item_count": self.item_count,
            "subtotal_cents": self.subtotal_cents,
        }


def _validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise ValidationError("quantity must be an integer", details={"quantity": quantity})
    if quantity <= 0:
        raise ValidationError("quantity must be greater than 0", details={"quantity": quantity})
    return quantity


def _load_product(product_id: str) -> Product:
    product = db.session.get(Product, product_id)
    if product is None or not product.is_active:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def _check_stock(product: Product, requested: int) -> None:
    if product.stock < requested:
        raise InsufficientStockError(
            available=product.stock,
            requested=requested,
            product_id=product.id,
            product_name=product.name,
        )


def _load_line(cart_item_id: str, owner: CartOwner | None) -> ShoppingCart:
    line = lock_for_update(db.session.query(ShoppingCart).filter_by(id=cart_item_id)).first()
    if line is None or (owner is not None and not owner.owns(line)):
        raise NotFoundError("Cart item not found", details={"cart_item_id": cart_item_id})
    return line


def add_to_cart(
    owner: CartOwner,
    product_id: str,
    quantity: int,
    prescription: PrescriptionInfo | None = None,
) -> ShoppingCart:
    """
    Add a product to the owner's cart, merging with an existing line.

    Merging sums the quantities, refreshes the price snapshot and expiry,
    and overwrites any prescription fields supplied. The merged quantity is
    checked against live stock. A line that had already expired is restarted
    with the new quantity instead of being summed.
    """
    owner.validate()
    _validate_quantity(quantity)

    def _op():
        product = _load_product(product_id)
        _check_stock(product, quantity)

        now = utcnow()
        line = lock_for_update(
            db.session.query(ShoppingCart).filter(owner.criteria(), ShoppingCart.product_id == product_id)
        ).first()

        if line is None:
            line = ShoppingCart(
                customer_id=owner.customer_id,
                session_id=owner.session_id if not owner.customer_id else None,
                product_id=product_id,
                quantity=quantity,
                unit_price_cents=product.price_cents,
                added_at=now,
                expires_at=hours_from(now, CART_TTL_HOURS),
            )
            db.session.add(line)
        else:
            restarted = line.expires_at <= now
            merged = quantity if restarted else line.quantity + quantity
            _check_stock(product, merged)
            if restarted:
                line.added_at = now
            line.quantity = merged
            line.unit_price_cents = product.price_cents
            line.expires_at = hours_from(now, CART_TTL_HOURS)

        if prescription is not None:
            prescription.apply(line)

        db.session.commit()
        return line

    with primary_write("add_to_cart", "shopping_carts"):
        return run_with_retry(_op, retry_on=CART_RETRY_ON)


def update_cart_item(
    cart_item_id: str,
    quantity: int | None = None,
    prescription: PrescriptionInfo | None = None,
    owner: CartOwner | None = None,
) -> ShoppingCart:
    """Change quantity and/or prescription fields of one line. Refreshes expiry."""
    if quantity is not None:
        _validate_quantity(quantity)

    def _op():
        line = _load_line(cart_item_id, owner)
        if quantity is not None:
            product = _load_product(line.product_id)
            _check_stock(product, quantity)
            line.quantity = quantity
            line.unit_price_cents = product.price_cents
        if prescription is not None:
            prescription.apply(line)
        line.expires_at = hours_from(utcnow(), CART_TTL_HOURS)
        db.session.commit()
        return line

    with primary_write("update_cart_item", "shopping_carts"):
        return run_with_retry(_op)


def remove_from_cart(cart_item_id: str, owner: CartOwner | None = None) -> None:
    with primary_write("remove_from_cart", "shopping_carts"):
        line = _load_line(cart_item_id, owner)
        db.session.delete(line)
        db.session.commit()


def clear_cart(owner: CartOwner) -> int:
    """Delete every line of the owner's cart, expired or not. Returns the row count."""
    owner.validate()
    with primary_write("clear_cart", "shopping_carts"):
        deleted = (
            db.session.query(ShoppingCart)
            .filter(owner.criteria())
            .delete(synchronize_session=False)
        )
        db.session.commit()
    return deleted


def get_cart(owner: CartOwner) -> list[ShoppingCart]:
    """Visible lines (expires_at strictly after now), newest first, from the read target."""
    owner.validate()
    now = utcnow()
    with get_router().read_session() as session:
        return (
            session.query(ShoppingCart)
            .filter(owner.criteria(), ShoppingCart.expires_at > now)
            .order_by(ShoppingCart.added_at.desc(), ShoppingCart.id)
            .all()
        )


def summarize_cart(lines: list[ShoppingCart]) -> CartSummary:
    return CartSummary(
        line_count=len(lines),
        item_count=sum(line.quantity for line in lines),
        subtotal_cents=sum(line.line_total_cents for line in lines),
    )
