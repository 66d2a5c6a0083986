# Overview: QR code issuance, validation and scan auditing.

"""
QR code registry.

Codes are opaque 22-character URL-safe strings. Each QRCode row carries a
versioned JSON payload with a snapshot of the entity's display fields, so a
scanner can show basic info, but a successful scan always returns the live
entity record as well.

Every scan attempt, failed or not, produces a QRScanLog row. Scan logs and
scan counters are best-effort and never fail the scan itself.
"""

from __future__ import annotations

import base64
import json
import logging
import secrets
from dataclasses import asdict, dataclass, field
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from ..errors import (
    CodeGenerationExhaustedError,
    ExpiredCodeError,
    InvalidCodeError,
    MalformedPayloadError,
    NotFoundError,
)
from ..extensions import db
from ..models import Customer, OnlineOrder, Product, QRCode, QRScanLog, QRType, User
from ..time_utils import utcnow, hours_from, to_utc_z
from .audit_service import record_event
from .background import get_background_tasks
from .concurrency import primary_write


logger = logging.getLogger(__name__)

CODE_LENGTH = 22
CODE_RANDOM_BYTES = 16
MAX_CODE_ATTEMPTS = 10
EXPIRING_TTL_HOURS = 24
PAYLOAD_VERSION = "1.0"

PAYLOAD_KEYS = ("type", "entity_id", "entity_type", "timestamp", "version", "extra")


@dataclass(frozen=True)
class ProductQRData:
    product_id: str
    name: str
    generic_name: str | None
    brand: str | None
    sku: str
    barcode: str | None
    price_cents: int
    unit: str
    prescription_required: bool

    @classmethod
    def from_product(cls, product: Product) -> "ProductQRData":
        return cls(
            product_id=product.id,
            name=product.name,
            generic_name=product.generic_name,
            brand=product.brand,
            sku=product.sku,
            barcode=product.barcode,
            price_cents=product.price_cents,
            unit=product.unit,
            prescription_required=product.prescription_required,
        )


@dataclass(frozen=True)
class CustomerQRData:
    # Contact fields only. Medical columns never go into a payload.
    customer_id: str
    full_name: str
    email: str | None
    phone: str
    loyalty_points: int

    @classmethod
    def from_customer(cls, customer: Customer) -> "CustomerQRData":
        return cls(
            customer_id=customer.id,
            full_name=customer.full_name,
            email=customer.email,
            phone=customer.phone,
            loyalty_points=customer.loyalty_points,
        )


@dataclass(frozen=True)
class OrderQRData:
    order_id: str
    order_number: str
    status: str
    order_type: str
    total_cents: int
    created_at: str | None
    tracking_url: str

    @classmethod
    def from_order(cls, order: OnlineOrder) -> "OrderQRData":
        return cls(
            order_id=order.id,
            order_number=order.order_number,
            status=order.status,
            order_type=order.order_type,
            total_cents=order.total_cents,
            created_at=to_utc_z(order.created_at),
            tracking_url=f"/orders/{order.id}/track",
        )


@dataclass
class QRData:
    """Serialized form stored in QRCode.data."""
    type: str
    entity_id: str
    entity_type: str
    timestamp: str
    version: str = PAYLOAD_VERSION
    extra: dict = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: str | None) -> "QRData":
        try:
            data = json.loads(raw or "")
        except (TypeError, ValueError) as exc:
            raise MalformedPayloadError("QR payload is not valid JSON") from exc
        if not isinstance(data, dict):
            raise MalformedPayloadError("QR payload must be a JSON object")
        missing = [key for key in PAYLOAD_KEYS if key not in data]
        if missing:
            raise MalformedPayloadError(
                "QR payload is missing fields",
                details={"missing": missing},
            )
        if not isinstance(data["extra"], dict):
            raise MalformedPayloadError("QR payload extra must be an object")
        return cls(**{key: data[key] for key in PAYLOAD_KEYS})


@dataclass(frozen=True)
class ScanContext:
    scanned_by: str | None = None
    session_id: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    scan_method: str | None = None
    location: str | None = None


@dataclass
class QRScanResult:
    qr_code: QRCode
    payload: QRData
    entity: dict

    def to_dict(self) -> dict:
        return {
            "qr_code": self.qr_code.to_dict(),
            "payload": asdict(self.payload),
            "entity": self.entity,
        }


@dataclass(frozen=True)
class ScanHistoryFilters:
    qr_code_id: str | None = None
    scanned_by: str | None = None
    success: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    limit: int = 50
    offset: int = 0


# ----------------------------------------------------------------------
# Code generation

def _random_code() -> str:
    raw = secrets.token_bytes(CODE_RANDOM_BYTES)
    return base64.urlsafe_b64encode(raw).decode("ascii")[:CODE_LENGTH]


def generate_code() -> str:
    """Draw codes until one is unused. Gives up after MAX_CODE_ATTEMPTS."""
    for _ in range(MAX_CODE_ATTEMPTS):
        code = _random_code()
        exists = db.session.query(QRCode.id).filter_by(code=code).first()
        if exists is None:
            return code
    raise CodeGenerationExhaustedError(
        f"Could not generate a unique QR code after {MAX_CODE_ATTEMPTS} attempts",
    )


def _issue(
    qr_type: str,
    entity_id: str,
    entity_type: str,
    extra: dict,
    issued_by: str | None,
    commit: bool,
) -> QRCode:
    now = utcnow()
    payload = QRData(
        type=qr_type,
        entity_id=entity_id,
        entity_type=entity_type,
        timestamp=to_utc_z(now),
        extra=extra,
    )
    qr = QRCode(
        code=generate_code(),
        type=qr_type,
        entity_id=entity_id,
        entity_type=entity_type,
        generated_by=issued_by,
        is_active=True,
        expires_at=hours_from(now, EXPIRING_TTL_HOURS) if qr_type in QRType.EXPIRING else None,
        scan_count=0,
        data=payload.to_json(),
    )
    db.session.add(qr)

    if commit:
        with primary_write("generate_qr", "qr_codes"):
            db.session.commit()
        record_event(
            "qr.generate", "qr_code", qr.id,
            actor_id=issued_by,
            new_values={"type": qr_type, "entity_id": entity_id},
        )
    else:
        db.session.flush()
    return qr


def _require(model, entity_id: str, label: str):
    entity = db.session.get(model, entity_id)
    if entity is None:
        raise NotFoundError(f"{label} not found", details={"id": entity_id})
    return entity


def generate_product_qr(product_id: str, issued_by: str | None = None, *, commit: bool = True) -> QRCode:
    product = _require(Product, product_id, "Product")
    extra = asdict(ProductQRData.from_product(product))
    return _issue(QRType.PRODUCT, product.id, "product", extra, issued_by, commit)


def generate_customer_qr(customer_id: str, issued_by: str | None = None, *, commit: bool = True) -> QRCode:
    customer = _require(Customer, customer_id, "Customer")
    extra = asdict(CustomerQRData.from_customer(customer))
    return _issue(QRType.CUSTOMER, customer.id, "customer", extra, issued_by, commit)


def generate_order_qr(order_id: str, issued_by: str | None = None, *, commit: bool = True) -> QRCode:
    """Issue a tracking code and attach it to the order if it has none."""
    order = _require(OnlineOrder, order_id, "Order")
    extra = asdict(OrderQRData.from_order(order))
    qr = _issue(QRType.ORDER, order.id, "order", extra, issued_by, commit=False)
    if order.qr_code is None:
        order.qr_code = qr.code
    if commit:
        with primary_write("generate_qr", "qr_codes"):
            db.session.commit()
        record_event(
            "qr.generate", "qr_code", qr.id,
            actor_id=issued_by,
            new_values={"type": QRType.ORDER, "entity_id": order.id},
        )
    else:
        db.session.flush()
    return qr


def generate_payment_qr(order_id: str, issued_by: str | None = None, *, commit: bool = True) -> QRCode:
    """Payment code for an order. Expires 24 hours after issue."""
    order = _require(OnlineOrder, order_id, "Order")
    extra = asdict(OrderQRData.from_order(order))
    return _issue(QRType.PAYMENT, order.id, "order", extra, issued_by, commit)


def generate_auth_qr(user_id: str, issued_by: str | None = None, *, commit: bool = True) -> QRCode:
    """Login code for a staff user. Expires 24 hours after issue."""
    user = _require(User, user_id, "User")
    extra = {"user_id": user.id, "username": user.username, "role": user.role}
    return _issue(QRType.AUTH, user.id, "user", extra, issued_by or user.id, commit)


# ----------------------------------------------------------------------
# Scanning

def _write_scan_log(payload: dict) -> None:
    with primary_write("log_scan", "qr_scan_logs"):
        db.session.add(QRScanLog(**payload))
        db.session.commit()


def _log_scan(
    qr: QRCode | None,
    code: str,
    context: ScanContext,
    *,
    success: bool,
    error_message: str | None = None,
) -> None:
    payload = asdict(context)
    payload.update({
        "qr_code_id": qr.id if qr is not None else None,
        "scanned_code": code[:100] if code else None,
        "success": success,
        "error_message": error_message,
        "created_at": utcnow(),
    })
    get_background_tasks().submit("qr_scan_log", _write_scan_log, payload)


def _bump_scan_stats(qr: QRCode, now: datetime) -> None:
    # Lost increments under concurrent scans are acceptable.
    try:
        db.session.query(QRCode).filter_by(id=qr.id).update(
            {QRCode.scan_count: QRCode.scan_count + 1, QRCode.last_scanned: now},
            synchronize_session=False,
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.warning("Failed to update scan statistics for QR %s", qr.id, exc_info=True)


def _load_entity(payload: QRData) -> dict:
    if payload.entity_type == "product":
        return _require(Product, payload.entity_id, "Product").to_dict()
    if payload.entity_type == "customer":
        return _require(Customer, payload.entity_id, "Customer").to_dict()
    if payload.entity_type == "order":
        return _require(OnlineOrder, payload.entity_id, "Order").to_dict(include_items=True)
    if payload.entity_type == "user":
        return _require(User, payload.entity_id, "User").to_dict()
    raise MalformedPayloadError(
        "Unknown entity type in QR payload",
        details={"entity_type": payload.entity_type},
    )


def scan_qr(code: str, context: ScanContext | None = None) -> QRScanResult:
    """
    Validate a scanned code and return its live entity.

    Raises InvalidCodeError, ExpiredCodeError, MalformedPayloadError or
    NotFoundError. Each of those is preceded by a failed scan log.
    """
    context = context or ScanContext()
    now = utcnow()

    qr = db.session.query(QRCode).filter_by(code=code, is_active=True).first()
    if qr is None:
        _log_scan(None, code, context, success=False, error_message="QR code not found or inactive")
        raise InvalidCodeError("Invalid QR code", details={"code": code})

    if qr.expires_at is not None and qr.expires_at <= now:
        _log_scan(qr, code, context, success=False, error_message="QR code expired")
        raise ExpiredCodeError("QR code has expired", details={"expires_at": to_utc_z(qr.expires_at)})

    try:
        payload = QRData.from_json(qr.data)
        entity = _load_entity(payload)
    except (MalformedPayloadError, NotFoundError) as exc:
        _log_scan(qr, code, context, success=False, error_message=exc.message)
        raise

    _bump_scan_stats(qr, now)
    _log_scan(qr, code, context, success=True)

    return QRScanResult(qr_code=qr, payload=payload, entity=entity)


# ----------------------------------------------------------------------
# Management

def get_qr_codes_by_entity(entity_id: str, entity_type: str) -> list[QRCode]:
    return (
        db.session.query(QRCode)
        .filter_by(entity_id=entity_id, entity_type=entity_type)
        .order_by(QRCode.created_at.desc())
        .all()
    )


def deactivate_qr_code(qr_code_id: str, reason: str | None = None, actor_id: str | None = None) -> QRCode:
    """Soft-deactivate. Codes are never deleted so scan logs keep their reference."""
    qr = _require(QRCode, qr_code_id, "QR code")
    was_active = qr.is_active
    qr.is_active = False
    with primary_write("deactivate_qr_code", "qr_codes"):
        db.session.commit()

    record_event(
        "qr.deactivate", "qr_code", qr.id,
        actor_id=actor_id,
        old_values={"is_active": was_active},
        new_values={"is_active": False, "reason": reason},
    )
    return qr


def get_scan_history(filters: ScanHistoryFilters | None = None) -> tuple[list[QRScanLog], int]:
    """Scan logs newest first, with a total computed from the same predicate."""
    filters = filters or ScanHistoryFilters()
    query = db.session.query(QRScanLog)
    if filters.qr_code_id:
        query = query.filter(QRScanLog.qr_code_id == filters.qr_code_id)
    if filters.scanned_by:
        query = query.filter(QRScanLog.scanned_by == filters.scanned_by)
    if filters.success is not None:
        query = query.filter(QRScanLog.success == filters.success)
    if filters.date_from:
        query = query.filter(QRScanLog.created_at >= filters.date_from)
    if filters.date_to:
        query = query.filter(QRScanLog.created_at <= filters.date_to)

    total = query.count()
    logs = (
        query.order_by(QRScanLog.created_at.desc())
        .limit(filters.limit)
        .offset(filters.offset)
        .all()
    )
    return logs, total
