from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z
from .common import uuid_pk, uuid_fk


class QRType:
    PRODUCT = "product"
    CUSTOMER = "customer"
    ORDER = "order"
    PAYMENT = "payment"
    AUTH = "auth"

    ALL = (PRODUCT, CUSTOMER, ORDER, PAYMENT, AUTH)
    EXPIRING = (PAYMENT, AUTH)


class QRCode(db.Model):
    """
    Opaque code bound to an entity.

    data holds the serialized QRData payload (snapshot of display fields).
    Codes are deactivated, never deleted. scan_count is best-effort.
    """
    __tablename__ = "qr_codes"
    __table_args__ = (
        db.Index("ix_qr_codes_entity", "entity_type", "entity_id"),
    )

    id = uuid_pk()
    code = db.Column(db.String(100), nullable=False, unique=True)
    type = db.Column(db.String(16), nullable=False)

    entity_id = db.Column(db.String(36), nullable=False)
    entity_type = db.Column(db.String(50), nullable=False)

    generated_by = uuid_fk("users.id")
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    expires_at = db.Column(db.DateTime, nullable=True)

    scan_count = db.Column(db.Integer, nullable=False, default=0)
    last_scanned = db.Column(db.DateTime, nullable=True)

    data = db.Column(db.Text, nullable=False)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self) -> str:
        return f"<QRCode {self.code} {self.type}:{self.entity_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "code": self.code,
            "type": self.type,
            "entity_id": self.entity_id,
            "entity_type": self.entity_type,
            "generated_by": self.generated_by,
            "is_active": self.is_active,
            "expires_at": to_utc_z(self.expires_at),
            "scan_count": self.scan_count,
            "last_scanned": to_utc_z(self.last_scanned),
            "created_at": to_utc_z(self.created_at),
        }


class QRScanLog(db.Model):
    """One row per scan attempt, successful or not. qr_code_id is NULL for unknown codes."""
    __tablename__ = "qr_scan_logs"

    id = uuid_pk()
    qr_code_id = uuid_fk("qr_codes.id")
    scanned_code = db.Column(db.String(100), nullable=True)

    scanned_by = uuid_fk("users.id")
    session_id = db.Column(db.String(100), nullable=True)
    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(500), nullable=True)

    success = db.Column(db.Boolean, nullable=False, default=True)
    error_message = db.Column(db.Text, nullable=True)

    scan_method = db.Column(db.String(50), nullable=True)
    location = db.Column(db.String(100), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow, index=True)

    qr = db.relationship("QRCode")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "qr_code_id": self.qr_code_id,
            "scanned_code": self.scanned_code,
            "scanned_by": self.scanned_by,
            "session_id": self.session_id,
            "ip_address": self.ip_address,
            "success": self.success,
            "error_message": self.error_message,
            "scan_method": self.scan_method,
            "location": self.location,
            "created_at": to_utc_z(self.created_at),
        }
