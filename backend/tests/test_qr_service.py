import json
import re
from datetime import timedelta

import pytest
from sqlalchemy.exc import OperationalError

from pharmacy.extensions import db
from pharmacy.errors import (
    CodeGenerationExhaustedError,
    DatabaseTargetError,
    ExpiredCodeError,
    InvalidCodeError,
    MalformedPayloadError,
    NotFoundError,
)
from pharmacy.models import QRCode, QRScanLog, QRType
from pharmacy.services import qr_service
from pharmacy.services.qr_service import QRData, ScanContext, ScanHistoryFilters
from pharmacy.time_utils import utcnow


CODE_RE = re.compile(r"^[A-Za-z0-9_-]{22}$")


def test_generated_code_format(product_a):
    codes = {qr_service.generate_product_qr(product_a.id).code for _ in range(5)}
    assert len(codes) == 5
    assert all(CODE_RE.match(code) for code in codes)


def test_product_qr_round_trip(product_a, pharmacist):
    qr = qr_service.generate_product_qr(product_a.id, pharmacist.id)
    assert qr.expires_at is None
    assert qr.scan_count == 0

    result = qr_service.scan_qr(qr.code, ScanContext(scanned_by=pharmacist.id, scan_method="camera"))

    assert result.entity["id"] == product_a.id
    assert result.payload.type == QRType.PRODUCT
    assert result.payload.entity_type == "product"
    assert result.payload.version == "1.0"
    assert result.payload.extra["sku"] == "SKU-A"

    stored = db.session.get(QRCode, qr.id)
    assert stored.scan_count == 1
    assert stored.last_scanned is not None

    log = db.session.query(QRScanLog).one()
    assert log.qr_code_id == qr.id
    assert log.success is True
    assert log.scanned_by == pharmacist.id
    assert log.scan_method == "camera"


def test_customer_payload_has_no_medical_fields(customer):
    qr = qr_service.generate_customer_qr(customer.id)
    extra = json.loads(qr.data)["extra"]
    assert extra["customer_id"] == customer.id
    assert not {"allergies", "medical_history"} & set(extra)


def test_unknown_code_is_logged_without_reference(app):
    with pytest.raises(InvalidCodeError):
        qr_service.scan_qr("definitely-not-a-real-code")

    log = db.session.query(QRScanLog).one()
    assert log.qr_code_id is None
    assert log.success is False
    assert log.scanned_code == "definitely-not-a-real-code"
    assert log.error_message


def test_auth_code_expires(pharmacist):
    qr = qr_service.generate_auth_qr(pharmacist.id)
    assert qr.expires_at is not None
    assert qr.entity_type == "user"

    qr.expires_at = utcnow() - timedelta(seconds=1)
    db.session.commit()

    with pytest.raises(ExpiredCodeError):
        qr_service.scan_qr(qr.code)

    log = db.session.query(QRScanLog).one()
    assert log.qr_code_id == qr.id
    assert log.success is False
    assert db.session.get(QRCode, qr.id).scan_count == 0


def test_payment_code_gets_ttl(customer, product_a, cipher):
    from pharmacy.services import cart_service, order_service
    from pharmacy.services.cart_service import CartOwner
    from pharmacy.services.order_service import CreateOrderRequest

    cart_service.add_to_cart(CartOwner(customer_id=customer.id), product_a.id, 1)
    order = order_service.create_order(CreateOrderRequest(customer_id=customer.id, order_type="pickup"), cipher)

    qr = qr_service.generate_payment_qr(order.id)
    assert qr.expires_at - qr.created_at <= timedelta(hours=24, seconds=1)
    assert qr.expires_at > utcnow()


def test_malformed_payload(product_a):
    qr = qr_service.generate_product_qr(product_a.id)
    qr.data = json.dumps({"type": "product"})
    db.session.commit()

    with pytest.raises(MalformedPayloadError):
        qr_service.scan_qr(qr.code)
    assert db.session.query(QRScanLog).filter_by(success=False).count() == 1


def test_entity_gone_is_not_found(product_a):
    qr = qr_service.generate_product_qr(product_a.id)
    payload = QRData.from_json(qr.data)
    payload.entity_id = "missing-product"
    qr.data = payload.to_json()
    db.session.commit()

    with pytest.raises(NotFoundError):
        qr_service.scan_qr(qr.code)


def test_deactivated_code_is_invalid(product_a, pharmacist):
    qr = qr_service.generate_product_qr(product_a.id)
    qr_service.deactivate_qr_code(qr.id, reason="label reprinted", actor_id=pharmacist.id)

    with pytest.raises(InvalidCodeError):
        qr_service.scan_qr(qr.code)

    # Codes are never deleted
    assert db.session.get(QRCode, qr.id).is_active is False


def test_code_generation_gives_up(product_a, monkeypatch):
    taken = qr_service.generate_product_qr(product_a.id).code
    monkeypatch.setattr(qr_service, "_random_code", lambda: taken)

    with pytest.raises(CodeGenerationExhaustedError):
        qr_service.generate_code()


def test_payload_rejects_garbage():
    with pytest.raises(MalformedPayloadError):
        QRData.from_json("not json")
    with pytest.raises(MalformedPayloadError):
        QRData.from_json("[1, 2]")
    with pytest.raises(MalformedPayloadError):
        QRData.from_json(None)


def test_codes_by_entity_and_scan_history(product_a, product_b, pharmacist):
    first = qr_service.generate_product_qr(product_a.id)
    qr_service.generate_product_qr(product_a.id)
    qr_service.generate_product_qr(product_b.id)

    codes = qr_service.get_qr_codes_by_entity(product_a.id, "product")
    assert len(codes) == 2

    qr_service.scan_qr(first.code, ScanContext(scanned_by=pharmacist.id))
    qr_service.scan_qr(first.code)
    with pytest.raises(InvalidCodeError):
        qr_service.scan_qr("nope")

    logs, total = qr_service.get_scan_history(ScanHistoryFilters(qr_code_id=first.id))
    assert total == 2

    logs, total = qr_service.get_scan_history(ScanHistoryFilters(success=False))
    assert total == 1
    assert logs[0].qr_code_id is None

    logs, total = qr_service.get_scan_history(ScanHistoryFilters(limit=1))
    assert total == 3
    assert len(logs) == 1


def _failing_commit():
    raise OperationalError("COMMIT", {}, Exception("disk I/O error"))


def test_failed_generate_names_primary_and_table(product_a, monkeypatch):
    monkeypatch.setattr(db.session, "commit", _failing_commit)
    with pytest.raises(DatabaseTargetError) as exc_info:
        qr_service.generate_product_qr(product_a.id)
    monkeypatch.undo()

    assert exc_info.value.details == {"target": "primary", "operation": "generate_qr", "table": "qr_codes"}
    assert db.session.query(QRCode).count() == 0


def test_failed_deactivate_leaves_code_active(product_a, pharmacist, monkeypatch):
    qr = qr_service.generate_product_qr(product_a.id)

    monkeypatch.setattr(db.session, "commit", _failing_commit)
    with pytest.raises(DatabaseTargetError) as exc_info:
        qr_service.deactivate_qr_code(qr.id, actor_id=pharmacist.id)
    monkeypatch.undo()

    assert exc_info.value.operation == "deactivate_qr_code"
    assert exc_info.value.table == "qr_codes"
    assert db.session.get(QRCode, qr.id).is_active is True
