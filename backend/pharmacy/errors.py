# Overview: Error taxonomy shared by the routing, cart, order and QR layers.

from __future__ import annotations


class PharmacyError(Exception):
    """Base class. Carries a user-facing message and structured details."""
    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PharmacyError):
    """400-level input problem. Raised before any write."""


class InvalidOwnerError(ValidationError):
    """Exactly one of customer_id / session_id must identify a cart."""


class EmptyCartError(ValidationError):
    """Order creation requested for a cart with no visible lines."""


class InvalidTransitionError(ValidationError):
    """Order status change not allowed by the status graph."""


class InsufficientStockError(PharmacyError):
    def __init__(
        self,
        available: int,
        requested: int,
        product_id: str | None = None,
        product_name: str | None = None,
    ):
        label = product_name or product_id
        if label:
            message = f"Insufficient stock for {label}: available {available}, requested {requested}"
        else:
            message = f"Insufficient stock: available {available}, requested {requested}"
        super().__init__(message, details={
            "product_id": product_id,
            "available": available,
            "requested": requested,
        })
        self.available = available
        self.requested = requested
        self.product_id = product_id


class NotFoundError(PharmacyError):
    """Product, order, cart line or QR code absent."""


class TransactionError(PharmacyError):
    """Commit or rollback failed; nothing from the operation is visible."""
    def __init__(self, message: str, operation: str, table: str | None = None, target: str = "primary"):
        super().__init__(message, details={
            "target": target,
            "operation": operation,
            "table": table,
        })
        self.target = target
        self.operation = operation
        self.table = table


class EncryptionError(PharmacyError):
    """Key missing or ciphertext malformed. Never degrades to plaintext."""


class CodeGenerationExhaustedError(PharmacyError):
    """No unique QR code found within the retry budget."""


class QRScanError(PharmacyError):
    """Base for scan failures. Every one of these has a scan log entry."""


class InvalidCodeError(QRScanError):
    pass


class ExpiredCodeError(QRScanError):
    pass


class MalformedPayloadError(QRScanError):
    pass


class DatabaseTargetError(PharmacyError):
    """
    A database operation failed on a specific target.

    target/operation/table let callers tell "primary unreachable" from
    "secondary unreachable" without parsing the message.
    """
    def __init__(self, target: str, operation: str, cause: Exception | None = None, table: str | None = None):
        where = f"{target}.{table}" if table else target
        super().__init__(f"{operation} failed on {where}", details={
            "target": target,
            "operation": operation,
            "table": table,
        })
        self.target = target
        self.operation = operation
        self.table = table
        self.__cause__ = cause


class SyncDisabledError(PharmacyError):
    """Replication requested while SYNC_ENABLED is off."""
