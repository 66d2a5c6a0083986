from .auth import User, AuditLog
from .customers import Customer
from .inventory import Product, Supplier, StockMovement, PurchaseHistory
from .sales import Sale, SaleItem
from .online_orders import (
    OnlineOrder, OnlineOrderItem, ShoppingCart, OrderStatusHistory, PrescriptionUpload,
    OrderStatus, OrderType, ItemStatus,
)
from .qr import QRCode, QRScanLog, QRType

__all__ = [
    'User', 'AuditLog',
    'Customer',
    'Product', 'Supplier', 'StockMovement', 'PurchaseHistory',
    'Sale', 'SaleItem',
    'OnlineOrder', 'OnlineOrderItem', 'ShoppingCart', 'OrderStatusHistory', 'PrescriptionUpload',
    'OrderStatus', 'OrderType', 'ItemStatus',
    'QRCode', 'QRScanLog', 'QRType',
]
