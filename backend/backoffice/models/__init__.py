# Overview: Data models package exports.

from .tenancy import Organization, Location
from .auth import Role, User, SessionToken
from .audit import AuditEvent
from .documents import DocumentSequence
from .inventory import Product, Stock, StockMovement
from .transfers import Transfer, TransferItem
from .registers import CashRegister, Shift, ShiftMovement
from .treasury import BankAccount, BankAccountMovement, SafeBox, SafeBoxMovement
from .payments import (
    PaymentMethod,
    CustomerPayment,
    CustomerPaymentAllocation,
    CustomerPaymentMethod,
    SupplierPayment,
    SupplierPaymentAllocation,
    SupplierPaymentMethod,
)
from .sales import Customer, Sale, SaleItem, CreditNoteApplication, CREDIT_NOTE_VOUCHER
from .purchases import (
    Supplier,
    Purchase,
    PurchaseItem,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderHistory,
)
from .ecommerce import EcommerceStore, EcommerceProductMap

__all__ = [
    "Organization",
    "Location",
    "Role",
    "User",
    "SessionToken",
    "AuditEvent",
    "DocumentSequence",
    "Product",
    "Stock",
    "StockMovement",
    "Transfer",
    "TransferItem",
    "CashRegister",
    "Shift",
    "ShiftMovement",
    "BankAccount",
    "BankAccountMovement",
    "SafeBox",
    "SafeBoxMovement",
    "PaymentMethod",
    "CustomerPayment",
    "CustomerPaymentAllocation",
    "CustomerPaymentMethod",
    "SupplierPayment",
    "SupplierPaymentAllocation",
    "SupplierPaymentMethod",
    "Customer",
    "Sale",
    "SaleItem",
    "CreditNoteApplication",
    "CREDIT_NOTE_VOUCHER",
    "Supplier",
    "Purchase",
    "PurchaseItem",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderHistory",
    "EcommerceStore",
    "EcommerceProductMap",
]
