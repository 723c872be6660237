"""Enumerations and defaults shared across Atacado ERP modules.

Keeps the persisted vocabulary (status values, roles, sheet names, column
layouts) in a single place so the data access layer, the business rules and
the CLI agree on every identifier written to the workbook.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Mapping, Sequence


# Schema version the code expects to find declared in ``config.ini``.
EXPECTED_SCHEMA_VERSION = "2.0.0"

# Upper bound for a single atomic batch write.
DEFAULT_MAX_BATCH_OPERATIONS = 500
DEFAULT_REAUTH_WINDOW_MINUTES = 5
DEFAULT_SLA_GOOD_MINUTES = 10
DEFAULT_SLA_WARNING_MINUTES = 60

MONEY_QUANTUM = Decimal("0.01")


class UserRole(str, Enum):
    """Roles recognised by the ordering portal."""

    MANAGER = "manager"
    SELLER = "seller"
    CLIENT = "client"


class OrderStatus(str, Enum):
    """Lifecycle states of a wholesale order."""

    GENERATED = "generated"
    IN_PROGRESS = "in_progress"
    INVOICED = "invoiced"
    SENT = "sent"
    FINISHED = "finished"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderStatus.FINISHED, OrderStatus.CANCELLED)


ORDER_STATUS_LABELS: Mapping[OrderStatus, str] = {
    OrderStatus.GENERATED: "Novo Pedido",
    OrderStatus.IN_PROGRESS: "Em Andamento",
    OrderStatus.INVOICED: "Faturado",
    OrderStatus.SENT: "Enviado",
    OrderStatus.FINISHED: "Concluído",
    OrderStatus.CANCELLED: "Cancelado",
}


class NotificationType(str, Enum):
    """Kinds of alerts emitted to users."""

    ORDER_STATUS = "order_status"
    ORDER_CANCELLED = "order_cancelled"


class SlaBucket(str, Enum):
    """Informal triage buckets for order handling time."""

    GOOD = "good"
    WARNING = "warning"
    CRITICAL = "critical"


class TransactionKind(str, Enum):
    """Direction of a personal-finance transaction."""

    INCOME = "income"
    EXPENSE = "expense"


class TransactionStatus(str, Enum):
    """Settlement state of a personal-finance transaction."""

    PENDING = "pending"
    PAID = "paid"


class RecurrenceFrequency(str, Enum):
    """Supported recurrence steps for installment expansion."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SheetName(str, Enum):
    """Workbook sheets (document collections) managed by the DAL."""

    USERS = "Users"
    PRODUCTS = "Products"
    ORDERS = "Orders"
    TRANSACTIONS = "Transactions"
    NOTIFICATIONS = "Notifications"


# Column layout per collection. The first column always holds the document id.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.USERS.value: [
        "UserID",
        "Name",
        "Email",
        "Role",
        "IsActive",
        "PasswordHash",
        "CpfCnpj",
        "Phone",
        "Address",
        "CreatedAt",
        "ResetToken",
    ],
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Code",
        "Description",
        "Group",
        "Price",
        "IsActive",
    ],
    SheetName.ORDERS.value: [
        "OrderID",
        "ClientID",
        "ClientName",
        "SellerID",
        "SellerName",
        "Items",
        "Total",
        "Status",
        "CreatedAt",
        "ReceivedAt",
        "InvoicedAt",
        "CancelReason",
        "Version",
    ],
    SheetName.TRANSACTIONS.value: [
        "TransactionID",
        "UserID",
        "Description",
        "Amount",
        "Type",
        "Category",
        "DueDate",
        "Status",
        "PaymentMethod",
        "IsRecurring",
        "Frequency",
        "RecurrenceCount",
        "Observation",
        "CreatedAt",
    ],
    SheetName.NOTIFICATIONS.value: [
        "NotificationID",
        "RecipientID",
        "Title",
        "Message",
        "Type",
        "IsRead",
        "CreatedAt",
        "OrderID",
    ],
}


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_MAX_BATCH_OPERATIONS",
    "DEFAULT_REAUTH_WINDOW_MINUTES",
    "DEFAULT_SLA_GOOD_MINUTES",
    "DEFAULT_SLA_WARNING_MINUTES",
    "MONEY_QUANTUM",
    "UserRole",
    "OrderStatus",
    "ORDER_STATUS_LABELS",
    "NotificationType",
    "SlaBucket",
    "TransactionKind",
    "TransactionStatus",
    "RecurrenceFrequency",
    "SheetName",
    "SHEET_COLUMNS",
]
