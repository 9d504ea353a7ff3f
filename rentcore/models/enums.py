"""Canonical enum values for the rental schema."""

from __future__ import annotations

import enum


class ContractStatus(str, enum.Enum):
    PENDING_PAYMENT = "pending_payment"
    BOOKED = "booked"
    ACTIVE = "active"
    OVERDUE = "overdue"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BillingPeriod(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    OVERDUE = "overdue"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    REVIEW = "review"
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CASH = "cash"
    TRANSFER = "transfer"
    VIRTUAL_ACCOUNT = "virtual_account"
    GATEWAY = "gateway"


class RoomStatus(str, enum.Enum):
    VACANT = "vacant"
    RESERVED = "reserved"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    INACTIVE = "inactive"


class HandoverType(str, enum.Enum):
    CHECKIN = "checkin"
    CHECKOUT = "checkout"


class HandoverStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DISPUTED = "disputed"


class ProrataCharging(str, enum.Enum):
    """How a partial billing month is charged."""

    FULL = "full"
    FREE = "free"
    THRESHOLD = "threshold"


# Statuses that still hold a room / block a duplicate renewal.
LIVE_CONTRACT_STATUSES = (
    ContractStatus.PENDING_PAYMENT,
    ContractStatus.BOOKED,
    ContractStatus.ACTIVE,
)

TERMINAL_CONTRACT_STATUSES = (
    ContractStatus.COMPLETED,
    ContractStatus.CANCELLED,
)

PAYABLE_INVOICE_STATUSES = (
    InvoiceStatus.PENDING,
    InvoiceStatus.OVERDUE,
)
