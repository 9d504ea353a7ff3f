"""SQLAlchemy model package for the rental lifecycle and billing schema."""

from rentcore.models.app_setting import AppSetting
from rentcore.models.audit_log import AuditLog
from rentcore.models.base import Base
from rentcore.models.contract import Contract
from rentcore.models.enums import (
    BillingPeriod,
    ContractStatus,
    HandoverStatus,
    HandoverType,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    ProrataCharging,
    RoomStatus,
)
from rentcore.models.handover import RoomHandover
from rentcore.models.invoice import Invoice
from rentcore.models.notification import Notification
from rentcore.models.payment import Payment
from rentcore.models.room import Room
from rentcore.models.tenant import Tenant

__all__ = [
    "AppSetting",
    "AuditLog",
    "Base",
    "BillingPeriod",
    "Contract",
    "ContractStatus",
    "HandoverStatus",
    "HandoverType",
    "Invoice",
    "InvoiceStatus",
    "Notification",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "ProrataCharging",
    "Room",
    "RoomHandover",
    "RoomStatus",
    "Tenant",
]
