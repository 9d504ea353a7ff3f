"""Invoice model module."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import JSON, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentcore.models.base import Base, TimestampMixin, enum_column
from rentcore.models.enums import InvoiceStatus
from rentcore.utils.clock import utcnow


class Invoice(Base, TimestampMixin):
    __tablename__ = "invoices"
    __table_args__ = (
        Index("idx_invoices_contract_status", "contract_id", "status"),
        Index("idx_invoices_contract_period", "contract_id", "period_start", "period_end"),
        Index("idx_invoices_status_due", "status", "due_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_id: Mapped[int] = mapped_column(ForeignKey("contracts.id", ondelete="RESTRICT"), nullable=False)
    number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    outstanding_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[InvoiceStatus] = mapped_column(enum_column(InvoiceStatus), default=InvoiceStatus.PENDING, nullable=False)
    line_items: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    issued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    contract = relationship("Contract", back_populates="invoices")
    payments = relationship("Payment", back_populates="invoice", order_by="Payment.id")


def make_line_item(code: str, label: str, amount: int, meta: dict[str, Any] | None = None) -> dict[str, Any]:
    """Build a normalized invoice line item (RENT, PRORATA, DEPOSIT, ...)."""
    item: dict[str, Any] = {"code": code, "label": label, "amount": int(amount)}
    if meta:
        item["meta"] = meta
    return item


def sum_line_items(items: list[dict[str, Any]]) -> int:
    return sum(int(item["amount"]) for item in items)
