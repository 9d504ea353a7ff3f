"""Contract model module."""

from __future__ import annotations

from datetime import date, datetime

from sqlalchemy import Boolean, Date, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentcore.models.base import Base, TimestampMixin, enum_column
from rentcore.models.enums import BillingPeriod, ContractStatus


class Contract(Base, TimestampMixin):
    __tablename__ = "contracts"
    __table_args__ = (
        Index("idx_contracts_status", "status"),
        Index("idx_contracts_tenant_room", "tenant_id", "room_id"),
        Index("idx_contracts_status_end", "status", "end_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(ForeignKey("tenants.id", ondelete="RESTRICT"), nullable=False)
    room_id: Mapped[int] = mapped_column(ForeignKey("rooms.id", ondelete="RESTRICT"), nullable=False)
    status: Mapped[ContractStatus] = mapped_column(
        enum_column(ContractStatus), default=ContractStatus.PENDING_PAYMENT, nullable=False
    )
    billing_period: Mapped[BillingPeriod] = mapped_column(enum_column(BillingPeriod), nullable=False)
    duration_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    # Inclusive: the tenant occupies the room on end_date.
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    rent_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    deposit_amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    paid_in_full_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    renewal_cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    renewed_from_id: Mapped[int | None] = mapped_column(ForeignKey("contracts.id", ondelete="SET NULL"))
    notes: Mapped[str | None] = mapped_column(Text)

    tenant = relationship("Tenant", back_populates="contracts")
    room = relationship("Room", back_populates="contracts")
    invoices = relationship("Invoice", back_populates="contract", order_by="Invoice.period_start")
    handovers = relationship("RoomHandover", back_populates="contract", order_by="RoomHandover.id")
    renewed_from = relationship("Contract", remote_side=[id])
