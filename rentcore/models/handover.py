"""Room handover (checkin/checkout) model module."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentcore.models.base import Base, TimestampMixin, enum_column
from rentcore.models.enums import HandoverStatus, HandoverType


class RoomHandover(Base, TimestampMixin):
    __tablename__ = "room_handovers"
    __table_args__ = (Index("idx_handovers_contract_type", "contract_id", "type"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_id: Mapped[int] = mapped_column(ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[HandoverType] = mapped_column(enum_column(HandoverType), nullable=False)
    status: Mapped[HandoverStatus] = mapped_column(enum_column(HandoverStatus), default=HandoverStatus.PENDING, nullable=False)
    # True when recording this handover fired a lifecycle transition without tenant acknowledgment.
    auto_transitioned: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    dispute_reason: Mapped[str | None] = mapped_column(Text)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    disputed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    contract = relationship("Contract", back_populates="handovers")
