"""Room model module.

Rooms are managed by the CMS; this package only flips ``status`` as a side
effect of contract transitions.
"""

from __future__ import annotations

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from rentcore.models.base import Base, TimestampMixin, enum_column
from rentcore.models.enums import RoomStatus


class Room(Base, TimestampMixin):
    __tablename__ = "rooms"
    __table_args__ = (Index("idx_rooms_status", "status"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    status: Mapped[RoomStatus] = mapped_column(enum_column(RoomStatus), default=RoomStatus.VACANT, nullable=False)

    contracts = relationship("Contract", back_populates="room")
