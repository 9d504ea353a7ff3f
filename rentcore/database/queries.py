"""Row-locking loaders and shared lookups used by the lifecycle handlers."""

from __future__ import annotations

from datetime import date

from sqlalchemy.orm import Session

from rentcore.models.contract import Contract
from rentcore.models.enums import (
    LIVE_CONTRACT_STATUSES,
    PAYABLE_INVOICE_STATUSES,
    ContractStatus,
    HandoverType,
    InvoiceStatus,
)
from rentcore.models.handover import RoomHandover
from rentcore.models.invoice import Invoice
from rentcore.models.payment import Payment


def lock_contract(db: Session, contract_id: int) -> Contract | None:
    """Load a contract with ``SELECT ... FOR UPDATE``."""
    return db.query(Contract).filter(Contract.id == contract_id).with_for_update().first()


def lock_invoice(db: Session, invoice_id: int) -> Invoice | None:
    return db.query(Invoice).filter(Invoice.id == invoice_id).with_for_update().first()


def lock_payment(db: Session, payment_id: int) -> Payment | None:
    return db.query(Payment).filter(Payment.id == payment_id).with_for_update().first()


def invoices_of(db: Session, contract_id: int, *statuses: InvoiceStatus) -> list[Invoice]:
    query = db.query(Invoice).filter(Invoice.contract_id == contract_id)
    if statuses:
        query = query.filter(Invoice.status.in_(statuses))
    return query.order_by(Invoice.period_start, Invoice.id).all()


def has_paid_invoice(db: Session, contract_id: int) -> bool:
    return bool(invoices_of(db, contract_id, InvoiceStatus.PAID))


def has_payable_invoice(db: Session, contract_id: int) -> bool:
    return bool(invoices_of(db, contract_id, *PAYABLE_INVOICE_STATUSES))


def past_due_pending_invoices(db: Session, contract_id: int, as_of: date) -> list[Invoice]:
    return (
        db.query(Invoice)
        .filter(
            Invoice.contract_id == contract_id,
            Invoice.status == InvoiceStatus.PENDING,
            Invoice.due_date < as_of,
        )
        .order_by(Invoice.due_date, Invoice.id)
        .all()
    )


def latest_handover(db: Session, contract_id: int, handover_type: HandoverType) -> RoomHandover | None:
    return (
        db.query(RoomHandover)
        .filter(RoomHandover.contract_id == contract_id, RoomHandover.type == handover_type)
        .order_by(RoomHandover.id.desc())
        .first()
    )


def other_contracts_on_room(
    db: Session,
    contract: Contract,
    statuses: tuple[ContractStatus, ...] = LIVE_CONTRACT_STATUSES,
) -> list[Contract]:
    return (
        db.query(Contract)
        .filter(
            Contract.room_id == contract.room_id,
            Contract.id != contract.id,
            Contract.status.in_(statuses),
        )
        .all()
    )
