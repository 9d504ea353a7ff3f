from __future__ import annotations

import itertools
from datetime import date

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from rentcore.core.exceptions import GatewayError
from rentcore.models import (
    Base,
    BillingPeriod,
    Contract,
    ContractStatus,
    Invoice,
    InvoiceStatus,
    Payment,
    PaymentMethod,
    PaymentStatus,
    Room,
    RoomStatus,
    Tenant,
)
from rentcore.models.invoice import make_line_item
from rentcore.payments.gateway import map_midtrans_status
from rentcore.services.contract_service import compute_end_date


@pytest.fixture
def engine(tmp_path):
    engine = create_engine(f"sqlite:///{tmp_path / 'rentcore_test.db'}")

    # pysqlite needs explicit BEGIN handling for SAVEPOINT (audit writes) to work.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, _record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_contract(db):
    counter = itertools.count(1)

    def _make(
        status=ContractStatus.ACTIVE,
        start=date(2024, 1, 1),
        end=None,
        billing_period=BillingPeriod.MONTHLY,
        duration_count=1,
        rent=1_500_000,
        deposit=0,
        auto_renew=False,
        tenant=None,
        room=None,
        room_status=RoomStatus.OCCUPIED,
        contract_id=None,
    ):
        n = next(counter)
        tenant = tenant or Tenant(name=f"Tenant {n}", email=f"tenant{n}@example.com")
        room = room or Room(number=f"A-{100 + n}", status=room_status)
        contract = Contract(
            id=contract_id,
            tenant=tenant,
            room=room,
            status=status,
            billing_period=billing_period,
            duration_count=duration_count,
            start_date=start,
            end_date=end or compute_end_date(start, billing_period, duration_count),
            rent_amount=rent,
            deposit_amount=deposit,
            auto_renew=auto_renew,
        )
        db.add(contract)
        db.commit()
        return contract

    return _make


@pytest.fixture
def make_invoice(db):
    counter = itertools.count(1)

    def _make(contract, period_start, period_end, due_date, amount=1_500_000, status=InvoiceStatus.PENDING):
        invoice = Invoice(
            contract_id=contract.id,
            number=f"INV-{period_start:%Y%m}-T{next(counter):05d}",
            period_start=period_start,
            period_end=period_end,
            due_date=due_date,
            amount=amount,
            outstanding_amount=0 if status == InvoiceStatus.PAID else amount,
            status=status,
            line_items=[make_line_item("RENT", "Rent", amount)],
        )
        db.add(invoice)
        db.commit()
        return invoice

    return _make


@pytest.fixture
def make_payment(db):
    def _make(
        invoice,
        amount=None,
        method=PaymentMethod.VIRTUAL_ACCOUNT,
        status=PaymentStatus.PENDING,
        provider="midtrans",
        reference=None,
    ):
        payment = Payment(
            invoice_id=invoice.id,
            method=method,
            status=status,
            amount=invoice.amount if amount is None else amount,
            provider=provider,
            reference=reference,
            meta={},
        )
        db.add(payment)
        db.commit()
        return payment

    return _make


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.calls = []
        self.fail = fail

    def notify_user(self, user_id, title, message, action_url=None, meta=None):
        if self.fail:
            raise RuntimeError("push service down")
        self.calls.append(
            {"user_id": user_id, "title": title, "message": message, "action_url": action_url, "meta": meta}
        )


class FakeGateway:
    def __init__(self, payload=None, error=None):
        self.payload = payload or {"transaction_status": "pending"}
        self.error = error
        self.fetched = []

    def create_transaction(self, invoice, payment, amount, customer=None):
        return {"order_id": f"PAY-{payment.id}", "va_number": "8808000000001"}

    def fetch_status(self, order_id):
        self.fetched.append(order_id)
        if self.error is not None:
            raise self.error
        return dict(self.payload)

    def map_status(self, raw):
        return map_midtrans_status(raw)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def gateway_factory():
    def _make(payload=None, fail_with: str | None = None):
        error = GatewayError(fail_with, status_code=503) if fail_with else None
        return FakeGateway(payload=payload, error=error)

    return _make
