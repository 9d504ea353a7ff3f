"""Midtrans Core API client and status mapping."""

from __future__ import annotations

import hashlib
import hmac
import logging
import re
import secrets
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol
from zoneinfo import ZoneInfo

import requests
from dateutil import parser as date_parser
from pydantic import ValidationError as PydanticValidationError

from rentcore.core.config import get_config
from rentcore.core.exceptions import GatewayError
from rentcore.core.schemas import MidtransStatusPayload
from rentcore.models.enums import PaymentStatus
from rentcore.models.invoice import Invoice
from rentcore.models.payment import Payment

logger = logging.getLogger(__name__)

PROVIDER = "midtrans"
SANDBOX_BASE_URL = "https://api.sandbox.midtrans.com"
PRODUCTION_BASE_URL = "https://api.midtrans.com"
SUPPORTED_BANKS = frozenset({"bca", "bni", "bri", "cimb", "permata"})

_PAID_STATES = frozenset({"settlement", "capture"})
_FAILED_STATES = frozenset({"deny", "expire", "failure"})


@dataclass(frozen=True)
class MappedStatus:
    status: PaymentStatus
    paid_at: datetime | None = None


class PaymentGateway(Protocol):
    def create_transaction(
        self,
        invoice: Invoice,
        payment: Payment,
        amount: int,
        customer: dict[str, Any] | None = None,
    ) -> dict[str, Any]: ...

    def fetch_status(self, order_id: str) -> dict[str, Any]: ...

    def map_status(self, raw: dict[str, Any]) -> MappedStatus: ...


def parse_gateway_time(value: str | None) -> datetime | None:
    """Midtrans timestamps are local (WIB) wall-clock strings without an offset."""
    if not value:
        return None
    try:
        parsed = date_parser.parse(value)
    except (ValueError, OverflowError):
        logger.warning("gateway.time.unparseable", extra={"event": "gateway.time.unparseable", "value": value})
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(get_config().TIMEZONE))
    return parsed


def map_midtrans_status(raw: dict[str, Any]) -> MappedStatus:
    trx = str(raw.get("transaction_status") or "").lower()
    fraud = str(raw.get("fraud_status") or "").lower()

    if trx in _PAID_STATES and fraud != "challenge":
        paid_at = parse_gateway_time(raw.get("settlement_time") or raw.get("transaction_time"))
        return MappedStatus(PaymentStatus.COMPLETED, paid_at)
    if trx == "cancel":
        return MappedStatus(PaymentStatus.CANCELLED)
    if trx in _FAILED_STATES:
        return MappedStatus(PaymentStatus.FAILED)
    return MappedStatus(PaymentStatus.PENDING)


def build_order_id(payment: Payment, room_number: str | None = None) -> str:
    order_id = f"PAY-{payment.id}"
    if room_number:
        order_id += "-RM" + (re.sub(r"[^A-Za-z0-9]", "", room_number) or room_number)
    return order_id


class MidtransGateway:
    """Thin ``requests`` client for the Midtrans Core API."""

    def __init__(
        self,
        server_key: str | None = None,
        is_production: bool | None = None,
        timeout_seconds: int | None = None,
        session: requests.Session | None = None,
    ) -> None:
        config = get_config()
        self.server_key = server_key if server_key is not None else config.MIDTRANS_SERVER_KEY
        production = config.MIDTRANS_IS_PRODUCTION if is_production is None else is_production
        self.base_url = PRODUCTION_BASE_URL if production else SANDBOX_BASE_URL
        self.timeout = (3, timeout_seconds or config.MIDTRANS_TIMEOUT_SECONDS)
        self.session = session or requests.Session()

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        if not self.server_key:
            raise GatewayError("MIDTRANS_SERVER_KEY is not configured")
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(
                method,
                url,
                json=payload,
                auth=(self.server_key, ""),
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as exc:
            logger.warning(
                "gateway.request.failed",
                extra={"event": "gateway.request.failed", "path": path, "error": str(exc)},
            )
            raise GatewayError(f"Midtrans request failed: {exc}") from exc

        if response.status_code >= 400:
            raise GatewayError(
                f"Midtrans answered HTTP {response.status_code} for {path}",
                status_code=response.status_code,
            )
        try:
            body = response.json()
        except ValueError as exc:
            raise GatewayError(f"Midtrans returned a non-JSON body for {path}") from exc

        # Core API reports errors with HTTP 200 and a string status_code in the body.
        body_code = str(body.get("status_code") or "200")
        if not body_code.startswith("2"):
            raise GatewayError(
                f"Midtrans error {body_code}: {body.get('status_message', 'unknown error')}",
                status_code=int(body_code) if body_code.isdigit() else None,
            )
        return body

    def create_transaction(
        self,
        invoice: Invoice,
        payment: Payment,
        amount: int,
        customer: dict[str, Any] | None = None,
        bank: str = "bca",
    ) -> dict[str, Any]:
        """Charge a bank-transfer virtual account for ``amount``."""
        bank = bank.lower()
        if bank not in SUPPORTED_BANKS:
            raise GatewayError(f"unsupported bank: {bank}")
        if amount <= 0:
            raise GatewayError("charge amount must be positive")

        customer = customer or {}
        room = invoice.contract.room if invoice.contract is not None else None
        order_id = build_order_id(payment, room.number if room is not None else None)
        params: dict[str, Any] = {
            "payment_type": "bank_transfer",
            "transaction_details": {"order_id": order_id, "gross_amount": int(amount)},
            "item_details": self._item_details(invoice, int(amount)),
            "customer_details": {
                "first_name": str(customer.get("name", "")),
                "email": str(customer.get("email", "")),
                "phone": str(customer.get("phone", "")),
            },
            "bank_transfer": {"bank": bank},
        }

        try:
            body = self._request("POST", "/v2/charge", params)
        except GatewayError as exc:
            if "order_id" not in str(exc).lower() or "used" not in str(exc).lower():
                raise
            retry_id = f"{order_id}-R{secrets.token_hex(3)}"
            logger.warning(
                "gateway.order_id.conflict",
                extra={"event": "gateway.order_id.conflict", "order_id": order_id, "retry_order_id": retry_id},
            )
            params["transaction_details"]["order_id"] = retry_id
            body = self._request("POST", "/v2/charge", params)
            body.setdefault("order_id", retry_id)

        status = MidtransStatusPayload.model_validate(body)
        return {
            "order_id": status.order_id or params["transaction_details"]["order_id"],
            "payment_type": "bank_transfer",
            "bank": bank,
            "va_number": status.first_va_number(),
            "expiry_time": status.expiry_time,
            "raw": body,
        }

    def fetch_status(self, order_id: str) -> dict[str, Any]:
        body = self._request("GET", f"/v2/{order_id}/status")
        try:
            MidtransStatusPayload.model_validate(body)
        except PydanticValidationError as exc:
            raise GatewayError(f"unexpected Midtrans status payload for {order_id}") from exc
        return body

    def map_status(self, raw: dict[str, Any]) -> MappedStatus:
        return map_midtrans_status(raw)

    def verify_signature(self, order_id: str, status_code: str, gross_amount: str, signature_key: str) -> bool:
        """Check the ``signature_key`` Midtrans attaches to HTTP notifications."""
        expected = hashlib.sha512(f"{order_id}{status_code}{gross_amount}{self.server_key}".encode()).hexdigest()
        return hmac.compare_digest(expected, signature_key)

    def _item_details(self, invoice: Invoice, gross: int) -> list[dict[str, Any]]:
        details: list[dict[str, Any]] = []
        for index, item in enumerate(invoice.line_items or [], start=1):
            meta = item.get("meta") or {}
            qty = int(meta.get("qty") or 0)
            unit = int(meta.get("unit_price") or 0)
            price, quantity = (unit, qty) if qty > 0 and unit > 0 else (int(item.get("amount", 0)), 1)
            details.append(
                {
                    "id": str(item.get("code") or f"{invoice.id}-{index}")[:50],
                    "price": price,
                    "quantity": quantity,
                    "name": str(item.get("label") or f"Item {index}")[:50],
                }
            )
        if not details:
            details.append({"id": str(invoice.id), "price": gross, "quantity": 1, "name": f"Invoice {invoice.number}"})

        total = sum(detail["price"] * detail["quantity"] for detail in details)
        if total != gross:
            details.append({"id": f"{invoice.id}-ADJ", "price": gross - total, "quantity": 1, "name": "Adjustment"})
        return details
