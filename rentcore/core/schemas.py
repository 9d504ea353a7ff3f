"""Pydantic schemas validating job payloads and gateway responses."""

from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rentcore.core.exceptions import ValidationError as JobValidationError
from rentcore.models.enums import BillingPeriod
from rentcore.utils.dates import parse_month


class ActivateJob(BaseModel):
    contract_id: int = Field(gt=0)
    as_of: date


class ContractJob(BaseModel):
    contract_id: int = Field(gt=0)


class CancelOverdueJob(BaseModel):
    contract_id: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=255)
    threshold: date
    grace_days: int = Field(ge=0)


class GenerateMonthlyJob(BaseModel):
    contract_id: int = Field(gt=0)
    target: str

    @field_validator("target")
    @classmethod
    def target_is_year_month(cls, value: str) -> str:
        parse_month(value)
        return value

    @property
    def target_start(self) -> date:
        return parse_month(self.target)


class SyncPaymentJob(BaseModel):
    payment_id: int = Field(gt=0)


class VirtualAccount(BaseModel):
    model_config = ConfigDict(extra="allow")

    bank: str | None = None
    va_number: str | None = None


class MidtransStatusPayload(BaseModel):
    """Subset of the Midtrans transaction-status response used for reconciliation."""

    model_config = ConfigDict(extra="allow")

    order_id: str | None = None
    transaction_status: str = ""
    fraud_status: str = ""
    settlement_time: str | None = None
    transaction_time: str | None = None
    expiry_time: str | None = None
    va_numbers: list[VirtualAccount] = Field(default_factory=list)
    permata_va_number: str | None = None

    def first_va_number(self) -> str | None:
        for account in self.va_numbers:
            if account.va_number:
                return account.va_number
        return self.permata_va_number or None


def parse_job(model_cls: type[BaseModel], payload: dict[str, Any]) -> BaseModel:
    """Validate a job payload against a Pydantic model."""
    try:
        return model_cls.model_validate(payload)
    except ValidationError as exc:
        raise JobValidationError(str(exc)) from exc


class ContractDraft(BaseModel):
    """Input accepted by the contract-creation flow."""

    tenant_id: int = Field(gt=0)
    room_id: int = Field(gt=0)
    start_date: date
    billing_period: BillingPeriod
    duration_count: int = Field(ge=1)
    rent_amount: int = Field(ge=0)
    deposit_amount: int = Field(default=0, ge=0)
    auto_renew: bool = False
    renewed_from_id: int | None = None
    notes: str | None = None
