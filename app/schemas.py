from __future__ import annotations

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from app.models import InvoiceStatus, PricingModel, ProposalStatus

NULLABLE_PROPOSAL_FIELDS = {'brand_id', 'notes'}


class LoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1)


class ChargeOptionsIn(BaseModel):
    include_tip: bool = False
    tip_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    include_processing_fee: bool = False
    processing_fee_percentage: Decimal | None = Field(default=None, ge=0, le=10)
    processing_fee_flat_rate: Decimal | None = Field(default=None, ge=0)


class WineTourQuoteRequest(BaseModel):
    party_size: int = Field(ge=1, le=50)
    duration_hours: Decimal = Field(gt=0, le=24, decimal_places=2)
    tour_date: date


class SharedTourQuoteRequest(BaseModel):
    guests: int = Field(ge=1)
    include_lunch: bool = True
    tour_date: date | None = None


class TransferQuoteRequest(BaseModel):
    route: str = Field(min_length=1)
    miles: Decimal | None = Field(default=None, ge=0, decimal_places=2)


class WaitTimeQuoteRequest(BaseModel):
    hours: Decimal = Field(gt=0, le=24, decimal_places=2)
    party_size: int = Field(default=4, ge=1, le=50)
    wait_date: date | None = None


class EstimateRequest(BaseModel):
    template_id: int
    guest_count: int = Field(ge=1)
    duration_hours: Decimal = Field(gt=0, le=24, decimal_places=2)
    tour_date: date


class CreateProposalRequest(BaseModel):
    customer_name: str = Field(min_length=1, max_length=255)
    customer_email: EmailStr
    customer_phone: str = Field(min_length=10, max_length=20)
    party_size: int = Field(ge=1, le=50)
    tour_date: date
    duration_hours: Decimal = Field(ge=4, le=24, decimal_places=2)
    subtotal: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    taxes: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    total: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    valid_until: date | None = None
    brand_id: int | None = Field(default=None, gt=0)
    notes: str | None = None

    @model_validator(mode='after')
    def _pricing_all_or_none(self) -> 'CreateProposalRequest':
        provided = [value is not None for value in (self.subtotal, self.taxes, self.total)]
        if any(provided) and not all(provided):
            raise ValueError('subtotal, taxes and total must be provided together')
        return self


class UpdateProposalRequest(BaseModel):
    model_config = ConfigDict(extra='forbid')

    customer_name: str | None = Field(default=None, min_length=1, max_length=255)
    party_size: int | None = Field(default=None, ge=1, le=50)
    tour_date: date | None = None
    duration_hours: Decimal | None = Field(default=None, ge=4, le=24, decimal_places=2)
    subtotal: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    taxes: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    total: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    valid_until: date | None = None
    brand_id: int | None = Field(default=None, gt=0)
    notes: str | None = None

    @model_validator(mode='after')
    def _no_null_required_fields(self) -> 'UpdateProposalRequest':
        nulled = sorted(
            name for name in self.model_fields_set
            if getattr(self, name) is None and name not in NULLABLE_PROPOSAL_FIELDS
        )
        if nulled:
            raise ValueError(f'Fields cannot be null: {", ".join(nulled)}')
        return self


class ProposalStatusRequest(BaseModel):
    status: ProposalStatus


class CreateInvoiceRequest(BaseModel):
    pricing_model: PricingModel
    customer_id: int | None = None
    proposal_id: int | None = None
    tour_date: date | None = None
    guest_count: int | None = Field(default=None, ge=1)
    hours: Decimal | None = Field(default=None, gt=0, le=24, decimal_places=2)
    includes_lunch: bool = True
    description: str | None = None
    fixed_amount: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    route: str | None = None
    miles: Decimal | None = Field(default=None, ge=0, decimal_places=2)
    template_id: int | None = None
    deposit_percentage: Decimal | None = Field(default=None, ge=0, le=1)
    notes: str | None = None
    charges: ChargeOptionsIn = Field(default_factory=ChargeOptionsIn)

    @model_validator(mode='after')
    def _required_for_model(self) -> 'CreateInvoiceRequest':
        required: dict[PricingModel, tuple[str, ...]] = {
            PricingModel.HOURLY: ('guest_count', 'hours', 'tour_date'),
            PricingModel.SHARED: ('guest_count', 'tour_date'),
            PricingModel.FIXED: ('description', 'fixed_amount'),
            PricingModel.TRANSFER: ('route',),
            PricingModel.WAIT_TIME: ('guest_count', 'hours', 'tour_date'),
            PricingModel.TEMPLATE: ('template_id', 'guest_count', 'hours', 'tour_date'),
        }
        missing = [name for name in required[self.pricing_model] if getattr(self, name) is None]
        if missing:
            raise ValueError(f'{self.pricing_model.value} invoices require: {", ".join(missing)}')
        return self


class InvoiceStatusRequest(BaseModel):
    status: InvoiceStatus

