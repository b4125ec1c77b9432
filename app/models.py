from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import ARRAY, CITEXT, INET
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class PrincipalRole(str, Enum):
    ADMIN = 'ADMIN'
    STAFF = 'STAFF'


class DayType(str, Enum):
    SUN_WED = 'sun_wed'
    THU_SAT = 'thu_sat'


class ProposalStatus(str, Enum):
    DRAFT = 'draft'
    SENT = 'sent'
    VIEWED = 'viewed'
    ACCEPTED = 'accepted'
    DECLINED = 'declined'
    EXPIRED = 'expired'


class InvoiceStatus(str, Enum):
    DRAFT = 'draft'
    SENT = 'sent'
    VIEWED = 'viewed'
    ACCEPTED = 'accepted'
    PAID = 'paid'
    CANCELLED = 'cancelled'


class PricingModel(str, Enum):
    HOURLY = 'hourly'
    SHARED = 'shared'
    FIXED = 'fixed'
    TRANSFER = 'transfer'
    WAIT_TIME = 'wait_time'
    TEMPLATE = 'template'


class Principal(Base):
    __tablename__ = 'principals'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    username: Mapped[str] = mapped_column(CITEXT(), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    role: Mapped[PrincipalRole] = mapped_column(SQLEnum(PrincipalRole, name='principal_role'), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuthEvent(Base):
    __tablename__ = 'auth_events'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    attempted_username: Mapped[str] = mapped_column(CITEXT(), nullable=False)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str | None] = mapped_column(Text)
    principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    ip: Mapped[str | None] = mapped_column(INET)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class AuditLog(Base):
    __tablename__ = 'audit_log'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    action: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str | None] = mapped_column(Text)
    entity_id: Mapped[int | None] = mapped_column(BigInteger)
    ip: Mapped[str | None] = mapped_column(INET)
    meta: Mapped[dict] = mapped_column('metadata', JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class WebSession(Base):
    __tablename__ = 'web_sessions'
    __table_args__ = (
        UniqueConstraint('session_token', name='web_sessions_session_token_key'),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    session_token: Mapped[str] = mapped_column(String(128), nullable=False)
    principal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('principals.id'), nullable=False)
    ip: Mapped[str | None] = mapped_column(INET)
    user_agent: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    revoked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))


class Customer(Base):
    __tablename__ = 'customers'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    email: Mapped[str] = mapped_column(CITEXT(), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    phone: Mapped[str | None] = mapped_column(Text)
    vip_status: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class HourlyRateTier(Base):
    __tablename__ = 'hourly_rate_tiers'
    __table_args__ = (
        UniqueConstraint('service_type', 'guest_min', 'guest_max', 'day_type', name='hourly_rate_tiers_lookup_key'),
        CheckConstraint('guest_min >= 1 AND guest_max >= guest_min', name='hourly_rate_tiers_guest_range'),
        CheckConstraint('hourly_rate >= 0', name='hourly_rate_tiers_rate_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False, default='wine_tour', server_default='wine_tour')
    tier_name: Mapped[str] = mapped_column(String(50), nullable=False)
    guest_min: Mapped[int] = mapped_column(Integer, nullable=False)
    guest_max: Mapped[int] = mapped_column(Integer, nullable=False)
    day_type: Mapped[DayType] = mapped_column(SQLEnum(DayType, name='day_type', values_callable=lambda e: [m.value for m in e]), nullable=False)
    hourly_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    minimum_hours: Mapped[int] = mapped_column(Integer, nullable=False, default=4, server_default='4')
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class SharedTourRate(Base):
    __tablename__ = 'shared_tour_rates'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    per_person_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    includes_lunch: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default='false')
    available_days: Mapped[list[str]] = mapped_column(ARRAY(String(20)), nullable=False)
    max_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=14, server_default='14')
    min_guests: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default='1')
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class TransferRate(Base):
    __tablename__ = 'transfer_rates'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    route_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    route_name: Mapped[str] = mapped_column(String(100), nullable=False)
    origin: Mapped[str] = mapped_column(String(100), nullable=False)
    destination: Mapped[str] = mapped_column(String(100), nullable=False)
    # NULL means the route has no published rate yet.
    fixed_rate: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    per_mile_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    included_miles: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class PricingModifierRule(Base):
    __tablename__ = 'pricing_modifiers'
    __table_args__ = (
        CheckConstraint("value_type IN ('percentage', 'fixed')", name='pricing_modifiers_value_type'),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    modifier_type: Mapped[str] = mapped_column(String(30), nullable=False)
    value_type: Mapped[str] = mapped_column(String(20), nullable=False)
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    is_stackable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    # NULL applies the modifier to every service type.
    applies_to_service_types: Mapped[list[str] | None] = mapped_column(ARRAY(String(50)))
    min_party_size: Mapped[int | None] = mapped_column(Integer)
    max_party_size: Mapped[int | None] = mapped_column(Integer)
    min_advance_days: Mapped[int | None] = mapped_column(Integer)
    min_booking_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2))
    applies_monday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    applies_tuesday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    applies_wednesday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    applies_thursday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    applies_friday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    applies_saturday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    applies_sunday: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    effective_start_date: Mapped[date | None] = mapped_column(Date)
    effective_end_date: Mapped[date | None] = mapped_column(Date)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Proposal(Base):
    __tablename__ = 'proposals'
    __table_args__ = (
        CheckConstraint('party_size BETWEEN 1 AND 50', name='proposals_party_size_range'),
        CheckConstraint('subtotal >= 0 AND taxes >= 0 AND total >= 0', name='proposals_amounts_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    proposal_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('customers.id'), nullable=False)
    customer_name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_email: Mapped[str] = mapped_column(CITEXT(), nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False)
    tour_date: Mapped[date] = mapped_column(Date, nullable=False)
    duration_hours: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    taxes: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[ProposalStatus] = mapped_column(
        SQLEnum(ProposalStatus, name='proposal_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ProposalStatus.DRAFT,
        server_default='draft',
    )
    valid_until: Mapped[date] = mapped_column(Date, nullable=False)
    brand_id: Mapped[int | None] = mapped_column(BigInteger)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class ProposalActivity(Base):
    __tablename__ = 'proposal_activity_log'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    proposal_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('proposals.id', ondelete='CASCADE'), nullable=False)
    activity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class Invoice(Base):
    __tablename__ = 'invoices'
    __table_args__ = (
        CheckConstraint(
            'subtotal >= 0 AND tax_amount >= 0 AND tip_amount >= 0 AND processing_fee >= 0',
            name='invoices_amounts_non_negative',
        ),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    invoice_number: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    proposal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('proposals.id'), unique=True)
    customer_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('customers.id'))
    pricing_model: Mapped[PricingModel] = mapped_column(
        SQLEnum(PricingModel, name='pricing_model', values_callable=lambda e: [m.value for m in e]), nullable=False
    )
    status: Mapped[InvoiceStatus] = mapped_column(
        SQLEnum(InvoiceStatus, name='invoice_status', values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=InvoiceStatus.DRAFT,
        server_default='draft',
    )
    tour_date: Mapped[date | None] = mapped_column(Date)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    tip_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    processing_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    notes: Mapped[str | None] = mapped_column(Text)
    created_by_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InvoiceLineItem(Base):
    __tablename__ = 'invoice_line_items'
    __table_args__ = (
        CheckConstraint('quantity >= 0', name='invoice_line_items_quantity_non_negative'),
    )

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(50), nullable=False)
    rate_type: Mapped[str] = mapped_column(String(20), nullable=False, default='fixed', server_default='fixed')
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=1, server_default='1')
    included_in_base: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    line_total: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(5, 3), nullable=False, default=0, server_default='0')
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0, server_default='0')
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default='0')
    is_visible: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default='true')
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())


class InvoiceStatusEvent(Base):
    __tablename__ = 'invoice_status_events'

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(BigInteger, ForeignKey('invoices.id', ondelete='CASCADE'), nullable=False)
    from_status: Mapped[str | None] = mapped_column(String(20))
    to_status: Mapped[str] = mapped_column(String(20), nullable=False)
    actor_principal_id: Mapped[int | None] = mapped_column(BigInteger, ForeignKey('principals.id'))
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict, server_default='{}')
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=func.now())
