from __future__ import annotations

import logging
import secrets
import time
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import (
    Customer,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    InvoiceStatusEvent,
    PricingModel,
    Proposal,
    ProposalStatus,
)
from app.schemas import ChargeOptionsIn, CreateInvoiceRequest
from app.services.audit_service import log_invoice_status_event
from app.services.line_item_service import (
    ChargeOptions,
    LineItem,
    calculate_invoice_totals,
    generate_fixed_tour_line_items,
    generate_hourly_tour_line_items,
    generate_shared_tour_line_items,
    generate_template_line_items,
    generate_transfer_line_items,
    generate_wait_time_line_items,
    get_pricing_template,
)
from app.services.proposal_service import get_proposal
from app.services.rate_config_service import (
    RateConfig,
    calculate_deposit,
    calculate_transfer_price,
    check_shared_tour_day,
    get_transfer_route,
)
from app.services.rate_table_service import load_rate_config

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[InvoiceStatus, set[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: {InvoiceStatus.SENT, InvoiceStatus.CANCELLED},
    InvoiceStatus.SENT: {
        InvoiceStatus.VIEWED,
        InvoiceStatus.ACCEPTED,
        InvoiceStatus.PAID,
        InvoiceStatus.CANCELLED,
    },
    InvoiceStatus.VIEWED: {InvoiceStatus.ACCEPTED, InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.ACCEPTED: {InvoiceStatus.PAID, InvoiceStatus.CANCELLED},
    InvoiceStatus.PAID: set(),
    InvoiceStatus.CANCELLED: set(),
}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def validate_status_transition(current: InvoiceStatus, new: InvoiceStatus) -> None:
    if new not in VALID_TRANSITIONS[current]:
        raise ConflictError(f'Cannot transition invoice from {current.value} to {new.value}')


def generate_invoice_number(today: date | None = None) -> str:
    year = (today or date.today()).year
    timestamp = str(int(time.time() * 1000))[-6:]
    return f'{settings.invoice_number_prefix}-{year}-{timestamp}{secrets.randbelow(1000):03d}'


def charge_options(data: ChargeOptionsIn) -> ChargeOptions:
    return ChargeOptions(
        include_tip=data.include_tip,
        tip_percentage=data.tip_percentage,
        include_processing_fee=data.include_processing_fee,
        processing_fee_percentage=data.processing_fee_percentage,
        processing_fee_flat_rate=data.processing_fee_flat_rate,
    )


def build_line_items(data: CreateInvoiceRequest, rates: RateConfig) -> list[LineItem]:
    options = charge_options(data.charges)
    try:
        if data.pricing_model == PricingModel.HOURLY:
            return generate_hourly_tour_line_items(
                guest_count=data.guest_count,
                hours=data.hours,
                tour_date=data.tour_date,
                options=options,
                rates=rates,
            )
        if data.pricing_model == PricingModel.SHARED:
            check_shared_tour_day(data.tour_date, rates)
            return generate_shared_tour_line_items(
                ticket_count=data.guest_count,
                includes_lunch=data.includes_lunch,
                options=options,
                rates=rates,
            )
        if data.pricing_model == PricingModel.FIXED:
            return generate_fixed_tour_line_items(
                description=data.description,
                fixed_amount=data.fixed_amount,
                options=options,
                rates=rates,
            )
        if data.pricing_model == PricingModel.TRANSFER:
            if data.route == 'local':
                return generate_transfer_line_items(
                    route_name=f'Local Transfer ({data.miles or 0} miles)',
                    fixed_rate=calculate_transfer_price('local', data.miles, rates),
                    options=options,
                    rates=rates,
                )
            route = get_transfer_route(data.route, rates)
            return generate_transfer_line_items(
                route_name=route.name,
                fixed_rate=calculate_transfer_price(route.code, rates=rates),
                origin=route.origin,
                destination=route.destination,
                options=options,
                rates=rates,
            )
        if data.pricing_model == PricingModel.WAIT_TIME:
            return generate_wait_time_line_items(
                hours=data.hours,
                party_size=data.guest_count,
                wait_date=data.tour_date,
                options=options,
                rates=rates,
            )
        return generate_template_line_items(
            template=get_pricing_template(data.template_id),
            guest_count=data.guest_count,
            duration_hours=data.hours,
            tour_date=data.tour_date,
            options=options,
            rates=rates,
        )
    except ValidationError:
        raise
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc


def replace_line_items(
    db: Session,
    invoice: Invoice,
    items: list[LineItem],
    *,
    deposit_percentage: Decimal | None = None,
    rates: RateConfig | None = None,
) -> list[InvoiceLineItem]:
    """
    Clear and re-store the invoice's line items, then recompute its totals
    and deposit from the stored items.
    """
    db.execute(delete(InvoiceLineItem).where(InvoiceLineItem.invoice_id == invoice.id))
    rows = [
        InvoiceLineItem(
            invoice_id=invoice.id,
            description=item.description,
            category=item.category,
            rate_type=item.rate_type,
            unit_price=item.unit_price,
            quantity=item.quantity,
            included_in_base=item.included_in_base,
            line_total=item.line_total,
            is_taxable=item.is_taxable,
            tax_rate=item.tax_rate,
            tax_amount=item.tax_amount,
            display_order=item.display_order,
            is_visible=item.is_visible,
            notes=item.notes,
        )
        for item in items
    ]
    db.add_all(rows)

    totals = calculate_invoice_totals(items)
    invoice.subtotal = totals.subtotal
    invoice.tax_amount = totals.tax_amount
    invoice.tip_amount = totals.tip_amount
    invoice.processing_fee = totals.processing_fee
    invoice.total_amount = totals.total_amount
    invoice.deposit_amount = calculate_deposit(totals.total_amount, deposit_percentage, rates)
    invoice.updated_at = _now()
    db.flush()
    return rows


def get_invoiceable_proposal(db: Session, proposal_id: int) -> Proposal:
    proposal = get_proposal(db, proposal_id)
    if proposal.status != ProposalStatus.ACCEPTED:
        raise ConflictError(f'Proposal {proposal.proposal_number} has not been accepted')

    existing = db.execute(select(Invoice.id).where(Invoice.proposal_id == proposal.id)).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(f'Proposal {proposal.proposal_number} already has an invoice')
    return proposal


def create_invoice(
    db: Session,
    data: CreateInvoiceRequest,
    *,
    actor_principal_id: int | None = None,
) -> Invoice:
    if data.customer_id is not None and not db.get(Customer, data.customer_id):
        raise NotFoundError('Customer', data.customer_id)
    if data.proposal_id is not None:
        get_invoiceable_proposal(db, data.proposal_id)
    return _create_invoice(db, data, load_rate_config(db), actor_principal_id=actor_principal_id)


def _create_invoice(
    db: Session,
    data: CreateInvoiceRequest,
    rates: RateConfig,
    *,
    actor_principal_id: int | None = None,
) -> Invoice:
    items = build_line_items(data, rates)
    if not items:
        raise ValidationError('Invoice has no billable line items')

    invoice = Invoice(
        invoice_number=generate_invoice_number(),
        proposal_id=data.proposal_id,
        customer_id=data.customer_id,
        pricing_model=data.pricing_model,
        status=InvoiceStatus.DRAFT,
        tour_date=data.tour_date,
        notes=data.notes,
        created_by_principal_id=actor_principal_id,
    )
    db.add(invoice)
    db.flush()
    rows = replace_line_items(db, invoice, items, deposit_percentage=data.deposit_percentage, rates=rates)
    log_invoice_status_event(
        db,
        invoice_id=invoice.id,
        from_status=None,
        to_status=InvoiceStatus.DRAFT.value,
        snapshot=invoice_snapshot(invoice, rows),
        actor_principal_id=actor_principal_id,
    )
    logger.info(
        'Invoice created',
        extra={
            'invoice_id': invoice.id,
            'invoice_number': invoice.invoice_number,
            'pricing_model': data.pricing_model.value,
            'total_amount': str(invoice.total_amount),
        },
    )
    return invoice


def _matches_proposal(items: list[LineItem], proposal: Proposal) -> bool:
    totals = calculate_invoice_totals(items)
    return totals.subtotal == proposal.subtotal and totals.tax_amount == proposal.taxes


def create_invoice_from_proposal(
    db: Session,
    proposal_id: int,
    *,
    charges: ChargeOptionsIn | None = None,
    actor_principal_id: int | None = None,
) -> Invoice:
    """
    Invoice the amounts the customer accepted. A proposal priced at the
    current hourly rates is invoiced as an hourly tour; a negotiated or
    modified price is invoiced as a fixed-price tour for the proposal subtotal.
    """
    proposal = get_invoiceable_proposal(db, proposal_id)
    rates = load_rate_config(db)
    common = {
        'customer_id': proposal.customer_id,
        'proposal_id': proposal.id,
        'tour_date': proposal.tour_date,
        'notes': f'Generated from proposal {proposal.proposal_number}',
        'charges': charges or ChargeOptionsIn(),
    }
    data = CreateInvoiceRequest(
        pricing_model=PricingModel.HOURLY,
        guest_count=proposal.party_size,
        hours=proposal.duration_hours,
        **common,
    )
    if not _matches_proposal(build_line_items(data, rates), proposal):
        data = CreateInvoiceRequest(
            pricing_model=PricingModel.FIXED,
            description=(
                f'Wine Tour - {proposal.duration_hours} hours, {proposal.party_size} guests '
                f'(proposal {proposal.proposal_number})'
            ),
            fixed_amount=proposal.subtotal,
            **common,
        )
        if not _matches_proposal(build_line_items(data, rates), proposal):
            raise ConflictError(
                f'Proposal {proposal.proposal_number} taxes do not match the current tax rate; '
                'update the proposal before invoicing'
            )
    return _create_invoice(db, data, rates, actor_principal_id=actor_principal_id)


def get_invoice(db: Session, invoice_id: int) -> Invoice:
    invoice = db.get(Invoice, invoice_id)
    if not invoice:
        raise NotFoundError('Invoice', invoice_id)
    return invoice


def list_line_items(db: Session, invoice_id: int) -> list[InvoiceLineItem]:
    return list(
        db.execute(
            select(InvoiceLineItem)
            .where(InvoiceLineItem.invoice_id == invoice_id)
            .order_by(InvoiceLineItem.display_order.asc(), InvoiceLineItem.id.asc())
        ).scalars().all()
    )


def list_status_events(db: Session, invoice_id: int) -> list[InvoiceStatusEvent]:
    get_invoice(db, invoice_id)
    return list(
        db.execute(
            select(InvoiceStatusEvent)
            .where(InvoiceStatusEvent.invoice_id == invoice_id)
            .order_by(InvoiceStatusEvent.created_at.asc(), InvoiceStatusEvent.id.asc())
        ).scalars().all()
    )


def serialize_line_item(row: InvoiceLineItem) -> dict:
    return {
        'description': row.description,
        'category': row.category,
        'rate_type': row.rate_type,
        'unit_price': str(row.unit_price),
        'quantity': str(row.quantity),
        'included_in_base': row.included_in_base,
        'line_total': str(row.line_total),
        'is_taxable': row.is_taxable,
        'tax_rate': str(row.tax_rate),
        'tax_amount': str(row.tax_amount),
        'display_order': row.display_order,
        'is_visible': row.is_visible,
        'notes': row.notes,
    }


def serialize_invoice(invoice: Invoice) -> dict:
    return {
        'id': invoice.id,
        'invoice_number': invoice.invoice_number,
        'proposal_id': invoice.proposal_id,
        'customer_id': invoice.customer_id,
        'pricing_model': PricingModel(invoice.pricing_model).value,
        'status': InvoiceStatus(invoice.status).value,
        'tour_date': invoice.tour_date.isoformat() if invoice.tour_date else None,
        'subtotal': str(invoice.subtotal),
        'tax_amount': str(invoice.tax_amount),
        'tip_amount': str(invoice.tip_amount),
        'processing_fee': str(invoice.processing_fee),
        'total_amount': str(invoice.total_amount),
        'deposit_amount': str(invoice.deposit_amount),
        'notes': invoice.notes,
    }


def invoice_snapshot(invoice: Invoice, rows: list[InvoiceLineItem]) -> dict:
    snapshot = serialize_invoice(invoice)
    snapshot['line_items'] = [serialize_line_item(row) for row in rows]
    return snapshot


def get_invoice_detail(db: Session, invoice_id: int) -> dict:
    invoice = get_invoice(db, invoice_id)
    detail = serialize_invoice(invoice)
    detail['line_items'] = [serialize_line_item(row) for row in list_line_items(db, invoice.id)]
    return detail


def update_status(
    db: Session,
    invoice_id: int,
    status: InvoiceStatus,
    *,
    actor_principal_id: int | None = None,
) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    current = InvoiceStatus(invoice.status)
    validate_status_transition(current, status)

    invoice.status = status
    invoice.updated_at = _now()
    log_invoice_status_event(
        db,
        invoice_id=invoice.id,
        from_status=current.value,
        to_status=status.value,
        snapshot=invoice_snapshot(invoice, list_line_items(db, invoice.id)),
        actor_principal_id=actor_principal_id,
    )
    db.flush()
    logger.info(
        'Invoice status updated',
        extra={'invoice_id': invoice.id, 'old_status': current.value, 'new_status': status.value},
    )
    return invoice
