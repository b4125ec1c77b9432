from __future__ import annotations

import logging
import secrets
import time
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import and_, case, func, select
from sqlalchemy.orm import Session

from app.config import settings
from app.errors import ConflictError, NotFoundError, ValidationError
from app.models import Customer, Proposal, ProposalActivity, ProposalStatus
from app.schemas import CreateProposalRequest
from app.services.audit_service import log_proposal_activity
from app.services.pricing_modifier_service import price_wine_tour
from app.services.rate_config_service import money
from app.services.rate_table_service import load_pricing_modifiers, load_rate_config

logger = logging.getLogger(__name__)

VALID_TRANSITIONS: dict[ProposalStatus, set[ProposalStatus]] = {
    ProposalStatus.DRAFT: {ProposalStatus.SENT, ProposalStatus.DECLINED},
    ProposalStatus.SENT: {
        ProposalStatus.VIEWED,
        ProposalStatus.ACCEPTED,
        ProposalStatus.DECLINED,
        ProposalStatus.EXPIRED,
    },
    ProposalStatus.VIEWED: {ProposalStatus.ACCEPTED, ProposalStatus.DECLINED, ProposalStatus.EXPIRED},
    ProposalStatus.ACCEPTED: set(),
    ProposalStatus.DECLINED: set(),
    ProposalStatus.EXPIRED: set(),
}
OPEN_STATUSES = {ProposalStatus.DRAFT, ProposalStatus.SENT, ProposalStatus.VIEWED}
UPDATABLE_FIELDS = {
    'customer_name',
    'party_size',
    'tour_date',
    'duration_hours',
    'subtotal',
    'taxes',
    'total',
    'valid_until',
    'brand_id',
    'notes',
}
NULLABLE_FIELDS = {'brand_id', 'notes'}


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def validate_status_transition(current: ProposalStatus, new: ProposalStatus) -> None:
    if new not in VALID_TRANSITIONS[current]:
        raise ConflictError(f'Cannot transition proposal from {current.value} to {new.value}')


def generate_proposal_number(today: date | None = None) -> str:
    year = (today or date.today()).year
    timestamp = str(int(time.time() * 1000))[-6:]
    suffix = f'{secrets.randbelow(1000):03d}'
    return f'{settings.proposal_number_prefix}-{year}-{timestamp}{suffix}'


def get_or_create_customer(db: Session, *, email: str, name: str, phone: str | None) -> Customer:
    customer = db.execute(
        select(Customer).where(func.lower(Customer.email) == email.strip().lower())
    ).scalar_one_or_none()
    if customer:
        customer.name = name.strip()
        customer.phone = phone
        customer.updated_at = _now()
        return customer

    customer = Customer(email=email.strip().lower(), name=name.strip(), phone=phone)
    db.add(customer)
    db.flush()
    return customer


def create_proposal(
    db: Session,
    data: CreateProposalRequest,
    *,
    actor_principal_id: int | None = None,
    today: date | None = None,
) -> Proposal:
    today = today or date.today()
    valid_until = data.valid_until or today + timedelta(days=settings.proposal_valid_days)
    if valid_until < today:
        raise ValidationError('valid_until cannot be in the past')

    if data.subtotal is None:
        quote = price_wine_tour(
            data.duration_hours,
            data.party_size,
            data.tour_date,
            modifiers=load_pricing_modifiers(db, on_date=data.tour_date),
            rates=load_rate_config(db),
            booked_on=today,
        )
        subtotal, taxes, total = quote.subtotal, quote.tax, quote.total
    else:
        subtotal, taxes, total = money(data.subtotal), money(data.taxes), money(data.total)
        if total != subtotal + taxes:
            raise ValidationError('total must equal subtotal plus taxes')

    customer = get_or_create_customer(
        db,
        email=str(data.customer_email),
        name=data.customer_name,
        phone=data.customer_phone,
    )
    proposal = Proposal(
        proposal_number=generate_proposal_number(today),
        customer_id=customer.id,
        customer_name=data.customer_name.strip(),
        customer_email=str(data.customer_email).lower(),
        party_size=data.party_size,
        tour_date=data.tour_date,
        duration_hours=data.duration_hours,
        subtotal=subtotal,
        taxes=taxes,
        total=total,
        status=ProposalStatus.DRAFT,
        valid_until=valid_until,
        brand_id=data.brand_id,
        notes=data.notes,
    )
    db.add(proposal)
    db.flush()
    log_proposal_activity(
        db,
        proposal_id=proposal.id,
        activity_type='created',
        notes=f'Proposal {proposal.proposal_number} created',
        actor_principal_id=actor_principal_id,
    )
    logger.info(
        'Proposal created',
        extra={'proposal_id': proposal.id, 'proposal_number': proposal.proposal_number, 'total': str(total)},
    )
    return proposal


def get_proposal(db: Session, proposal_id: int) -> Proposal:
    proposal = db.get(Proposal, proposal_id)
    if not proposal:
        raise NotFoundError('Proposal', proposal_id)
    return proposal


def get_proposal_by_number(db: Session, proposal_number: str) -> Proposal:
    proposal = db.execute(
        select(Proposal).where(Proposal.proposal_number == proposal_number)
    ).scalar_one_or_none()
    if not proposal:
        raise NotFoundError('Proposal', proposal_number)
    return proposal


def list_proposals(
    db: Session,
    *,
    status: ProposalStatus | None = None,
    customer_id: int | None = None,
    brand_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Proposal], int]:
    conditions = []
    if status:
        conditions.append(Proposal.status == status)
    if customer_id:
        conditions.append(Proposal.customer_id == customer_id)
    if brand_id:
        conditions.append(Proposal.brand_id == brand_id)
    if start_date:
        conditions.append(Proposal.tour_date >= start_date)
    if end_date:
        conditions.append(Proposal.tour_date <= end_date)

    count_query = select(func.count(Proposal.id))
    query = select(Proposal).order_by(Proposal.created_at.desc(), Proposal.id.desc()).limit(limit).offset(offset)
    if conditions:
        count_query = count_query.where(and_(*conditions))
        query = query.where(and_(*conditions))

    total = int(db.execute(count_query).scalar_one())
    return list(db.execute(query).scalars().all()), total


def list_activity(db: Session, proposal_id: int) -> list[ProposalActivity]:
    return list(
        db.execute(
            select(ProposalActivity)
            .where(ProposalActivity.proposal_id == proposal_id)
            .order_by(ProposalActivity.created_at.asc(), ProposalActivity.id.asc())
        ).scalars().all()
    )


def update_status(
    db: Session,
    proposal_id: int,
    status: ProposalStatus,
    *,
    actor_principal_id: int | None = None,
) -> Proposal:
    proposal = get_proposal(db, proposal_id)
    current = ProposalStatus(proposal.status)
    validate_status_transition(current, status)

    proposal.status = status
    proposal.updated_at = _now()
    log_proposal_activity(
        db,
        proposal_id=proposal.id,
        activity_type='status_change',
        notes=f'Status changed from {current.value} to {status.value}',
        actor_principal_id=actor_principal_id,
    )
    db.flush()
    logger.info(
        'Proposal status updated',
        extra={'proposal_id': proposal.id, 'old_status': current.value, 'new_status': status.value},
    )
    return proposal


def update_proposal(db: Session, proposal_id: int, fields: dict) -> Proposal:
    unknown = set(fields) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(f'Fields cannot be updated: {", ".join(sorted(unknown))}')
    nulled = sorted(name for name, value in fields.items() if value is None and name not in NULLABLE_FIELDS)
    if nulled:
        raise ValidationError(f'Fields cannot be null: {", ".join(nulled)}')

    proposal = get_proposal(db, proposal_id)
    if ProposalStatus(proposal.status) not in OPEN_STATUSES:
        raise ConflictError(f'Proposal is {proposal.status.value} and can no longer be edited')

    for name, value in fields.items():
        setattr(proposal, name, value)
    if proposal.total != proposal.subtotal + proposal.taxes:
        raise ValidationError('total must equal subtotal plus taxes')
    proposal.updated_at = _now()
    log_proposal_activity(
        db,
        proposal_id=proposal.id,
        activity_type='updated',
        notes=f'Updated: {", ".join(sorted(fields))}',
    )
    db.flush()
    return proposal


def send_proposal(db: Session, proposal_id: int, *, actor_principal_id: int | None = None) -> Proposal:
    return update_status(db, proposal_id, ProposalStatus.SENT, actor_principal_id=actor_principal_id)


def mark_viewed(db: Session, proposal_number: str) -> Proposal:
    proposal = get_proposal_by_number(db, proposal_number)
    if proposal.status == ProposalStatus.SENT:
        return update_status(db, proposal.id, ProposalStatus.VIEWED)
    return proposal


def expire_if_past_due(db: Session, proposal: Proposal, *, today: date | None = None) -> bool:
    today = today or date.today()
    if proposal.status in (ProposalStatus.SENT, ProposalStatus.VIEWED) and proposal.valid_until < today:
        update_status(db, proposal.id, ProposalStatus.EXPIRED)
        return True
    return False


def respond_to_proposal(
    db: Session,
    proposal_number: str,
    *,
    accept: bool,
    today: date | None = None,
) -> Proposal:
    """
    Customer decision on a proposal. A proposal past its valid_until date is
    moved to expired instead and returned in that state.
    """
    proposal = get_proposal_by_number(db, proposal_number)
    if expire_if_past_due(db, proposal, today=today):
        return proposal
    target = ProposalStatus.ACCEPTED if accept else ProposalStatus.DECLINED
    return update_status(db, proposal.id, target)


def accept_proposal(db: Session, proposal_number: str, *, today: date | None = None) -> Proposal:
    return respond_to_proposal(db, proposal_number, accept=True, today=today)


def decline_proposal(db: Session, proposal_number: str, *, today: date | None = None) -> Proposal:
    return respond_to_proposal(db, proposal_number, accept=False, today=today)


def get_statistics(db: Session, *, start_date: date | None = None, end_date: date | None = None) -> dict:
    conditions = []
    if start_date:
        conditions.append(Proposal.created_at >= datetime.combine(start_date, datetime.min.time(), tzinfo=timezone.utc))
    if end_date:
        conditions.append(
            Proposal.created_at < datetime.combine(end_date + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc)
        )

    sent_statuses = [ProposalStatus.SENT, ProposalStatus.VIEWED, ProposalStatus.ACCEPTED]
    query = select(
        func.count(Proposal.id).label('total_proposals'),
        func.coalesce(func.sum(case((Proposal.status.in_(sent_statuses), 1), else_=0)), 0).label('sent_proposals'),
        func.coalesce(func.sum(case((Proposal.status == ProposalStatus.ACCEPTED, 1), else_=0)), 0).label(
            'accepted_proposals'
        ),
        func.coalesce(func.sum(case((Proposal.status == ProposalStatus.DECLINED, 1), else_=0)), 0).label(
            'declined_proposals'
        ),
        func.avg(Proposal.total).label('avg_value'),
    )
    if conditions:
        query = query.where(and_(*conditions))
    row = db.execute(query).one()

    sent = int(row.sent_proposals or 0)
    accepted = int(row.accepted_proposals or 0)
    return {
        'total_proposals': int(row.total_proposals or 0),
        'sent_proposals': sent,
        'accepted_proposals': accepted,
        'declined_proposals': int(row.declined_proposals or 0),
        'conversion_rate': float(round(Decimal(accepted) / Decimal(sent), 4)) if sent else 0.0,
        'average_value': str(money(Decimal(row.avg_value))) if row.avg_value is not None else '0.00',
    }


def serialize_proposal(proposal: Proposal) -> dict:
    return {
        'id': proposal.id,
        'proposal_number': proposal.proposal_number,
        'customer_id': proposal.customer_id,
        'customer_name': proposal.customer_name,
        'customer_email': proposal.customer_email,
        'party_size': proposal.party_size,
        'tour_date': proposal.tour_date,
        'duration_hours': str(proposal.duration_hours),
        'subtotal': str(proposal.subtotal),
        'taxes': str(proposal.taxes),
        'total': str(proposal.total),
        'status': ProposalStatus(proposal.status).value,
        'valid_until': proposal.valid_until,
        'brand_id': proposal.brand_id,
        'notes': proposal.notes,
        'created_at': proposal.created_at,
        'updated_at': proposal.updated_at,
    }


def get_proposal_detail(db: Session, proposal_id: int) -> dict:
    proposal = get_proposal(db, proposal_id)
    customer = db.get(Customer, proposal.customer_id)
    detail = serialize_proposal(proposal)
    detail['customer'] = (
        {
            'id': customer.id,
            'email': customer.email,
            'name': customer.name,
            'phone': customer.phone,
            'vip_status': customer.vip_status,
        }
        if customer
        else None
    )
    detail['activity_log'] = [
        {
            'id': activity.id,
            'activity_type': activity.activity_type,
            'notes': activity.notes,
            'created_at': activity.created_at,
        }
        for activity in list_activity(db, proposal.id)
    ]
    return detail
