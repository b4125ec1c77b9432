from __future__ import annotations

from datetime import date

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from app.auth import Principal, require_staff
from app.db import get_db
from app.dependencies import get_client_ip
from app.models import ProposalStatus
from app.schemas import CreateProposalRequest, ProposalStatusRequest, UpdateProposalRequest
from app.services.audit_service import log_audit
from app.services.proposal_service import (
    create_proposal,
    get_proposal_detail,
    get_statistics,
    list_proposals,
    send_proposal,
    serialize_proposal,
    update_proposal,
    update_status,
)

router = APIRouter(prefix='/api/proposals', tags=['proposals'])


@router.post('', status_code=status.HTTP_201_CREATED)
def create(
    payload: CreateProposalRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    proposal = create_proposal(db, payload, actor_principal_id=principal.id)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='PROPOSAL_CREATED',
        ip=get_client_ip(request),
        entity_type='proposal',
        entity_id=proposal.id,
        metadata={'proposal_number': proposal.proposal_number},
    )
    db.commit()
    return serialize_proposal(proposal)


@router.get('')
def index(
    status_filter: ProposalStatus | None = Query(default=None, alias='status'),
    customer_id: int | None = None,
    brand_id: int | None = None,
    start_date: date | None = None,
    end_date: date | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    proposals, total = list_proposals(
        db,
        status=status_filter,
        customer_id=customer_id,
        brand_id=brand_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return {
        'proposals': [serialize_proposal(proposal) for proposal in proposals],
        'total': total,
        'limit': limit,
        'offset': offset,
    }


@router.get('/stats')
def stats(
    start_date: date | None = None,
    end_date: date | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    return get_statistics(db, start_date=start_date, end_date=end_date)


@router.get('/{proposal_id}')
def detail(
    proposal_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    return get_proposal_detail(db, proposal_id)


@router.patch('/{proposal_id}')
def update(
    proposal_id: int,
    payload: UpdateProposalRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    fields = payload.model_dump(exclude_unset=True)
    proposal = update_proposal(db, proposal_id, fields)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='PROPOSAL_UPDATED',
        ip=get_client_ip(request),
        entity_type='proposal',
        entity_id=proposal.id,
        metadata={'fields': sorted(fields)},
    )
    db.commit()
    return serialize_proposal(proposal)


@router.patch('/{proposal_id}/status')
def change_status(
    proposal_id: int,
    payload: ProposalStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    proposal = update_status(db, proposal_id, payload.status, actor_principal_id=principal.id)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='PROPOSAL_STATUS_CHANGED',
        ip=get_client_ip(request),
        entity_type='proposal',
        entity_id=proposal.id,
        metadata={'status': payload.status.value},
    )
    db.commit()
    return serialize_proposal(proposal)


@router.post('/{proposal_id}/send')
def send(
    proposal_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    proposal = send_proposal(db, proposal_id, actor_principal_id=principal.id)
    log_audit(
        db,
        actor_principal_id=principal.id,
        action='PROPOSAL_SENT',
        ip=get_client_ip(request),
        entity_type='proposal',
        entity_id=proposal.id,
        metadata={'proposal_number': proposal.proposal_number},
    )
    db.commit()
    return {
        **serialize_proposal(proposal),
        'public_url': str(request.url_for('view_public_proposal', proposal_number=proposal.proposal_number)),
    }
