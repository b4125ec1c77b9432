from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import HTMLResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from app.db import get_db
from app.dependencies import get_templates
from app.errors import ConflictError
from app.models import ProposalStatus
from app.services.proposal_service import (
    accept_proposal,
    decline_proposal,
    expire_if_past_due,
    get_proposal_by_number,
    mark_viewed,
)
from app.services.rate_config_service import format_currency, format_day_type, get_day_type

router = APIRouter(prefix='/public/proposals', tags=['public'])


@router.get('/{proposal_number}', response_class=HTMLResponse, name='view_public_proposal')
def view_proposal(
    proposal_number: str,
    request: Request,
    db: Session = Depends(get_db),
    templates: Jinja2Templates = Depends(get_templates),
):
    proposal = get_proposal_by_number(db, proposal_number)
    if not expire_if_past_due(db, proposal):
        proposal = mark_viewed(db, proposal_number)
    db.commit()
    return templates.TemplateResponse(
        'proposal.html',
        {
            'request': request,
            'proposal': proposal,
            'day_type_label': format_day_type(get_day_type(proposal.tour_date)),
            'can_respond': proposal.status in (ProposalStatus.SENT, ProposalStatus.VIEWED),
            'currency': format_currency,
        },
    )


def _decision_response(db: Session, proposal) -> dict:
    db.commit()
    if proposal.status == ProposalStatus.EXPIRED:
        raise ConflictError(f'Proposal {proposal.proposal_number} has expired')
    return {'proposal_number': proposal.proposal_number, 'status': proposal.status.value}


@router.post('/{proposal_number}/accept', name='accept_public_proposal')
def accept(proposal_number: str, db: Session = Depends(get_db)):
    return _decision_response(db, accept_proposal(db, proposal_number))


@router.post('/{proposal_number}/decline', name='decline_public_proposal')
def decline(proposal_number: str, db: Session = Depends(get_db)):
    return _decision_response(db, decline_proposal(db, proposal_number))
