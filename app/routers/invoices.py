from __future__ import annotations

from fastapi import APIRouter, Depends, Request, status
from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import Session

from app.auth import Principal, require_staff
from app.db import get_db
from app.dependencies import get_client_ip, get_templates
from app.schemas import ChargeOptionsIn, CreateInvoiceRequest, InvoiceStatusRequest
from app.services.audit_service import log_audit
from app.services.invoice_service import (
    create_invoice,
    create_invoice_from_proposal,
    get_invoice_detail,
    list_status_events,
    serialize_invoice,
    update_status,
)
from app.services.rate_config_service import format_currency

router = APIRouter(prefix='/api/invoices', tags=['invoices'])


def _audit(db: Session, request: Request, principal: Principal, action: str, invoice) -> None:
    log_audit(
        db,
        actor_principal_id=principal.id,
        action=action,
        ip=get_client_ip(request),
        entity_type='invoice',
        entity_id=invoice.id,
        metadata={'invoice_number': invoice.invoice_number, 'status': invoice.status.value},
    )


@router.post('', status_code=status.HTTP_201_CREATED)
def create(
    payload: CreateInvoiceRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    invoice = create_invoice(db, payload, actor_principal_id=principal.id)
    _audit(db, request, principal, 'INVOICE_CREATED', invoice)
    db.commit()
    return get_invoice_detail(db, invoice.id)


@router.post('/from-proposal/{proposal_id}', status_code=status.HTTP_201_CREATED)
def create_from_proposal(
    proposal_id: int,
    request: Request,
    charges: ChargeOptionsIn | None = None,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    invoice = create_invoice_from_proposal(db, proposal_id, charges=charges, actor_principal_id=principal.id)
    _audit(db, request, principal, 'INVOICE_CREATED_FROM_PROPOSAL', invoice)
    db.commit()
    return get_invoice_detail(db, invoice.id)


@router.get('/{invoice_id}')
def detail(
    invoice_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    return get_invoice_detail(db, invoice_id)


@router.get('/{invoice_id}/events')
def events(
    invoice_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    return [
        {
            'id': event.id,
            'from_status': event.from_status,
            'to_status': event.to_status,
            'actor_principal_id': event.actor_principal_id,
            'snapshot': event.snapshot,
            'created_at': event.created_at,
        }
        for event in list_status_events(db, invoice_id)
    ]


@router.patch('/{invoice_id}/status')
def change_status(
    invoice_id: int,
    payload: InvoiceStatusRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
):
    invoice = update_status(db, invoice_id, payload.status, actor_principal_id=principal.id)
    _audit(db, request, principal, 'INVOICE_STATUS_CHANGED', invoice)
    db.commit()
    return serialize_invoice(invoice)


@router.get('/{invoice_id}/print')
def print_invoice(
    invoice_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_staff),
    templates: Jinja2Templates = Depends(get_templates),
):
    invoice = get_invoice_detail(db, invoice_id)
    return templates.TemplateResponse(
        'invoice.html',
        {
            'request': request,
            'invoice': invoice,
            'line_items': [item for item in invoice['line_items'] if item['is_visible']],
            'currency': format_currency,
        },
    )
