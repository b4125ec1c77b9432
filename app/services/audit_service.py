from __future__ import annotations

from sqlalchemy.orm import Session

from app.models import AuditLog, AuthEvent, InvoiceStatusEvent, ProposalActivity


def log_auth_event(
    db: Session,
    *,
    attempted_username: str,
    success: bool,
    ip: str | None,
    user_agent: str | None,
    principal_id: int | None = None,
    failure_reason: str | None = None,
) -> None:
    db.add(
        AuthEvent(
            attempted_username=attempted_username,
            success=success,
            failure_reason=failure_reason,
            principal_id=principal_id,
            ip=ip,
            user_agent=user_agent,
        )
    )


def log_audit(
    db: Session,
    *,
    actor_principal_id: int | None,
    action: str,
    ip: str | None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    metadata: dict | None = None,
) -> None:
    db.add(
        AuditLog(
            actor_principal_id=actor_principal_id,
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            ip=ip,
            meta=metadata or {},
        )
    )


def log_proposal_activity(
    db: Session,
    *,
    proposal_id: int,
    activity_type: str,
    notes: str | None = None,
    actor_principal_id: int | None = None,
) -> None:
    db.add(
        ProposalActivity(
            proposal_id=proposal_id,
            activity_type=activity_type,
            notes=notes,
            actor_principal_id=actor_principal_id,
        )
    )


def log_invoice_status_event(
    db: Session,
    *,
    invoice_id: int,
    from_status: str | None,
    to_status: str,
    snapshot: dict,
    actor_principal_id: int | None = None,
) -> None:
    db.add(
        InvoiceStatusEvent(
            invoice_id=invoice_id,
            from_status=from_status,
            to_status=to_status,
            actor_principal_id=actor_principal_id,
            snapshot=snapshot,
        )
    )
