from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.marketplace.audit import record_event
from app.marketplace.errors import ConflictError, NotFoundError, ValidationError
from app.marketplace.modules.drafts.models import ProjectDraft
from app.marketplace.modules.visitors import service as funnel
from app.marketplace.utils import clean_str, iso

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.marketplace.models import User
    from app.marketplace.modules.projects.models import Project

logger = logging.getLogger(__name__)

_DETAIL_FIELDS = {
    "companyName": "company_name",
    "businessType": "business_type",
    "companyWebsite": "company_website",
    "businessAddress": "business_address",
}


def get_draft(s: "Session", draft_id: int, client: "User") -> ProjectDraft:
    """Other clients' drafts are reported as missing."""
    draft = s.get(ProjectDraft, draft_id)
    if draft is None or draft.client_id != client.id:
        raise NotFoundError("Draft not found.")
    return draft


def _open(s: "Session", draft_id: int, client: "User") -> ProjectDraft:
    draft = get_draft(s, draft_id, client)
    if draft.is_finalized:
        raise ConflictError("This draft has already been finalized.")
    return draft


def _priceable(s: "Session", draft_id: int, client: "User") -> ProjectDraft:
    draft = _open(s, draft_id, client)
    if draft.estimate_accepted:
        raise ConflictError("The estimate has been accepted; the selections can no longer change.")
    return draft


def client_drafts(s: "Session", client: "User") -> list[ProjectDraft]:
    return (
        s.query(ProjectDraft)
        .filter(ProjectDraft.client_id == client.id)
        .order_by(ProjectDraft.created_at.desc(), ProjectDraft.id.desc())
        .all()
    )


def create_draft(s: "Session", client: "User", payload: dict) -> ProjectDraft:
    errors = [f"{key} is required." for key in ("companyName", "businessType") if not clean_str(payload.get(key))]
    if errors:
        raise ValidationError("; ".join(errors), data={"errors": errors})
    now = datetime.utcnow()
    draft = ProjectDraft(client_id=client.id, created_at=now, updated_at=now)
    for key, attr in _DETAIL_FIELDS.items():
        setattr(draft, attr, clean_str(payload.get(key)))
    s.add(draft)
    s.flush()
    record_event(s, actor=client, action="draft.create", entity_type="ProjectDraft", entity_id=str(draft.id))
    return draft


def set_selection(s: "Session", draft_id: int, client: "User", step: str, raw: Any) -> ProjectDraft:
    if step not in funnel.SELECTION_STEPS:
        raise NotFoundError(f"Unknown step: {step}")
    draft = _priceable(s, draft_id, client)
    funnel.apply_selection(draft, step, raw)
    return draft


def set_discount(s: "Session", draft_id: int, client: "User", payload: dict) -> ProjectDraft:
    draft = _priceable(s, draft_id, client)
    funnel.apply_discount(draft, payload)
    return draft


def set_timeline(s: "Session", draft_id: int, client: "User", payload: dict) -> ProjectDraft:
    draft = _priceable(s, draft_id, client)
    funnel.apply_timeline(s, draft, payload)
    return draft


def get_estimate(s: "Session", draft_id: int, client: "User") -> ProjectDraft:
    from app.marketplace.modules.pricing.service import price_lookup

    draft = get_draft(s, draft_id, client)
    if draft.timeline_option is None:
        raise ValidationError("Choose a timeline before requesting an estimate.")
    if not draft.estimate_accepted and not draft.is_finalized:
        funnel.apply_estimate(draft, price_lookup(s))
    return draft


def accept_estimate(s: "Session", draft_id: int, client: "User") -> ProjectDraft:
    draft = _open(s, draft_id, client)
    if funnel.mark_estimate_accepted(draft):
        record_event(s, actor=client, action="draft.estimate_accept", entity_type="ProjectDraft", entity_id=str(draft.id))
    return draft


def finalize_draft(s: "Session", draft_id: int, client: "User", payment_method: Any) -> "Project":
    """
    Open a project from an accepted draft. The draft is kept, marked finalized and linked to it.
    """
    draft = _open(s, draft_id, client)
    if not draft.estimate_accepted:
        raise ValidationError("Accept the estimate before finalizing the draft.")
    method = clean_str(payment_method if isinstance(payment_method, str) else None)
    if not method:
        raise ValidationError("paymentMethod is required.")

    project = funnel.build_project(draft, client, company=draft.company_name, project_type=draft.business_type)
    s.add(project)
    s.flush()

    now = datetime.utcnow()
    draft.is_finalized = True
    draft.finalized_at = now
    draft.payment_method = method.upper()[:64]
    draft.project_id = project.id
    draft.updated_at = now
    record_event(
        s,
        actor=client,
        action="draft.finalize",
        entity_type="ProjectDraft",
        entity_id=str(draft.id),
        metadata={"project_id": project.id, "payment_method": draft.payment_method},
    )
    logger.info("Finalized draft id=%s for client id=%s (project id=%s)", draft.id, client.id, project.id)
    return project


def delete_draft(s: "Session", draft_id: int, client: "User") -> None:
    draft = _open(s, draft_id, client)
    record_event(s, actor=client, action="draft.delete", entity_type="ProjectDraft", entity_id=str(draft.id))
    s.delete(draft)


def serialize_draft(draft: ProjectDraft) -> dict:
    return {
        "id": draft.id,
        "clientId": draft.client_id,
        "isFinalized": draft.is_finalized,
        "finalizedAt": iso(draft.finalized_at),
        "paymentMethod": draft.payment_method,
        "projectId": draft.project_id,
        "details": {
            "companyName": draft.company_name,
            "businessType": draft.business_type,
            "companyWebsite": draft.company_website,
            "businessAddress": draft.business_address,
        },
        "services": draft.services or [],
        "industries": draft.industries or [],
        "technologies": draft.technologies or [],
        "features": draft.features or [],
        "discount": {"type": draft.discount_type, "percent": draft.discount_percent, "notes": draft.discount_notes}
        if draft.discount_type
        else None,
        "timeline": {
            "option": draft.timeline_option,
            "rushFeePercent": draft.rush_fee_percent,
            "estimatedDays": draft.estimated_days,
            "description": draft.timeline_description,
        }
        if draft.timeline_option
        else None,
        "estimate": funnel.serialize_estimate(draft) if draft.calculated_total is not None else None,
        "estimateAccepted": draft.estimate_accepted,
        "createdAt": iso(draft.created_at),
        "updatedAt": iso(draft.updated_at),
    }
