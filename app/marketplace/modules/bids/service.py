from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import func

from app.marketplace.audit import record_event
from app.marketplace.constants import BID_STATUSES
from app.marketplace.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.marketplace.modules.bids.models import Bid
from app.marketplace.utils import clean_str, iso, money, money_json, parse_int, to_decimal

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.marketplace.models import User

logger = logging.getLogger(__name__)

REVIEW_ACTIONS = {"ACCEPT": "ACCEPTED", "REJECT": "REJECTED"}
MAX_PROPOSAL_LENGTH = 5000


def validate_bid_payload(payload: dict) -> list[str]:
    errors: list[str] = []
    try:
        parse_int(payload.get("projectId"), field="projectId", minimum=1)
    except ValueError as e:
        errors.append(str(e))
    try:
        if to_decimal(payload.get("bidAmount"), field="bidAmount") <= 0:
            errors.append("bidAmount must be greater than zero.")
    except ValueError as e:
        errors.append(str(e))
    proposal = clean_str(payload.get("proposalText")) or ""
    if len(proposal) > MAX_PROPOSAL_LENGTH:
        errors.append(f"proposalText must be at most {MAX_PROPOSAL_LENGTH} characters.")
    return errors


def place_bid(s: "Session", payload: dict, freelancer: "User") -> Bid:
    from app.marketplace.modules.freelancers.service import require_accepted_profile
    from app.marketplace.modules.projects.service import get_project

    errors = validate_bid_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors), data={"errors": errors})
    require_accepted_profile(s, freelancer)

    project = get_project(s, int(payload["projectId"]))
    if not project.accepting_bids or project.status in ("COMPLETED", "CANCELLED"):
        raise ValidationError("This project is not accepting bids.")
    existing = (
        s.query(Bid)
        .filter(
            Bid.project_id == project.id,
            Bid.freelancer_id == freelancer.id,
            Bid.status.in_(("PENDING", "ACCEPTED")),
        )
        .first()
    )
    if existing is not None:
        raise ConflictError("You already have an active bid on this project.")

    now = datetime.utcnow()
    bid = Bid(
        project_id=project.id,
        freelancer_id=freelancer.id,
        bid_amount=money(to_decimal(payload.get("bidAmount"), field="bidAmount")),
        proposal_text=clean_str(payload.get("proposalText")),
        status="PENDING",
        created_at=now,
        updated_at=now,
    )
    s.add(bid)
    s.flush()
    record_event(
        s,
        actor=freelancer,
        action="bid.place",
        entity_type="Bid",
        entity_id=str(bid.id),
        metadata={"project_id": project.id, "amount": str(bid.bid_amount)},
    )
    return bid


def get_bid(s: "Session", bid_id: int) -> Bid:
    bid = s.get(Bid, bid_id)
    if bid is None:
        raise NotFoundError("Bid not found.")
    return bid


def withdraw_bid(s: "Session", bid_id: int, freelancer: "User") -> Bid:
    bid = get_bid(s, bid_id)
    if bid.freelancer_id != freelancer.id:
        raise ForbiddenError("You can only withdraw your own bids.")
    if bid.status != "PENDING":
        raise ValidationError("Only pending bids can be withdrawn.")
    bid.status = "WITHDRAWN"
    bid.updated_at = datetime.utcnow()
    record_event(s, actor=freelancer, action="bid.withdraw", entity_type="Bid", entity_id=str(bid.id))
    return bid


def review_bid(s: "Session", bid_id: int, action: str, reviewer: "User", reason: str | None = None) -> Bid:
    """
    Accept or reject a pending bid. Accepting selects the freelancer for the project
    and moves a pending project to ONGOING.
    """
    from app.marketplace.modules.projects.service import add_freelancer

    new_status = REVIEW_ACTIONS.get((action or "").strip().upper())
    if new_status is None:
        raise ValidationError("action must be ACCEPT or REJECT.")
    bid = get_bid(s, bid_id)
    if bid.status != "PENDING":
        raise ValidationError(f"Only pending bids can be reviewed (bid is {bid.status}).")

    now = datetime.utcnow()
    bid.status = new_status
    bid.reviewed_by_user_id = reviewer.id
    bid.reviewed_at = now
    bid.review_reason = clean_str(reason)
    bid.updated_at = now

    project = bid.project
    if new_status == "ACCEPTED":
        add_freelancer(s, project, bid.freelancer)
        if project.status == "PENDING":
            project.status = "ONGOING"
            project.updated_at = now

    record_event(
        s,
        actor=reviewer,
        action="bid.review",
        entity_type="Bid",
        entity_id=str(bid.id),
        reason=bid.review_reason,
        metadata={"project_id": project.id, "freelancer_id": bid.freelancer_id, "status": new_status},
    )
    logger.info("Bid id=%s %s by user id=%s", bid.id, new_status, reviewer.id)
    return bid


def freelancer_bids(s: "Session", freelancer: "User") -> list[Bid]:
    return s.query(Bid).filter(Bid.freelancer_id == freelancer.id).order_by(Bid.created_at.desc(), Bid.id.desc()).all()


def project_bids(s: "Session", project_id: int, status: str = "") -> list[Bid]:
    q = s.query(Bid).filter(Bid.project_id == project_id)
    if status:
        if status not in BID_STATUSES:
            raise ValidationError(f"status must be one of: {', '.join(BID_STATUSES)}")
        q = q.filter(Bid.status == status)
    return q.order_by(Bid.created_at.asc(), Bid.id.asc()).all()


def bid_stats(s: "Session") -> dict:
    counts = dict(s.query(Bid.status, func.count(Bid.id)).group_by(Bid.status).all())
    avg = s.query(func.avg(Bid.bid_amount)).scalar()
    return {
        "total": sum(counts.values()),
        **{status.lower(): int(counts.get(status, 0)) for status in BID_STATUSES},
        "averageBidAmount": money_json(money(avg)) if avg is not None else 0.0,
    }


def serialize_bid(b: Bid) -> dict:
    f = b.freelancer
    return {
        "id": b.id,
        "projectId": b.project_id,
        "projectTitle": b.project.title if b.project else None,
        "freelancer": {"id": f.id, "fullName": f.full_name, "username": f.username, "email": f.email} if f else None,
        "bidAmount": money_json(b.bid_amount),
        "proposalText": b.proposal_text,
        "status": b.status,
        "reviewReason": b.review_reason,
        "reviewedAt": iso(b.reviewed_at),
        "createdAt": iso(b.created_at),
    }
