from __future__ import annotations

import logging
from datetime import datetime, timedelta
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_

from app.marketplace.audit import record_event
from app.marketplace.constants import DISCOUNT_TYPES, ESTIMATE_RANGE_HIGH, ESTIMATE_RANGE_LOW, TIMELINE_OPTIONS
from app.marketplace.errors import ConflictError, NotFoundError, ValidationError
from app.marketplace.modules.visitors.models import PricedSelectionMixin, Visitor
from app.marketplace.utils import clean_str, iso, money, money_json, normalize_email, parse_int, to_decimal, whole_dollars

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.marketplace.models import User
    from app.marketplace.modules.projects.models import Project

logger = logging.getLogger(__name__)

VISITOR_STATUS_FILTERS = ("ALL", "CONVERTED", "NOT_CONVERTED")

# Selection step -> (model attribute, key holding the catalog name, key holding nested names)
SELECTION_STEPS: dict[str, tuple[str, str, str]] = {
    "services": ("services", "name", "childServices"),
    "industries": ("industries", "category", "subIndustries"),
    "technologies": ("technologies", "category", "technologies"),
    "features": ("features", "category", "features"),
}


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def get_visitor(s: "Session", visitor_id: int, *, include_deleted: bool = False) -> Visitor:
    v = s.get(Visitor, visitor_id)
    if v is None or (v.deleted_at is not None and not include_deleted):
        raise NotFoundError("Visitor not found.")
    return v


def _editable(s: "Session", visitor_id: int) -> Visitor:
    v = get_visitor(s, visitor_id)
    if v.is_converted:
        raise ConflictError("This visitor has already been converted to a client.")
    return v


def _priceable(s: "Session", visitor_id: int) -> Visitor:
    """Editable and not yet locked by an accepted estimate."""
    v = _editable(s, visitor_id)
    if v.estimate_accepted:
        raise ConflictError("The estimate has been accepted; the selections can no longer change.")
    return v


def find_convertible_visitor(s: "Session", email: str) -> Visitor | None:
    """Most recent non-deleted, not yet converted visitor for this business email."""
    target = normalize_email(email)
    if not target:
        return None
    return (
        s.query(Visitor)
        .filter(
            func.lower(func.trim(Visitor.business_email)) == target,
            Visitor.deleted_at.is_(None),
            Visitor.is_converted.is_(False),
        )
        .order_by(Visitor.created_at.desc(), Visitor.id.desc())
        .first()
    )


def check_email(s: "Session", email: str) -> dict:
    from app.marketplace.modules.accounts.service import find_user_by_email

    target = normalize_email(email)
    if not target:
        raise ValidationError("email is required.")
    visitor = (
        s.query(Visitor)
        .filter(func.lower(func.trim(Visitor.business_email)) == target, Visitor.deleted_at.is_(None))
        .order_by(Visitor.created_at.desc(), Visitor.id.desc())
        .first()
    )
    return {
        "exists": visitor is not None,
        "visitorId": visitor.id if visitor else None,
        "isConverted": bool(visitor and visitor.is_converted),
        "isRegistered": find_user_by_email(s, target) is not None,
        "visitor": serialize_visitor(visitor) if visitor else None,
    }


# ---------------------------------------------------------------------------
# Onboarding steps
# ---------------------------------------------------------------------------


def validate_visitor_payload(payload: dict) -> list[str]:
    from app.marketplace.modules.accounts.service import is_valid_email

    errors: list[str] = []
    if not clean_str(payload.get("fullName")):
        errors.append("fullName is required.")
    if not is_valid_email(normalize_email(payload.get("businessEmail"))):
        errors.append("A valid businessEmail is required.")
    if not clean_str(payload.get("companyName")):
        errors.append("companyName is required.")
    return errors


_DETAIL_FIELDS = {
    "fullName": "full_name",
    "phoneNumber": "phone_number",
    "companyName": "company_name",
    "companyWebsite": "company_website",
    "businessAddress": "business_address",
    "businessType": "business_type",
    "referralSource": "referral_source",
}


def create_visitor(s: "Session", payload: dict, *, ip_address: str | None = None) -> tuple[Visitor, bool]:
    """
    Step 1. Resumes the open visitor for the same email instead of creating a duplicate.
    Returns (visitor, created).
    """
    errors = validate_visitor_payload(payload)
    if errors:
        raise ValidationError("; ".join(errors), data={"errors": errors})

    email = normalize_email(payload.get("businessEmail"))
    now = datetime.utcnow()
    visitor = find_convertible_visitor(s, email)
    created = visitor is None
    if visitor is None:
        visitor = Visitor(business_email=email, created_at=now)
        s.add(visitor)
    for key, attr in _DETAIL_FIELDS.items():
        if key in payload or created:
            setattr(visitor, attr, clean_str(payload.get(key)))
    visitor.ip_address = ip_address or visitor.ip_address
    visitor.updated_at = now
    s.flush()
    record_event(
        s,
        actor=None,
        action="visitor.create" if created else "visitor.resume",
        entity_type="Visitor",
        entity_id=str(visitor.id),
        metadata={"email": email},
    )
    return visitor, created


def _normalize_selection(step: str, raw: Any) -> list[dict]:
    """
    Accepts either a list of names or a list of {<name key>: str, <nested key>: [str]} objects.
    """
    _, name_key, nested_key = SELECTION_STEPS[step]
    if isinstance(raw, dict):
        raw = raw.get(step, raw.get("items"))
    if not isinstance(raw, list):
        raise ValidationError(f"{step} must be a list.")
    out: list[dict] = []
    for item in raw:
        if isinstance(item, str):
            name, nested = clean_str(item), []
        elif isinstance(item, dict):
            name = clean_str(item.get(name_key) or item.get("name"))
            nested_raw = item.get(nested_key) or []
            if not isinstance(nested_raw, list):
                raise ValidationError(f"{nested_key} must be a list.")
            nested = [n for n in (clean_str(x) for x in nested_raw) if n]
        else:
            raise ValidationError(f"Invalid {step} entry.")
        if not name and not nested:
            continue
        out.append({name_key: name, nested_key: nested})
    return out


def apply_selection(target: PricedSelectionMixin, step: str, raw: Any) -> None:
    if step not in SELECTION_STEPS:
        raise NotFoundError(f"Unknown step: {step}")
    setattr(target, SELECTION_STEPS[step][0], _normalize_selection(step, raw))
    target.updated_at = datetime.utcnow()


def apply_discount(target: PricedSelectionMixin, payload: dict) -> None:
    dtype = (payload.get("type") or "").strip().upper()
    if dtype not in DISCOUNT_TYPES:
        raise ValidationError(f"type must be one of: {', '.join(DISCOUNT_TYPES)}")
    expected = DISCOUNT_TYPES[dtype]
    if payload.get("percent") is not None:
        try:
            percent = parse_int(payload.get("percent"), field="percent", minimum=0, maximum=100)
        except ValueError as e:
            raise ValidationError(str(e))
        if percent != expected:
            raise ValidationError(f"{dtype} discount is {expected}%.")
    target.discount_type = dtype
    target.discount_percent = expected
    target.discount_notes = clean_str(payload.get("notes"))
    target.updated_at = datetime.utcnow()


def apply_timeline(s: "Session", target: PricedSelectionMixin, payload: dict) -> None:
    """The estimate is (re)calculated right after the timeline is chosen."""
    from app.marketplace.modules.pricing.service import price_lookup

    option = (payload.get("option") or "").strip().upper()
    if option not in TIMELINE_OPTIONS:
        raise ValidationError(f"option must be one of: {', '.join(TIMELINE_OPTIONS)}")
    preset = TIMELINE_OPTIONS[option]
    for key, attr in (("rushFeePercent", "rush_fee_percent"), ("estimatedDays", "estimated_days")):
        if payload.get(key) is None:
            continue
        try:
            value = parse_int(payload.get(key), field=key, minimum=0)
        except ValueError as e:
            raise ValidationError(str(e))
        if value != preset[attr]:
            raise ValidationError(f"{key} for {option} is {preset[attr]}.")
    target.timeline_option = option
    target.rush_fee_percent = preset["rush_fee_percent"]
    target.estimated_days = preset["estimated_days"]
    target.timeline_description = clean_str(payload.get("description"))
    target.updated_at = datetime.utcnow()
    apply_estimate(target, price_lookup(s))


def set_selection(s: "Session", visitor_id: int, step: str, raw: Any) -> Visitor:
    """Steps 2-5: services, industries, technologies and features."""
    if step not in SELECTION_STEPS:
        raise NotFoundError(f"Unknown step: {step}")
    v = _priceable(s, visitor_id)
    apply_selection(v, step, raw)
    return v


def set_discount(s: "Session", visitor_id: int, payload: dict) -> Visitor:
    v = _priceable(s, visitor_id)
    apply_discount(v, payload)
    return v


def set_timeline(s: "Session", visitor_id: int, payload: dict) -> Visitor:
    """Step 7."""
    v = _priceable(s, visitor_id)
    apply_timeline(s, v, payload)
    return v


# ---------------------------------------------------------------------------
# Estimate
# ---------------------------------------------------------------------------


def _names(selection: list | None, name_key: str, nested_key: str, *, nested: bool) -> list[str]:
    out: list[str] = []
    for item in selection or []:
        if nested:
            out.extend(item.get(nested_key) or [])
        elif item.get(name_key):
            out.append(item[name_key])
    return out


def calculate_estimate(
    *,
    services: list[str],
    industries: list[str],
    technologies: list[str],
    features: list[str],
    discount_percent: int,
    rush_fee_percent: int,
    prices: dict[str, dict[str, Decimal]],
) -> dict[str, Decimal]:
    """
    Price a selection against the catalog. Unknown names cost nothing.

    total = base - discount + rush, where rush is charged on the discounted amount,
    and the quoted range is total x 0.9 .. total x 1.1 in whole dollars.
    """
    def _sum(names: list[str], section: str) -> Decimal:
        table = prices.get(section, {})
        return sum((table.get(n.strip().lower(), Decimal("0")) for n in names), Decimal("0"))

    base = _sum(services, "categories") + _sum(industries, "industries")
    base += _sum(technologies, "technologies") + _sum(features, "features")
    base = money(base)
    discount = money(base * Decimal(discount_percent) / 100)
    rush = money((base - discount) * Decimal(rush_fee_percent) / 100)
    total = money(base - discount + rush)
    return {
        "base_cost": base,
        "discount_amount": discount,
        "rush_fee_amount": rush,
        "calculated_total": total,
        "estimate_final_price_min": whole_dollars(total * ESTIMATE_RANGE_LOW),
        "estimate_final_price_max": whole_dollars(total * ESTIMATE_RANGE_HIGH),
    }


def apply_estimate(v: PricedSelectionMixin, prices: dict[str, dict[str, Decimal]]) -> PricedSelectionMixin:
    """Recompute the breakdown; an admin-adjusted range is kept as is."""
    result = calculate_estimate(
        services=_names(v.services, "name", "childServices", nested=False),
        industries=_names(v.industries, "category", "subIndustries", nested=False),
        technologies=_names(v.technologies, "category", "technologies", nested=True),
        features=_names(v.features, "category", "features", nested=True),
        discount_percent=v.discount_percent or 0,
        rush_fee_percent=v.rush_fee_percent or 0,
        prices=prices,
    )
    for attr, value in result.items():
        if v.is_manually_adjusted and attr.startswith("estimate_final_price"):
            continue
        setattr(v, attr, value)
    return v


def get_estimate(s: "Session", visitor_id: int) -> Visitor:
    from app.marketplace.modules.pricing.service import price_lookup

    v = get_visitor(s, visitor_id)
    if v.timeline_option is None:
        raise ValidationError("Choose a timeline before requesting an estimate.")
    if not v.estimate_accepted and not v.is_converted:
        apply_estimate(v, price_lookup(s))
    return v


def mark_estimate_accepted(target: PricedSelectionMixin) -> bool:
    """Returns False when the estimate was already accepted."""
    if target.calculated_total is None:
        raise ValidationError("No estimate to accept yet.")
    if target.estimate_accepted:
        return False
    target.estimate_accepted = True
    target.estimate_accepted_at = datetime.utcnow()
    target.updated_at = target.estimate_accepted_at
    return True


def accept_estimate(s: "Session", visitor_id: int) -> Visitor:
    v = _editable(s, visitor_id)
    if mark_estimate_accepted(v):
        record_event(s, actor=None, action="visitor.estimate_accept", entity_type="Visitor", entity_id=str(v.id))
    return v


def accept_service_agreement(s: "Session", visitor_id: int, accepted: Any) -> Visitor:
    v = _editable(s, visitor_id)
    if accepted is not True:
        raise ValidationError("The service agreement must be accepted.")
    if not v.estimate_accepted:
        raise ValidationError("Accept the estimate before the service agreement.")
    if not v.service_agreement_accepted:
        v.service_agreement_accepted = True
        v.service_agreement_accepted_at = datetime.utcnow()
        v.updated_at = v.service_agreement_accepted_at
        record_event(s, actor=None, action="visitor.agreement_accept", entity_type="Visitor", entity_id=str(v.id))
    return v


# ---------------------------------------------------------------------------
# Staff management
# ---------------------------------------------------------------------------


def list_visitors(
    s: "Session",
    *,
    search: str = "",
    status: str = "ALL",
    business_type: str = "",
    referral_source: str = "",
    page: int = 1,
    per_page: int = 10,
) -> tuple[list[Visitor], int]:
    status = (status or "ALL").upper()
    if status not in VISITOR_STATUS_FILTERS:
        raise ValidationError(f"status must be one of: {', '.join(VISITOR_STATUS_FILTERS)}")
    q = s.query(Visitor).filter(Visitor.deleted_at.is_(None))
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(
            or_(
                func.lower(Visitor.full_name).like(like),
                func.lower(Visitor.business_email).like(like),
                func.lower(Visitor.company_name).like(like),
            )
        )
    if status == "CONVERTED":
        q = q.filter(Visitor.is_converted.is_(True))
    elif status == "NOT_CONVERTED":
        q = q.filter(Visitor.is_converted.is_(False))
    if business_type:
        q = q.filter(Visitor.business_type == business_type)
    if referral_source:
        q = q.filter(Visitor.referral_source == referral_source)
    total = q.count()
    rows = q.order_by(Visitor.created_at.desc(), Visitor.id.desc()).offset((page - 1) * per_page).limit(per_page).all()
    return rows, total


def update_visitor(s: "Session", visitor_id: int, payload: dict, user: "User") -> Visitor:
    v = get_visitor(s, visitor_id)
    changes: dict[str, dict[str, Any]] = {}
    for key, attr in _DETAIL_FIELDS.items():
        if key not in payload:
            continue
        new = clean_str(payload.get(key))
        if key == "fullName" and not new:
            raise ValidationError("fullName cannot be empty.")
        old = getattr(v, attr)
        if old != new:
            changes[key] = {"old": old, "new": new}
            setattr(v, attr, new)
    if "businessEmail" in payload:
        from app.marketplace.modules.accounts.service import is_valid_email

        new_email = normalize_email(payload.get("businessEmail"))
        if not is_valid_email(new_email):
            raise ValidationError("A valid businessEmail is required.")
        if new_email != v.business_email:
            changes["businessEmail"] = {"old": v.business_email, "new": new_email}
            v.business_email = new_email
    if changes:
        v.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="visitor.update", entity_type="Visitor", entity_id=str(v.id), metadata={"changes": changes})
    return v


def adjust_estimate(s: "Session", visitor_id: int, payload: dict, user: "User") -> Visitor:
    v = get_visitor(s, visitor_id)
    try:
        low = money(to_decimal(payload.get("estimateFinalPriceMin"), field="estimateFinalPriceMin"))
        high = money(to_decimal(payload.get("estimateFinalPriceMax"), field="estimateFinalPriceMax"))
    except ValueError as e:
        raise ValidationError(str(e))
    if low < 0 or high < low:
        raise ValidationError("Price range must be non-negative with min <= max.")
    old = {"min": str(v.estimate_final_price_min), "max": str(v.estimate_final_price_max)}
    v.estimate_final_price_min = low
    v.estimate_final_price_max = high
    v.is_manually_adjusted = True
    v.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="visitor.estimate_adjust",
        entity_type="Visitor",
        entity_id=str(v.id),
        reason=clean_str(payload.get("reason")),
        metadata={"old": old, "new": {"min": str(low), "max": str(high)}},
    )
    return v


def delete_visitor(s: "Session", visitor_id: int, user: "User") -> Visitor:
    """Soft delete; the row stays for the audit trail."""
    v = get_visitor(s, visitor_id)
    v.deleted_at = datetime.utcnow()
    v.updated_at = v.deleted_at
    record_event(s, actor=user, action="visitor.delete", entity_type="Visitor", entity_id=str(v.id))
    return v


# ---------------------------------------------------------------------------
# Conversion
# ---------------------------------------------------------------------------


def _project_title(v: PricedSelectionMixin, company: str) -> str:
    services = [x.get("name") for x in (v.services or []) if x.get("name")]
    if services:
        title = f"{company}: {', '.join(services)}"
    else:
        title = f"{company} project"
    return title[:255]


def _project_detail(v: PricedSelectionMixin) -> str | None:
    parts: list[str] = []
    for label, step in (("Industries", "industries"), ("Technologies", "technologies"), ("Features", "features")):
        _, name_key, nested_key = SELECTION_STEPS[step]
        names = _names(getattr(v, step), name_key, nested_key, nested=step in ("technologies", "features"))
        if names:
            parts.append(f"{label}: {', '.join(names)}")
    if v.timeline_description:
        parts.append(f"Timeline: {v.timeline_description}")
    return "\n".join(parts) or None


def build_project(
    source: PricedSelectionMixin,
    client: "User",
    *,
    company: str,
    project_type: str | None,
    visitor_id: int | None = None,
) -> "Project":
    """An open (PENDING, accepting bids) project priced from a selection's estimate."""
    from app.marketplace.modules.projects.models import Project

    now = datetime.utcnow()
    industries = _names(source.industries, "category", "subIndustries", nested=False)
    return Project(
        client_id=client.id,
        visitor_id=visitor_id,
        title=_project_title(source, company),
        detail=_project_detail(source),
        niche=industries[0] if industries else None,
        project_type=project_type,
        status="PENDING",
        deadline=now + timedelta(days=source.estimated_days) if source.estimated_days else None,
        total_amount=money(source.calculated_total),
        estimate_min=source.estimate_final_price_min,
        estimate_max=source.estimate_final_price_max,
        accepting_bids=True,
        created_at=now,
        updated_at=now,
    )


def convert_visitor_for_client(s: "Session", client: "User") -> "Project | None":
    """
    Link the client's onboarding visitor (matched by email) and open a project from it.
    Returns the new project, or None when there is nothing to convert.
    """
    visitor = find_convertible_visitor(s, client.email)
    if visitor is None:
        return None

    now = datetime.utcnow()
    visitor.is_converted = True
    visitor.converted_at = now
    visitor.client_id = client.id
    visitor.updated_at = now

    project = build_project(
        visitor,
        client,
        company=visitor.company_name or visitor.full_name,
        project_type=visitor.business_type,
        visitor_id=visitor.id,
    )
    s.add(project)
    s.flush()
    record_event(
        s,
        actor=client,
        action="visitor.convert",
        entity_type="Visitor",
        entity_id=str(visitor.id),
        metadata={"client_id": client.id, "project_id": project.id},
    )
    logger.info("Converted visitor id=%s to client id=%s (project id=%s)", visitor.id, client.id, project.id)
    return project


def serialize_visitor(v: Visitor) -> dict:
    return {
        "id": v.id,
        "fullName": v.full_name,
        "businessEmail": v.business_email,
        "phoneNumber": v.phone_number,
        "companyName": v.company_name,
        "companyWebsite": v.company_website,
        "businessAddress": v.business_address,
        "businessType": v.business_type,
        "referralSource": v.referral_source,
        "ipAddress": v.ip_address,
        "services": v.services or [],
        "industries": v.industries or [],
        "technologies": v.technologies or [],
        "features": v.features or [],
        "discount": {"type": v.discount_type, "percent": v.discount_percent, "notes": v.discount_notes}
        if v.discount_type
        else None,
        "timeline": {
            "option": v.timeline_option,
            "rushFeePercent": v.rush_fee_percent,
            "estimatedDays": v.estimated_days,
            "description": v.timeline_description,
        }
        if v.timeline_option
        else None,
        "estimate": serialize_estimate(v) if v.calculated_total is not None else None,
        "estimateAccepted": v.estimate_accepted,
        "serviceAgreementAccepted": v.service_agreement_accepted,
        "isConverted": v.is_converted,
        "convertedAt": iso(v.converted_at),
        "clientId": v.client_id,
        "createdAt": iso(v.created_at),
        "updatedAt": iso(v.updated_at),
    }


def serialize_estimate(v: PricedSelectionMixin) -> dict:
    return {
        "baseCost": money_json(v.base_cost),
        "discountAmount": money_json(v.discount_amount),
        "rushFeeAmount": money_json(v.rush_fee_amount),
        "calculatedTotal": money_json(v.calculated_total),
        "estimateFinalPriceMin": money_json(v.estimate_final_price_min),
        "estimateFinalPriceMax": money_json(v.estimate_final_price_max),
        "isManuallyAdjusted": v.is_manually_adjusted,
        "estimateAccepted": v.estimate_accepted,
    }
