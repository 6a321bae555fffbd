from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from sqlalchemy import func

from app.marketplace.audit import record_event
from app.marketplace.errors import ConflictError, NotFoundError, ValidationError
from app.marketplace.modules.pricing.models import Feature, Industry, ServiceCategory, Technology
from app.marketplace.utils import clean_str, money, money_json, string_list, to_decimal

if TYPE_CHECKING:
    from sqlalchemy.orm import Session
    from app.marketplace.models import User


@dataclass(frozen=True)
class CatalogKind:
    key: str
    model: type
    name_attr: str
    price_attr: str
    list_attr: str | None = None


KINDS: dict[str, CatalogKind] = {
    "categories": CatalogKind("categories", ServiceCategory, "category", "base_price", "child_services"),
    "industries": CatalogKind("industries", Industry, "category", "base_price", "sub_industries"),
    "technologies": CatalogKind("technologies", Technology, "technology", "additional_cost"),
    "features": CatalogKind("features", Feature, "feature", "additional_cost"),
}

# JSON field names per attribute
_JSON_NAMES = {
    "category": "category",
    "technology": "technology",
    "feature": "feature",
    "base_price": "basePrice",
    "additional_cost": "additionalCost",
    "child_services": "childServices",
    "sub_industries": "subIndustries",
}


def get_kind(key: str) -> CatalogKind:
    kind = KINDS.get(key)
    if kind is None:
        raise NotFoundError(f"Unknown catalog section: {key}")
    return kind


def serialize_item(kind: CatalogKind, item: Any) -> dict:
    out: dict[str, Any] = {
        "id": item.id,
        _JSON_NAMES[kind.name_attr]: getattr(item, kind.name_attr),
        _JSON_NAMES[kind.price_attr]: money_json(getattr(item, kind.price_attr)),
    }
    if hasattr(item, "description"):
        out["description"] = item.description
    if kind.list_attr:
        out[_JSON_NAMES[kind.list_attr]] = getattr(item, kind.list_attr) or []
    out["updatedAt"] = item.updated_at.isoformat() if item.updated_at else None
    return out


def _parse_price(value: Any, field: str) -> Decimal:
    try:
        price = to_decimal(value, field=field)
    except ValueError as e:
        raise ValidationError(str(e))
    if price < 0:
        raise ValidationError(f"{field} must be zero or greater.")
    return money(price)


def list_catalog(s: "Session") -> dict[str, list[dict]]:
    out: dict[str, list[dict]] = {}
    for key, kind in KINDS.items():
        name_col = getattr(kind.model, kind.name_attr)
        rows = s.query(kind.model).order_by(name_col.asc()).all()
        out[key] = [serialize_item(kind, r) for r in rows]
    return out


def create_item(s: "Session", kind: CatalogKind, payload: dict, user: "User"):
    json_name = _JSON_NAMES[kind.name_attr]
    name = clean_str(payload.get(json_name))
    if not name:
        raise ValidationError(f"{json_name} is required.")
    name_col = getattr(kind.model, kind.name_attr)
    if s.query(kind.model).filter(func.lower(name_col) == name.lower()).first():
        raise ConflictError(f"{name} already exists.")

    now = datetime.utcnow()
    item = kind.model(created_at=now, updated_at=now)
    setattr(item, kind.name_attr, name)
    setattr(item, kind.price_attr, _parse_price(payload.get(_JSON_NAMES[kind.price_attr]), _JSON_NAMES[kind.price_attr]))
    if hasattr(item, "description"):
        item.description = clean_str(payload.get("description"))
    if kind.list_attr:
        try:
            setattr(item, kind.list_attr, string_list(payload.get(_JSON_NAMES[kind.list_attr]), field=_JSON_NAMES[kind.list_attr]))
        except ValueError as e:
            raise ValidationError(str(e))
    s.add(item)
    s.flush()
    record_event(
        s,
        actor=user,
        action="pricing.create",
        entity_type=kind.model.__name__,
        entity_id=str(item.id),
        metadata={"name": name, "price": str(getattr(item, kind.price_attr))},
    )
    return item


def update_item(s: "Session", kind: CatalogKind, item_id: int, payload: dict, user: "User"):
    item = s.get(kind.model, item_id)
    if item is None:
        raise NotFoundError("Catalog item not found.")

    changes: dict[str, dict[str, str | None]] = {}
    price_key = _JSON_NAMES[kind.price_attr]
    if price_key in payload:
        new_price = _parse_price(payload.get(price_key), price_key)
        old_price = getattr(item, kind.price_attr)
        if money(old_price) != new_price:
            changes[price_key] = {"old": str(old_price), "new": str(new_price)}
            setattr(item, kind.price_attr, new_price)
    if "description" in payload and hasattr(item, "description"):
        new_desc = clean_str(payload.get("description"))
        if new_desc != item.description:
            changes["description"] = {"old": item.description, "new": new_desc}
            item.description = new_desc
    if kind.list_attr and _JSON_NAMES[kind.list_attr] in payload:
        try:
            new_list = string_list(payload.get(_JSON_NAMES[kind.list_attr]), field=_JSON_NAMES[kind.list_attr])
        except ValueError as e:
            raise ValidationError(str(e))
        setattr(item, kind.list_attr, new_list)
        changes[_JSON_NAMES[kind.list_attr]] = {"old": None, "new": ", ".join(new_list)}

    if changes:
        item.updated_at = datetime.utcnow()
        record_event(
            s,
            actor=user,
            action="pricing.update",
            entity_type=kind.model.__name__,
            entity_id=str(item.id),
            metadata={"changes": changes},
        )
    return item


def delete_item(s: "Session", kind: CatalogKind, item_id: int, user: "User") -> None:
    item = s.get(kind.model, item_id)
    if item is None:
        raise NotFoundError("Catalog item not found.")
    record_event(
        s,
        actor=user,
        action="pricing.delete",
        entity_type=kind.model.__name__,
        entity_id=str(item.id),
        metadata={"name": getattr(item, kind.name_attr)},
    )
    s.delete(item)


def pricing_stats(s: "Session") -> dict:
    def _avg(col) -> float:
        v = s.query(func.avg(col)).scalar()
        return money_json(Decimal(str(v))) if v is not None else 0.0

    return {
        "categories": {"count": s.query(ServiceCategory).count(), "averageBasePrice": _avg(ServiceCategory.base_price)},
        "industries": {"count": s.query(Industry).count(), "averageBasePrice": _avg(Industry.base_price)},
        "technologies": {"count": s.query(Technology).count(), "averageCost": _avg(Technology.additional_cost)},
        "features": {"count": s.query(Feature).count(), "averageCost": _avg(Feature.additional_cost)},
    }


def price_lookup(s: "Session") -> dict[str, dict[str, Decimal]]:
    """Lower-cased name -> price, per catalog section. Used by the visitor estimate."""
    out: dict[str, dict[str, Decimal]] = {}
    for key, kind in KINDS.items():
        rows = s.query(kind.model).all()
        out[key] = {getattr(r, kind.name_attr).strip().lower(): money(getattr(r, kind.price_attr)) for r in rows}
    return out
