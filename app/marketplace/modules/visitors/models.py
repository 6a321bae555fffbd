from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.marketplace.models import Base


class PricedSelectionMixin:
    """Catalog selections, discount, timeline and the estimate priced from them."""

    # Selections (names from the pricing catalog)
    services: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    industries: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    technologies: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)
    features: Mapped[list | None] = mapped_column(JSON, nullable=True, default=list)

    # Discount
    discount_type: Mapped[str | None] = mapped_column(String(64), nullable=True)
    discount_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    discount_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Timeline
    timeline_option: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rush_fee_percent: Mapped[int | None] = mapped_column(Integer, nullable=True)
    estimated_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    timeline_description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Estimate
    base_cost: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    discount_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    rush_fee_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    calculated_total: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    estimate_final_price_min: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    estimate_final_price_max: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    is_manually_adjusted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    estimate_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    estimate_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)


class Visitor(PricedSelectionMixin, Base):
    __tablename__ = "visitors"
    __table_args__ = (
        Index("idx_visitors_business_email", "business_email"),
        Index("idx_visitors_is_converted", "is_converted"),
        Index("idx_visitors_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    # Contact / business details
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    business_email: Mapped[str] = mapped_column(String(320), nullable=False)
    phone_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    company_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    company_website: Mapped[str | None] = mapped_column(String(512), nullable=True)
    business_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    business_type: Mapped[str | None] = mapped_column(String(128), nullable=True)
    referral_source: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    service_agreement_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    service_agreement_accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)

    # Conversion
    is_converted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    converted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
