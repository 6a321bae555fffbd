from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.marketplace.models import Base

if TYPE_CHECKING:
    from app.marketplace.models import User
    from app.marketplace.modules.projects.models import Project


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("idx_payments_project_id", "project_id"),
        Index("idx_payments_client_id", "client_id"),
        Index("idx_payments_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    client_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), nullable=False, default="usd")
    payment_option: Mapped[str | None] = mapped_column(String(16), nullable=True)  # "25", "50", "100" or None for custom
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")  # PENDING, SUCCEEDED, FAILED, CANCELED

    checkout_session_id: Mapped[str | None] = mapped_column(String(255), nullable=True, unique=True)
    payment_intent_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    customer_email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    project: Mapped["Project | None"] = relationship("Project", lazy="selectin")
    client: Mapped["User | None"] = relationship("User", lazy="selectin")


class FreelancerPayout(Base):
    __tablename__ = "freelancer_payouts"
    __table_args__ = (
        Index("idx_freelancer_payouts_freelancer_id", "freelancer_id"),
        Index("idx_freelancer_payouts_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    freelancer_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    project_id: Mapped[int | None] = mapped_column(ForeignKey("projects.id", ondelete="SET NULL"), nullable=True)
    milestone_id: Mapped[int | None] = mapped_column(ForeignKey("milestones.id", ondelete="SET NULL"), nullable=True)

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    payout_type: Mapped[str] = mapped_column(String(32), nullable=False, default="MILESTONE")  # MILESTONE, PROJECT, BONUS
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="PENDING")  # PENDING, PAID, CANCELED
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=False), nullable=True)
    created_by_user_id: Mapped[int | None] = mapped_column(ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False, default=datetime.utcnow)

    freelancer: Mapped["User"] = relationship("User", foreign_keys=[freelancer_id], lazy="selectin")
    project: Mapped["Project | None"] = relationship("Project", lazy="selectin")
