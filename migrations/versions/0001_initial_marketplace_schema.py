"""initial marketplace schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.Column("updated_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
    ]


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp())


def _money(name: str, nullable: bool = True, default: str | None = None) -> sa.Column:
    kwargs = {"server_default": default} if default is not None else {}
    return sa.Column(name, sa.Numeric(12, 2), nullable=nullable, **kwargs)


def upgrade() -> None:
    # Accounts and RBAC
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(320), nullable=False, unique=True),
        sa.Column("username", sa.String(64), nullable=True, unique=True),
        sa.Column("full_name", sa.String(255), nullable=True),
        sa.Column("phone", sa.String(64), nullable=True),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("email_verified_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("last_login_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(64), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        _created_at(),
    )
    op.create_table(
        "permissions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("key", sa.String(128), nullable=False, unique=True),
        sa.Column("name", sa.String(128), nullable=False),
        _created_at(),
    )
    op.create_table(
        "user_roles",
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "role_permissions",
        sa.Column("role_id", sa.Integer(), sa.ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("permission_id", sa.Integer(), sa.ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
    )
    op.create_table(
        "email_otps",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("purpose", sa.String(32), nullable=False),
        sa.Column("code_hash", sa.String(255), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("expires_at", sa.DateTime(timezone=False), nullable=False),
        sa.Column("consumed_at", sa.DateTime(timezone=False), nullable=True),
        _created_at(),
    )
    op.create_index("idx_email_otps_user_purpose", "email_otps", ["user_id", "purpose"])
    op.create_table(
        "audit_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        _created_at(),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("actor_user_email", sa.String(320), nullable=True),
        sa.Column("action", sa.String(128), nullable=False),
        sa.Column("entity_type", sa.String(128), nullable=True),
        sa.Column("entity_id", sa.String(128), nullable=True),
        sa.Column("reason", sa.String(512), nullable=True),
        sa.Column("metadata_json", sa.Text(), nullable=True),
        sa.Column("client_ip", sa.String(64), nullable=True),
        sa.UniqueConstraint("request_id", "id", name="uq_audit_request_id_id"),
    )

    # Pricing catalog
    op.create_table(
        "pricing_service_categories",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("category", sa.String(255), nullable=False, unique=True),
        _money("base_price", nullable=False, default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("child_services", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "pricing_industries",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("category", sa.String(255), nullable=False, unique=True),
        _money("base_price", nullable=False, default="0"),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sub_industries", sa.JSON(), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "pricing_technologies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("technology", sa.String(255), nullable=False, unique=True),
        _money("additional_cost", nullable=False, default="0"),
        *_timestamps(),
    )
    op.create_table(
        "pricing_features",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("feature", sa.String(255), nullable=False, unique=True),
        _money("additional_cost", nullable=False, default="0"),
        *_timestamps(),
    )

    # Visitor onboarding
    op.create_table(
        "visitors",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_name", sa.String(255), nullable=False),
        sa.Column("business_email", sa.String(320), nullable=False),
        sa.Column("phone_number", sa.String(64), nullable=True),
        sa.Column("company_name", sa.String(255), nullable=True),
        sa.Column("company_website", sa.String(512), nullable=True),
        sa.Column("business_address", sa.Text(), nullable=True),
        sa.Column("business_type", sa.String(128), nullable=True),
        sa.Column("referral_source", sa.String(128), nullable=True),
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("services", sa.JSON(), nullable=True),
        sa.Column("industries", sa.JSON(), nullable=True),
        sa.Column("technologies", sa.JSON(), nullable=True),
        sa.Column("features", sa.JSON(), nullable=True),
        sa.Column("discount_type", sa.String(64), nullable=True),
        sa.Column("discount_percent", sa.Integer(), nullable=True),
        sa.Column("discount_notes", sa.Text(), nullable=True),
        sa.Column("timeline_option", sa.String(64), nullable=True),
        sa.Column("rush_fee_percent", sa.Integer(), nullable=True),
        sa.Column("estimated_days", sa.Integer(), nullable=True),
        sa.Column("timeline_description", sa.Text(), nullable=True),
        _money("base_cost"),
        _money("discount_amount"),
        _money("rush_fee_amount"),
        _money("calculated_total"),
        _money("estimate_final_price_min"),
        _money("estimate_final_price_max"),
        sa.Column("is_manually_adjusted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estimate_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("estimate_accepted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("service_agreement_accepted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("service_agreement_accepted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("is_converted", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("converted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
        sa.Column("deleted_at", sa.DateTime(timezone=False), nullable=True),
    )
    op.create_index("idx_visitors_business_email", "visitors", ["business_email"])
    op.create_index("idx_visitors_is_converted", "visitors", ["is_converted"])
    op.create_index("idx_visitors_created_at", "visitors", ["created_at"])

    # Freelancers
    op.create_table(
        "freelancer_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("niche", sa.String(255), nullable=True),
        sa.Column("years_of_experience", sa.Integer(), nullable=True),
        sa.Column("kpi_rank", sa.String(64), nullable=True),
        sa.Column("skills", sa.JSON(), nullable=True),
        sa.Column("portfolio_url", sa.String(512), nullable=True),
        sa.Column("bio", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("accepted_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("trashed_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_freelancer_profiles_status", "freelancer_profiles", ["status"])

    # Projects
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("visitor_id", sa.Integer(), sa.ForeignKey("visitors.id", ondelete="SET NULL"), nullable=True),
        sa.Column("moderator_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("title", sa.String(255), nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("niche", sa.String(255), nullable=True),
        sa.Column("difficulty_level", sa.String(16), nullable=False, server_default="MEDIUM"),
        sa.Column("project_type", sa.String(128), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("deadline", sa.DateTime(timezone=False), nullable=True),
        _money("total_amount", nullable=False, default="0"),
        _money("estimate_min"),
        _money("estimate_max"),
        sa.Column("accepting_bids", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("discord_chat_url", sa.String(512), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_projects_client_id", "projects", ["client_id"])
    op.create_index("idx_projects_status", "projects", ["status"])
    op.create_table(
        "project_freelancers",
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), primary_key=True),
        sa.Column("user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
        _created_at(),
    )
    op.create_table(
        "milestones",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("assigned_freelancer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("deadline", sa.DateTime(timezone=False), nullable=True),
        sa.Column("progress", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(32), nullable=False, server_default="PLANNED"),
        sa.Column("priority", sa.String(16), nullable=False, server_default="MEDIUM"),
        sa.Column("estimated_hours", sa.Numeric(8, 2), nullable=True),
        sa.Column("actual_hours", sa.Numeric(8, 2), nullable=True),
        sa.Column("deliverable_url", sa.String(512), nullable=True),
        sa.Column("is_milestone_completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("started_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_milestones_project_id", "milestones", ["project_id"])
    op.create_index("idx_milestones_assigned_freelancer_id", "milestones", ["assigned_freelancer_id"])
    op.create_table(
        "client_brief_documents",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("storage_key", sa.Text(), nullable=False),
        sa.Column("original_filename", sa.String(255), nullable=False),
        sa.Column("content_type", sa.String(128), nullable=False, server_default="application/pdf"),
        sa.Column("size_bytes", sa.Integer(), nullable=False),
        sa.Column("sha256", sa.String(64), nullable=False),
        sa.Column("page_count", sa.Integer(), nullable=True),
        sa.Column("uploaded_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("uploaded_at", sa.DateTime(timezone=False), nullable=False, server_default=sa.func.current_timestamp()),
        sa.UniqueConstraint("project_id", name="uq_client_brief_documents_project_id"),
    )
    op.create_table(
        "project_feedback",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("rating", sa.Integer(), nullable=False),
        sa.Column("comment", sa.Text(), nullable=True),
        _created_at(),
    )
    op.create_index("idx_project_feedback_project_id", "project_feedback", ["project_id"])

    # Bids
    op.create_table(
        "bids",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("freelancer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        _money("bid_amount", nullable=False),
        sa.Column("proposal_text", sa.Text(), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("reviewed_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("review_reason", sa.Text(), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_bids_project_id", "bids", ["project_id"])
    op.create_index("idx_bids_freelancer_id", "bids", ["freelancer_id"])
    op.create_index("idx_bids_status", "bids", ["status"])

    # Payments and payouts
    op.create_table(
        "payments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
        sa.Column("client_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        _money("amount", nullable=False),
        sa.Column("currency", sa.String(8), nullable=False, server_default="usd"),
        sa.Column("payment_option", sa.String(16), nullable=True),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("checkout_session_id", sa.String(255), nullable=True, unique=True),
        sa.Column("payment_intent_id", sa.String(255), nullable=True),
        sa.Column("customer_email", sa.String(320), nullable=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=False), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_payments_project_id", "payments", ["project_id"])
    op.create_index("idx_payments_client_id", "payments", ["client_id"])
    op.create_index("idx_payments_status", "payments", ["status"])
    op.create_table(
        "freelancer_payouts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("freelancer_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="SET NULL"), nullable=True),
        sa.Column("milestone_id", sa.Integer(), sa.ForeignKey("milestones.id", ondelete="SET NULL"), nullable=True),
        _money("amount", nullable=False),
        sa.Column("payout_type", sa.String(32), nullable=False, server_default="MILESTONE"),
        sa.Column("status", sa.String(32), nullable=False, server_default="PENDING"),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("reference", sa.String(255), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=False), nullable=True),
        sa.Column("created_by_user_id", sa.Integer(), sa.ForeignKey("users.id", ondelete="SET NULL"), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_freelancer_payouts_freelancer_id", "freelancer_payouts", ["freelancer_id"])
    op.create_index("idx_freelancer_payouts_status", "freelancer_payouts", ["status"])


def downgrade() -> None:
    for table in (
        "freelancer_payouts",
        "payments",
        "bids",
        "project_feedback",
        "client_brief_documents",
        "milestones",
        "project_freelancers",
        "projects",
        "freelancer_profiles",
        "visitors",
        "pricing_features",
        "pricing_technologies",
        "pricing_industries",
        "pricing_service_categories",
        "audit_events",
        "email_otps",
        "role_permissions",
        "user_roles",
        "permissions",
        "roles",
        "users",
    ):
        op.drop_table(table)
