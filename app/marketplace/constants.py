"""
Central constants for the marketplace application.
"""
from __future__ import annotations

from decimal import Decimal

# Role keys as stored in roles.key, and the role claim carried in access tokens.
ROLE_ADMIN = "admin"
ROLE_MODERATOR = "moderator"
ROLE_FREELANCER = "freelancer"
ROLE_CLIENT = "client"

ROLE_CLAIMS = {
    ROLE_ADMIN: "ADMIN",
    ROLE_MODERATOR: "MODERATOR",
    ROLE_FREELANCER: "FREELANCER",
    ROLE_CLIENT: "CLIENT",
}

# Highest first; a user holding several roles is treated as the first match.
ROLE_PRECEDENCE = (ROLE_ADMIN, ROLE_MODERATOR, ROLE_FREELANCER, ROLE_CLIENT)

ROLE_NAMES = {
    ROLE_ADMIN: "Administrator",
    ROLE_MODERATOR: "Moderator",
    ROLE_FREELANCER: "Freelancer",
    ROLE_CLIENT: "Client",
}

PERMISSIONS = {
    "admin.view": "Admin: view dashboard",
    "audit.view": "Audit: view trail",
    "visitors.view": "Visitors: view",
    "visitors.edit": "Visitors: edit",
    "visitors.delete": "Visitors: delete",
    "pricing.edit": "Pricing: manage catalog",
    "projects.view_all": "Projects: view all",
    "projects.edit": "Projects: edit",
    "projects.own": "Projects: view own",
    "projects.assigned": "Projects: view assigned",
    "milestones.edit": "Milestones: create and edit",
    "milestones.update": "Milestones: update assigned",
    "bids.place": "Bids: place",
    "bids.view_all": "Bids: view all",
    "bids.review": "Bids: review",
    "freelancers.view": "Freelancers: view",
    "freelancers.review": "Freelancers: accept or trash",
    "freelancers.edit": "Freelancers: create and edit",
    "moderators.manage": "Moderators: manage",
    "clients.view": "Clients: view profiles",
    "payments.view_all": "Payments: view all",
    "payments.pay": "Payments: pay for own projects",
    "payouts.manage": "Payouts: manage",
    "payouts.view_own": "Payouts: view own",
    "feedback.submit": "Feedback: submit",
}

ROLE_PERMISSIONS: dict[str, tuple[str, ...]] = {
    ROLE_ADMIN: tuple(PERMISSIONS),
    ROLE_MODERATOR: (
        "admin.view",
        "visitors.view",
        "visitors.edit",
        "projects.view_all",
        "projects.edit",
        "milestones.edit",
        "bids.view_all",
        "bids.review",
        "freelancers.view",
        "freelancers.review",
        "clients.view",
        "payments.view_all",
    ),
    ROLE_FREELANCER: (
        "projects.assigned",
        "milestones.update",
        "bids.place",
        "payouts.view_own",
    ),
    ROLE_CLIENT: (
        "projects.own",
        "payments.pay",
        "feedback.submit",
    ),
}

# Visitor onboarding
DISCOUNT_TYPES = {
    "STARTUP_FOUNDER": 10,
    "VETERAN_OWNED_BUSINESS": 15,
    "NONPROFIT_ORGANIZATION": 15,
    "NOT_ELIGIBLE": 0,
}

TIMELINE_OPTIONS = {
    "STANDARD": {"rush_fee_percent": 0, "estimated_days": 90},
    "PRIORITY": {"rush_fee_percent": 15, "estimated_days": 60},
    "ACCELERATED": {"rush_fee_percent": 25, "estimated_days": 45},
    "RAPID": {"rush_fee_percent": 35, "estimated_days": 30},
    "FAST_TRACK": {"rush_fee_percent": 50, "estimated_days": 20},
}

ESTIMATE_RANGE_LOW = Decimal("0.90")
ESTIMATE_RANGE_HIGH = Decimal("1.10")

# Projects and milestones
PROJECT_STATUSES = ("PENDING", "ONGOING", "COMPLETED", "CANCELLED")
MILESTONE_STATUSES = ("PLANNED", "IN_PROGRESS", "BLOCKED", "COMPLETED")
MILESTONE_PRIORITIES = ("LOW", "MEDIUM", "HIGH", "CRITICAL")
DIFFICULTY_LEVELS = ("EASY", "MEDIUM", "HARD")

CLIENT_BRIEF_MAX_BYTES = 5 * 1024 * 1024

# Bids and freelancers
BID_STATUSES = ("PENDING", "ACCEPTED", "REJECTED", "WITHDRAWN")
FREELANCER_STATUSES = ("PENDING", "ACCEPTED", "TRASHED")

# Payments: (option value, fraction of total, label)
PAYMENT_TIERS = (
    ("25", Decimal("0.25"), "25% Deposit"),
    ("50", Decimal("0.50"), "50% Payment"),
    ("100", Decimal("1.00"), "Full Payment (100%)"),
)
PAYMENT_STATUSES = ("PENDING", "SUCCEEDED", "FAILED", "CANCELED")
PAYOUT_STATUSES = ("PENDING", "PAID", "CANCELED")
PAYOUT_TYPES = ("MILESTONE", "PROJECT", "BONUS")

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100
