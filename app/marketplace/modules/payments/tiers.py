"""
Tiered payment options for a project.

Every option is a cumulative target: "25" means a quarter of the project total has been
paid in all, not a quarter on top of earlier payments.
"""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from app.marketplace.constants import PAYMENT_TIERS
from app.marketplace.utils import money, money_json


@dataclass(frozen=True)
class PaymentOption:
    value: str
    label: str
    percent: int
    amount: Decimal
    amount_paid: Decimal
    remaining: Decimal
    is_paid: bool

    def to_dict(self) -> dict:
        return {
            "value": self.value,
            "label": self.label,
            "percent": self.percent,
            "amount": money_json(self.amount),
            "amountPaid": money_json(self.amount_paid),
            "remaining": money_json(self.remaining),
            "isPaid": self.is_paid,
        }


@dataclass(frozen=True)
class PaymentSummary:
    total: Decimal
    paid: Decimal
    remaining: Decimal
    is_fully_paid: bool
    options: tuple[PaymentOption, ...]
    default_option: str

    def option(self, value: str) -> PaymentOption | None:
        for opt in self.options:
            if opt.value == value:
                return opt
        return None

    def to_dict(self) -> dict:
        return {
            "totalAmount": money_json(self.total),
            "totalPaid": money_json(self.paid),
            "remainingAmount": money_json(self.remaining),
            "isFullyPaid": self.is_fully_paid,
            "defaultOption": self.default_option,
            "options": [o.to_dict() for o in self.options],
        }


def compute_payment_options(total: Decimal | int | float, paid: Decimal | int | float) -> PaymentSummary:
    total_d = max(money(total), Decimal("0.00"))
    paid_d = max(money(paid), Decimal("0.00"))

    options: list[PaymentOption] = []
    for value, fraction, label in PAYMENT_TIERS:
        amount = money(total_d * fraction)
        options.append(
            PaymentOption(
                value=value,
                label=label,
                percent=int(fraction * 100),
                amount=amount,
                amount_paid=min(paid_d, amount),
                remaining=max(Decimal("0.00"), amount - paid_d),
                is_paid=paid_d >= amount,
            )
        )

    default = next((o.value for o in options if not o.is_paid), "100")
    return PaymentSummary(
        total=total_d,
        paid=paid_d,
        remaining=max(Decimal("0.00"), total_d - paid_d),
        is_fully_paid=paid_d >= total_d,
        options=tuple(options),
        default_option=default,
    )
