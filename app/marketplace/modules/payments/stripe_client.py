from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any

import stripe

logger = logging.getLogger(__name__)


class PaymentGatewayError(RuntimeError):
    pass


class WebhookSignatureError(PaymentGatewayError):
    pass


@dataclass(frozen=True)
class StripeGateway:
    """
    Thin wrapper over the stripe library: the few calls the marketplace makes, with
    Stripe errors normalized to PaymentGatewayError.
    """

    api_key: str
    currency: str = "usd"
    webhook_secret: str = ""

    def _configure(self) -> None:
        if not self.api_key:
            raise PaymentGatewayError("STRIPE_SECRET_KEY is not configured.")
        stripe.api_key = self.api_key

    def create_checkout_session(
        self,
        *,
        amount_cents: int,
        product_name: str,
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        self._configure()
        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": self.currency,
                            "product_data": {"name": product_name},
                            "unit_amount": amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                success_url=success_url,
                cancel_url=cancel_url,
                customer_email=customer_email,
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe checkout session failed: {e.user_message or e}") from e
        logger.info("Stripe checkout session created id=%s amount_cents=%s", session["id"], amount_cents)
        return {"id": session["id"], "url": session.get("url")}

    def retrieve_checkout_session(self, session_id: str) -> dict[str, Any]:
        self._configure()
        try:
            session = stripe.checkout.Session.retrieve(session_id)
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe session lookup failed: {e.user_message or e}") from e
        return {
            "id": session["id"],
            "payment_status": session.get("payment_status"),
            "amount_total": session.get("amount_total"),
            "payment_intent": session.get("payment_intent"),
            "customer_email": (session.get("customer_details") or {}).get("email") or session.get("customer_email"),
            "metadata": dict(session.get("metadata") or {}),
        }

    def email_has_successful_payment(self, email: str) -> bool:
        """Look for a succeeded payment intent or a paid charge on the customer with this email."""
        self._configure()
        try:
            customers = stripe.Customer.list(email=email, limit=1)
            if not customers.data:
                return False
            customer_id = customers.data[0]["id"]
            intents = stripe.PaymentIntent.list(customer=customer_id, limit=10)
            if any(pi.get("status") == "succeeded" for pi in intents.data):
                return True
            charges = stripe.Charge.list(customer=customer_id, limit=10)
            return any(bool(ch.get("paid")) for ch in charges.data)
        except stripe.StripeError as e:
            raise PaymentGatewayError(f"Stripe payment history lookup failed: {e.user_message or e}") from e

    def construct_event(self, payload: bytes, signature: str) -> dict[str, Any]:
        if not self.webhook_secret:
            raise WebhookSignatureError("STRIPE_WEBHOOK_SECRET is not configured.")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError("Invalid Stripe signature.") from e
        except ValueError as e:
            raise WebhookSignatureError("Invalid webhook payload.") from e
        # Signature verified; work with plain JSON from here on.
        return json.loads(payload)


def gateway_from_config(config: dict) -> StripeGateway:
    return StripeGateway(
        api_key=(config.get("STRIPE_SECRET_KEY") or "").strip(),
        currency=(config.get("PAYMENT_CURRENCY") or "usd").strip().lower(),
        webhook_secret=(config.get("STRIPE_WEBHOOK_SECRET") or "").strip(),
    )


def get_gateway() -> StripeGateway:
    from flask import current_app

    gateway = current_app.extensions.get("payment_gateway")
    if gateway is None:
        gateway = gateway_from_config(current_app.config)
        current_app.extensions["payment_gateway"] = gateway
    return gateway
