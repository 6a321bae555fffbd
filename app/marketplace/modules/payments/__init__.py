"""
Client payments (Stripe Checkout), the tiered payment options shown for a project,
post-checkout verification for visitors, and freelancer payouts.
"""
