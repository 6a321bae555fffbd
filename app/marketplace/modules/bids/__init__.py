"""Freelancer bids on projects and their review by staff."""
