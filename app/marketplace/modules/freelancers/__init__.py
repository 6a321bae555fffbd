"""Freelancer profiles and the admin review of freelancer registrations."""
