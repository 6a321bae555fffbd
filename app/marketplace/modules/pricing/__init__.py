"""Pricing catalog: service categories, industries, technologies and features."""
