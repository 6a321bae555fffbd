"""Moderator accounts managed by administrators."""
