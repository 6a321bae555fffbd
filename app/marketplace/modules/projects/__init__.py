"""
Projects and their milestones, client brief documents and client feedback.

Milestone progress and project completion rules live in service.py; the client brief
(a single immutable PDF per project) lives in documents.py.
"""
