"""
Visitor onboarding funnel.

A visitor is a prospective client captured before registration/payment. Each onboarding
step writes to the same row; the estimate is priced from the catalog. Once the same email
registers (or pays) as a client, the visitor is converted into a Project.
"""
