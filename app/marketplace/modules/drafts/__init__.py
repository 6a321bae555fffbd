"""
Project drafts for signed-in clients.

A draft walks the same priced steps as the visitor funnel (services through timeline),
but is owned by an existing client account. Finalizing an accepted draft opens a Project.
"""
