"""Feature modules: each owns its models, service functions and HTTP blueprints."""
