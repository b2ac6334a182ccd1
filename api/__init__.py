"""API route handlers."""
from . import connections, oauth, providers, sync, webhooks

__all__ = ["connections", "oauth", "providers", "sync", "webhooks"]
