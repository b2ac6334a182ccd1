"""SQLAlchemy ORM models."""

from .account import Account
from .api_call_log import ApiCallLog
from .connection import Connection
from .ingestion_job import IngestionJob
from .oauth_token import OAuthToken
from .provider_account import RawProviderAccount
from .provider_error_log import ProviderErrorLog
from .transaction import Transaction
from .webhook_event import WebhookEvent
from .utils import generate_uuid

__all__ = [
    "Account",
    "ApiCallLog",
    "Connection",
    "IngestionJob",
    "OAuthToken",
    "ProviderErrorLog",
    "RawProviderAccount",
    "Transaction",
    "WebhookEvent",
    "generate_uuid",
]
