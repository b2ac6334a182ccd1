"""OAuth authorization flow for provider connections."""

import logging
import secrets
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.orm import Session

from integrations.exceptions import ProviderError
from integrations.provider_registry import ProviderRegistry, get_provider_registry
from models import Connection
from models.connection import ACTIVE, ERROR
from services.token_manager import TokenManager

logger = logging.getLogger(__name__)


class OAuthFlowError(Exception):
    """The authorization flow could not be completed.

    ``code`` is a short machine-readable reason used in the redirect URL.
    """

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(message)


@dataclass
class AuthorizationResult:
    connection_id: str
    provider_id: str
    metadata: dict


class OAuthService:
    """Service for starting and completing provider authorization."""

    def __init__(
        self,
        provider_registry: Optional[ProviderRegistry] = None,
        token_manager: Optional[TokenManager] = None,
    ):
        self._registry = provider_registry
        self.token_manager = token_manager or TokenManager()

    @property
    def registry(self) -> ProviderRegistry:
        if self._registry is None:
            self._registry = get_provider_registry()
        return self._registry

    def begin_authorization(self, db: Session, provider_id: str, connection_id: str) -> str:
        """Store a fresh state on the connection and return the provider's consent URL.

        Raises:
            ValueError: If the provider is unknown or not configured
            OAuthFlowError: If the connection does not exist for this provider
        """
        provider = self.registry.get_provider(provider_id)
        connection = (
            db.query(Connection)
            .filter_by(id=connection_id, provider_id=provider_id)
            .first()
        )
        if connection is None:
            raise OAuthFlowError("connection_not_found", "Connection not found")

        connection.oauth_state = secrets.token_urlsafe(32)
        db.flush()
        logger.info("Authorization started for connection %s (%s)", connection.id, provider_id)
        return provider.get_authorization_url(connection.oauth_state)

    def complete_authorization(
        self,
        db: Session,
        provider_id: str,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> AuthorizationResult:
        """Exchange the callback code for a token and activate the connection.

        Identity lookup failures are logged and do not block activation.

        Raises:
            OAuthFlowError: On any failure; the connection (when known) is
                marked ``error`` with the reason in ``last_error``.
        """
        connection = None
        if state:
            connection = (
                db.query(Connection)
                .filter_by(oauth_state=state, provider_id=provider_id)
                .first()
            )

        if error:
            raise self._fail(db, connection, "access_denied", f"Authorization was declined: {error}")
        if not code or not state:
            raise self._fail(db, connection, "invalid_request", "Missing authorization code or state")
        if connection is None:
            raise OAuthFlowError("invalid_state", "Unknown or expired authorization state")

        try:
            provider = self.registry.get_provider(provider_id)
        except ValueError as e:
            raise self._fail(db, connection, "provider_unavailable", str(e)) from e

        try:
            provider_token = provider.exchange_code_for_token(code)
        except ProviderError as e:
            logger.warning("Token exchange failed for connection %s: %s", connection.id, e)
            raise self._fail(
                db, connection, "token_exchange_failed", provider.get_error_message(e)
            ) from e

        metadata: dict = {}
        try:
            metadata = provider.fetch_user_info(provider_token) or {}
        except ProviderError as e:
            logger.warning(
                "Could not fetch identity metadata for connection %s: %s", connection.id, e
            )

        self.token_manager.store_token(db, connection.id, provider_id, provider_token, metadata)
        connection.status = ACTIVE
        connection.oauth_state = None
        connection.last_error = None
        connection.consecutive_failures = 0
        db.flush()

        logger.info("Connection %s authorized (%s)", connection.id, provider_id)
        return AuthorizationResult(
            connection_id=connection.id, provider_id=provider_id, metadata=metadata
        )

    @staticmethod
    def _fail(
        db: Session, connection: Optional[Connection], code: str, message: str
    ) -> OAuthFlowError:
        if connection is not None:
            connection.status = ERROR
            connection.oauth_state = None
            connection.last_error = message[:1000]
            db.flush()
        logger.warning("Authorization failed (%s): %s", code, message)
        return OAuthFlowError(code, message)
