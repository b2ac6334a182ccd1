"""OAuth token lifecycle: storage, refresh, expiry and revocation.

The token manager owns every write to ``provider_tokens``. Refreshes are
single-flight per (connection, provider): a process-wide lock serializes
them and the token row is re-read under the lock, so a second sync that
was waiting sees the already-refreshed token instead of spending the
refresh token again.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from integrations.exceptions import (
    ErrorDisposition,
    ProviderAuthError,
    ProviderError,
)
from integrations.parsing_utils import ensure_utc
from integrations.provider_protocol import ProviderToken
from models import OAuthToken
from models.oauth_token import TOKEN_ACTIVE, TOKEN_EXPIRED, TOKEN_REVOKED

logger = logging.getLogger(__name__)

REFRESH_BUFFER = timedelta(minutes=5)

RefreshFn = Callable[[str], ProviderToken]


@dataclass
class TokenResult:
    """Outcome of :meth:`TokenManager.get_valid_access_token`."""

    token: OAuthToken | None = None
    error: ProviderError | None = None
    refreshed: bool = False

    @property
    def ok(self) -> bool:
        return self.token is not None and self.error is None


class TokenManager:
    """Service for OAuth token state per connection."""

    _locks: dict[tuple[str, str], threading.Lock] = {}
    _locks_guard = threading.Lock()

    def __init__(self, refresh_buffer: timedelta = REFRESH_BUFFER):
        self.refresh_buffer = refresh_buffer

    @classmethod
    def _refresh_lock(cls, connection_id: str, provider_id: str) -> threading.Lock:
        key = (connection_id, provider_id)
        with cls._locks_guard:
            lock = cls._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                cls._locks[key] = lock
            return lock

    @staticmethod
    def get_token(db: Session, connection_id: str, provider_id: str) -> OAuthToken | None:
        """Return the token row for a connection, whatever its status."""
        return (
            db.query(OAuthToken)
            .filter_by(connection_id=connection_id, provider_id=provider_id)
            .first()
        )

    @staticmethod
    def get_active_token(db: Session, connection_id: str, provider_id: str) -> OAuthToken | None:
        return (
            db.query(OAuthToken)
            .filter_by(connection_id=connection_id, provider_id=provider_id, status=TOKEN_ACTIVE)
            .first()
        )

    def needs_refresh(self, expires_at: datetime | None, now: datetime | None = None) -> bool:
        """True if the token expires within the refresh buffer.

        Tokens without an expiry are treated as long-lived.
        """
        if expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return ensure_utc(expires_at) - self.refresh_buffer <= now

    @staticmethod
    def get_time_until_expiry(token: OAuthToken, now: datetime | None = None) -> timedelta | None:
        """Time left before expiry (negative once expired), or None if unknown."""
        if token.expires_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        return ensure_utc(token.expires_at) - now

    # ------------------------------------------------------------------
    # Validation / refresh
    # ------------------------------------------------------------------

    def get_valid_access_token(
        self,
        db: Session,
        connection_id: str,
        provider_id: str,
        refresh_fn: RefreshFn,
    ) -> TokenResult:
        """Return a usable token, refreshing it at most once.

        A refreshed token is committed before the refresh lock is released
        so concurrent sessions observe it.

        Args:
            db: Database session
            connection_id: Connection the token belongs to
            provider_id: Provider id (e.g. "xero")
            refresh_fn: Provider call exchanging a refresh token for a new token set

        Returns:
            TokenResult with either the token or a typed error. An error with
            ``REQUIRES_RECONNECT`` disposition means the user must re-authorize.
        """
        token = self.get_active_token(db, connection_id, provider_id)
        if token is None:
            return TokenResult(error=ProviderAuthError(
                "OAuth token not found. Please reconnect your account.",
                provider_name=provider_id,
            ))
        if not self.needs_refresh(token.expires_at):
            return TokenResult(token=token)

        with self._refresh_lock(connection_id, provider_id):
            db.refresh(token)
            if token.status != TOKEN_ACTIVE:
                return TokenResult(error=ProviderAuthError(
                    "OAuth token is no longer active. Please reconnect your account.",
                    provider_name=provider_id,
                ))
            if not self.needs_refresh(token.expires_at):
                logger.info("Token for connection %s already refreshed by another sync", connection_id)
                return TokenResult(token=token)

            if not token.refresh_token:
                if ensure_utc(token.expires_at) > datetime.now(timezone.utc):
                    # Inside the buffer but still usable; nothing to refresh with
                    return TokenResult(token=token)
                token.status = TOKEN_EXPIRED
                db.commit()
                logger.warning(
                    "Token for connection %s expired and has no refresh token", connection_id
                )
                return TokenResult(error=ProviderAuthError(
                    "Access token expired and no refresh token available. Please reconnect.",
                    provider_name=provider_id,
                ))

            logger.info("Refreshing token for connection %s (%s)", connection_id, provider_id)
            try:
                new_token = refresh_fn(token.refresh_token)
            except ProviderError as e:
                return self._refresh_failed(db, token, e)

            self._apply_refresh(token, new_token)
            db.commit()
            logger.info("Token refreshed for connection %s", connection_id)
            return TokenResult(token=token, refreshed=True)

    def _refresh_failed(self, db: Session, token: OAuthToken, error: ProviderError) -> TokenResult:
        # invalid_grant comes back as HTTP 400: the refresh token itself is dead
        if error.disposition == ErrorDisposition.REQUIRES_RECONNECT or error.error_code == "invalid_grant":
            token.status = TOKEN_EXPIRED
            db.commit()
            logger.warning(
                "Token refresh rejected for connection %s: %s", token.connection_id, error
            )
            return TokenResult(error=ProviderAuthError(
                "Token refresh was rejected. Please reconnect your account.",
                provider_name=token.provider_id,
                status_code=error.status_code,
                error_code=error.error_code,
            ))
        logger.warning(
            "Token refresh failed for connection %s (will retry on next sync): %s",
            token.connection_id, error,
        )
        return TokenResult(error=error)

    @staticmethod
    def _apply_refresh(token: OAuthToken, new_token: ProviderToken) -> None:
        now = datetime.now(timezone.utc)
        token.access_token = new_token.access_token
        # Keep the prior refresh token when the provider does not rotate it
        token.refresh_token = new_token.refresh_token or token.refresh_token
        token.expires_at = new_token.expires_at
        token.token_type = new_token.token_type or token.token_type
        if new_token.scopes:
            token.scopes = list(new_token.scopes)
        token.last_refreshed_at = now
        token.updated_at = now

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    @staticmethod
    def store_token(
        db: Session,
        connection_id: str,
        provider_id: str,
        provider_token: ProviderToken,
        metadata: dict | None = None,
    ) -> OAuthToken:
        """Insert or replace the token for a connection (conflict key: connection, provider)."""
        token = TokenManager.get_token(db, connection_id, provider_id)
        if token is None:
            token = OAuthToken(connection_id=connection_id, provider_id=provider_id)
            db.add(token)
        token.access_token = provider_token.access_token
        token.refresh_token = provider_token.refresh_token
        token.expires_at = provider_token.expires_at
        token.token_type = provider_token.token_type or "Bearer"
        token.scopes = list(provider_token.scopes)
        token.provider_metadata = dict(metadata or {})
        token.status = TOKEN_ACTIVE
        db.flush()
        logger.info("Token stored for connection %s (%s)", connection_id, provider_id)
        return token

    @staticmethod
    def update_token_metadata(
        db: Session, connection_id: str, provider_id: str, metadata: dict
    ) -> OAuthToken | None:
        """Merge keys into the token's provider metadata."""
        token = TokenManager.get_token(db, connection_id, provider_id)
        if token is None:
            return None
        token.provider_metadata = {**(token.provider_metadata or {}), **metadata}
        db.flush()
        return token

    @staticmethod
    def revoke_token(db: Session, connection_id: str, provider_id: str) -> bool:
        token = TokenManager.get_token(db, connection_id, provider_id)
        if token is None:
            return False
        token.status = TOKEN_REVOKED
        db.flush()
        logger.info("Token revoked for connection %s (%s)", connection_id, provider_id)
        return True

    @staticmethod
    def mark_used(token: OAuthToken, when: datetime | None = None) -> None:
        token.last_used_at = when or datetime.now(timezone.utc)
