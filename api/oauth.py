"""OAuth authorize/callback endpoints for provider connections."""

import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from config import settings
from database import get_db
from integrations.provider_registry import ALL_PROVIDER_IDS
from services.oauth_service import OAuthFlowError, OAuthService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/connections", tags=["oauth"])


def get_oauth_service() -> OAuthService:
    """Get the OAuth service (dependency for injection in tests)."""
    return OAuthService()


def _app_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(
        url=f"{settings.APP_BASE_URL}/connections?{urlencode(params)}",
        status_code=302,
    )


@router.get("/{provider}/authorize")
def authorize(
    provider: str,
    connection_id: str,
    db: Session = Depends(get_db),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    """Redirect the user to the provider's consent screen."""
    if provider not in ALL_PROVIDER_IDS:
        raise HTTPException(status_code=400, detail=f"Unknown provider: {provider}")
    try:
        url = oauth_service.begin_authorization(db, provider, connection_id)
    except ValueError as e:
        logger.warning("Authorization unavailable for %s: %s", provider, e)
        raise HTTPException(status_code=400, detail=f"Provider {provider} is not configured")
    except OAuthFlowError:
        raise HTTPException(status_code=404, detail="Connection not found")
    db.commit()
    return RedirectResponse(url=url, status_code=302)


@router.get("/{provider}/callback")
def callback(
    provider: str,
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    db: Session = Depends(get_db),
    oauth_service: OAuthService = Depends(get_oauth_service),
):
    """Complete authorization and send the user back to the app.

    Every outcome is a redirect; failures carry ``error`` and ``message``
    query parameters instead of an error page.
    """
    if provider not in ALL_PROVIDER_IDS:
        return _app_redirect(error="unknown_provider", message=f"Unknown provider: {provider}")

    try:
        oauth_service.complete_authorization(db, provider, code, state, error)
    except OAuthFlowError as e:
        # Persist the connection's error state
        db.commit()
        return _app_redirect(error=e.code, message=e.message)
    except Exception:
        logger.error("Unexpected error during %s OAuth callback", provider, exc_info=True)
        db.rollback()
        return _app_redirect(
            error="unexpected_error", message="An unexpected error occurred while connecting."
        )

    db.commit()
    return _app_redirect(success="true", provider=provider)
