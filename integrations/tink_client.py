"""Tink open-banking client implementing the BankingProvider protocol.

Uses Tink Link for authorization and the Data API v2 for accounts and
transactions. Tink pages with an opaque ``nextPageToken`` (empty string on
the last page) and encodes amounts as ``{unscaledValue, scale}``.
"""

import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from urllib.parse import urlencode

import httpx

from config import settings
from integrations.exceptions import ProviderAuthError, ProviderDataError, ProviderError
from integrations.http_client import CallListener, RateLimitedClient
from integrations.pagination import DEFAULT_MAX_PAGES, Page, paginate
from integrations.parsing_utils import ensure_utc, parse_iso_datetime, parse_scaled_amount
from integrations.provider_protocol import (
    FetchOptions,
    ProviderAccount,
    ProviderCredentials,
    ProviderToken,
    ProviderTransaction,
)

logger = logging.getLogger(__name__)

AUTH_URL = "https://link.tink.com/1.0/transactions/connect-accounts"
API_BASE_URL = "https://api.tink.com"
TOKEN_PATH = "/api/v1/oauth/token"

PAGE_SIZE = 100
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)
DEFAULT_CURRENCY = "EUR"

ACCOUNT_TYPE_MAP = {
    "CHECKING": "checking",
    "SAVINGS": "savings",
    "CREDIT_CARD": "credit_card",
    "LOAN": "loan",
    "MORTGAGE": "loan",
    "INVESTMENT": "investment",
    "PENSION": "investment",
}

# Accounts Tink mirrors from other providers; they carry no transactions of their own
NON_TRANSACTABLE_TYPES = frozenset({"EXTERNAL"})


def _amount(node: dict | None):
    """Return (Decimal, currency) from a Tink ``{value, currencyCode}`` node."""
    if not node:
        return None, None
    value = node.get("value") or {}
    return (
        parse_scaled_amount(value.get("unscaledValue"), value.get("scale")),
        node.get("currencyCode"),
    )


class TinkClient:
    """Tink client implementing the BankingProvider protocol."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        market: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        self._client_id = client_id if client_id is not None else settings.TINK_CLIENT_ID
        self._client_secret = (
            client_secret if client_secret is not None else settings.TINK_CLIENT_SECRET
        )
        self._redirect_uri = (
            redirect_uri if redirect_uri is not None else settings.TINK_REDIRECT_URI
        )
        self._market = market or settings.TINK_MARKET
        self._transport = transport
        self._sleep = sleep
        self._max_pages = max_pages

    @property
    def provider_id(self) -> str:
        return "tink"

    def is_configured(self) -> bool:
        return not self.missing_settings()

    def missing_settings(self) -> list[str]:
        missing = []
        if not self._client_id:
            missing.append("TINK_CLIENT_ID")
        if not self._client_secret:
            missing.append("TINK_CLIENT_SECRET")
        if not self._redirect_uri:
            missing.append("TINK_REDIRECT_URI")
        return missing

    def _http(
        self,
        access_token: str | None = None,
        on_call: CallListener | None = None,
    ) -> RateLimitedClient:
        headers = {"Accept": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        return RateLimitedClient(
            "Tink",
            base_url=API_BASE_URL,
            headers=headers,
            transport=self._transport,
            sleep=self._sleep,
            on_call=on_call,
        )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_authorization_url(self, state: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "market": self._market,
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> ProviderToken:
        return self._token_request({"grant_type": "authorization_code", "code": code})

    def refresh_access_token(self, refresh_token: str) -> ProviderToken:
        return self._token_request(
            {"grant_type": "refresh_token", "refresh_token": refresh_token}
        )

    def _token_request(self, form: dict) -> ProviderToken:
        form = {**form, "client_id": self._client_id, "client_secret": self._client_secret}
        with self._http() as client:
            data = client.post_json(TOKEN_PATH, data=form)
        if not data.get("access_token"):
            raise ProviderDataError("Tink token response had no access_token", provider_name="Tink")
        expires_in = data.get("expires_in")
        return ProviderToken(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            expires_at=(
                datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
                if expires_in is not None
                else None
            ),
            token_type=data.get("token_type") or "Bearer",
            scopes=(data.get("scope") or "").replace(",", " ").split(),
        )

    def fetch_user_info(self, token: ProviderToken) -> dict:
        with self._http(token.access_token) as client:
            data = client.get_json("/api/v1/user")
        profile = data.get("profile") or {}
        return {
            "tink_user_id": data.get("id"),
            "market": profile.get("market"),
            "locale": profile.get("locale"),
            "time_zone": profile.get("timeZone"),
        }

    def is_token_expired(self, expires_at: datetime | None) -> bool:
        if expires_at is None:
            return False
        return ensure_utc(expires_at) - TOKEN_EXPIRY_BUFFER <= datetime.now(timezone.utc)

    def get_error_message(self, error: BaseException) -> str:
        if isinstance(error, ProviderAuthError):
            return "Tink access was revoked or expired. Please reconnect your bank."
        if isinstance(error, ProviderError):
            return str(error)
        return f"Unexpected Tink error: {error}"

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _paged(
        self,
        client: RateLimitedClient,
        path: str,
        key: str,
        params: dict,
        page_size: int | None = None,
        label: str = "",
    ):
        size = min(page_size or PAGE_SIZE, PAGE_SIZE)

        def fetch_page(page_token: str | None) -> Page[dict]:
            query = {**params, "pageSize": size}
            if page_token:
                query["pageToken"] = page_token
            data = client.get_json(path, params=query)
            return Page(items=data.get(key) or [], next_cursor=data.get("nextPageToken") or None)

        return paginate(fetch_page, max_pages=self._max_pages, label=label)

    def fetch_accounts(self, credentials: ProviderCredentials) -> list[ProviderAccount]:
        with self._http(credentials.access_token, credentials.on_api_call) as client:
            raw_accounts = list(
                self._paged(client, "/data/v2/accounts", "accounts", {}, label="Tink accounts")
            )

        accounts = []
        for raw in raw_accounts:
            tink_type = (raw.get("type") or "OTHER").upper()
            flags = raw.get("flags") or []
            if tink_type in NON_TRANSACTABLE_TYPES or raw.get("closed") or "CLOSED" in flags:
                continue
            accounts.append(self._map_account(raw, tink_type))

        logger.info("Tink: %d accounts (%d returned)", len(accounts), len(raw_accounts))
        return accounts

    @staticmethod
    def _map_account(raw: dict, tink_type: str) -> ProviderAccount:
        balance, currency = _amount(((raw.get("balances") or {}).get("booked") or {}).get("amount"))
        identifiers = raw.get("identifiers") or {}
        iban = (identifiers.get("iban") or {}).get("iban")
        return ProviderAccount(
            external_account_id=raw["id"],
            account_name=raw.get("name") or iban or f"Account {raw['id']}",
            account_type=ACCOUNT_TYPE_MAP.get(tink_type, "other"),
            currency=currency or DEFAULT_CURRENCY,
            balance=balance,
            account_number=iban,
            institution=raw.get("financialInstitutionId"),
            metadata={
                "tink_account_type": tink_type,
                "iban": iban,
                "last_refreshed": (raw.get("dates") or {}).get("lastRefreshed"),
            },
        )

    def fetch_transactions(
        self,
        credentials: ProviderCredentials,
        account_id: str,
        options: FetchOptions,
    ) -> list[ProviderTransaction]:
        params = {"accountIdIn": account_id}
        if options.start_date:
            params["bookedDateGte"] = options.start_date.date().isoformat()
        if options.end_date:
            params["bookedDateLte"] = options.end_date.date().isoformat()

        transactions = []
        skipped = 0
        with self._http(credentials.access_token, credentials.on_api_call) as client:
            for raw in self._paged(
                client,
                "/data/v2/transactions",
                "transactions",
                params,
                page_size=options.page_size,
                label=f"Tink transactions {account_id}",
            ):
                try:
                    transactions.append(self._map_transaction(raw, account_id))
                except ProviderDataError as e:
                    skipped += 1
                    logger.warning("Tink: skipping malformed transaction: %s", e)

        logger.info(
            "Tink: %d transactions for account %s (%d skipped)",
            len(transactions), account_id, skipped,
        )
        return transactions

    @staticmethod
    def _map_transaction(raw: dict, account_id: str) -> ProviderTransaction:
        amount, currency = _amount(raw.get("amount"))
        dates = raw.get("dates") or {}
        booked = parse_iso_datetime(dates.get("booked"))
        if not raw.get("id") or amount is None or booked is None:
            raise ProviderDataError(
                f"Tink transaction missing id, amount or booked date: {raw.get('id') or '<no id>'}",
                provider_name="Tink",
            )

        descriptions = raw.get("descriptions") or {}
        merchant = (raw.get("merchantInformation") or {}).get("merchantName")
        return ProviderTransaction(
            external_transaction_id=raw["id"],
            external_account_id=raw.get("accountId") or account_id,
            amount=abs(amount),
            type="credit" if amount >= 0 else "debit",
            date=booked,
            description=(
                descriptions.get("display") or descriptions.get("original") or merchant or "Transaction"
            ),
            currency=currency,
            counterparty_name=merchant,
            reference=raw.get("reference"),
            category=((raw.get("categories") or {}).get("pfm") or {}).get("name"),
            metadata={
                "booking_status": raw.get("status"),
                "value_date": dates.get("value"),
                "transaction_type": (raw.get("types") or {}).get("type"),
            },
        )
