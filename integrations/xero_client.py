"""Xero accounting API client implementing the BankingProvider protocol.

Xero is an OAuth 2.0 provider. Every API call needs the organisation's
tenant id in the ``Xero-Tenant-Id`` header; it is discovered through the
``/connections`` endpoint at authorization time and stored in the token
metadata as ``xero_tenant_id``.
"""

import logging
import time
from collections.abc import Callable
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from email.utils import format_datetime
from urllib.parse import urlencode

import httpx

from config import settings
from integrations.exceptions import (
    ProviderAuthError,
    ProviderDataError,
    ProviderError,
    ProviderRateLimitError,
)
from integrations.http_client import CallListener, RateLimitedClient
from integrations.pagination import DEFAULT_MAX_PAGES, Page, page_number_cursor, paginate
from integrations.parsing_utils import (
    ensure_utc,
    parse_decimal,
    parse_ms_json_date,
    parse_report_amount,
)
from integrations.provider_protocol import (
    FetchOptions,
    ProviderAccount,
    ProviderCredentials,
    ProviderToken,
    ProviderTransaction,
)

logger = logging.getLogger(__name__)

AUTH_URL = "https://login.xero.com/identity/connect/authorize"
TOKEN_URL = "https://identity.xero.com/connect/token"
CONNECTIONS_URL = "https://api.xero.com/connections"
API_BASE_URL = "https://api.xero.com/api.xro/2.0"

SCOPES = [
    "offline_access",
    "accounting.transactions.read",
    "accounting.settings.read",
    "accounting.contacts.read",
    "accounting.reports.read",
]

PAGE_SIZE = 100
TOKEN_EXPIRY_BUFFER = timedelta(minutes=5)

# BankAccountType -> canonical account type
ACCOUNT_TYPE_MAP = {
    "BANK": "checking",
    "CURRENT": "checking",
    "CREDITCARD": "credit_card",
    "SAVINGS": "savings",
    "TERMDEPOSIT": "savings",
    "LOAN": "loan",
    "PAYPAL": "checking",
}

IMPORTABLE_STATUSES = frozenset({"AUTHORISED", "SUBMITTED"})


def xero_error_parser(response: httpx.Response) -> tuple[str, str | None, dict]:
    """Extract (message, error_code, details) from a Xero error body.

    Xero answers with ``{Type, Message, Elements}`` for API errors (the
    elements carry ``ValidationErrors``), ``{Title, Detail, Status}`` for
    auth problems, and ``{error, error_description}`` from the identity
    server.
    """
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:500] or response.reason_phrase, None, {}
    if not isinstance(body, dict):
        return str(body)[:500], None, {"body": body}

    if isinstance(body.get("error"), str):
        return body.get("error_description") or body["error"], body["error"], body

    message = body.get("Message") or body.get("Detail") or body.get("Title") or ""
    validation = [
        err.get("Message")
        for element in body.get("Elements") or []
        for err in element.get("ValidationErrors") or []
        if err.get("Message")
    ]
    if validation:
        message = f"{message} ({'; '.join(validation)})" if message else "; ".join(validation)
    return message or response.reason_phrase, body.get("Type"), body


class XeroClient:
    """Xero client implementing the BankingProvider protocol."""

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        *,
        transport: httpx.BaseTransport | None = None,
        sleep: Callable[[float], None] = time.sleep,
        max_pages: int = DEFAULT_MAX_PAGES,
    ):
        """Initialize the client.

        Args:
            client_id: OAuth client id. Defaults to settings.XERO_CLIENT_ID.
            client_secret: OAuth client secret. Defaults to settings.XERO_CLIENT_SECRET.
            redirect_uri: OAuth redirect URI. Defaults to settings.XERO_REDIRECT_URI.
            transport: Optional httpx transport, used by tests.
            sleep: Sleep function used by the retry loop.
            max_pages: Safety bound on transaction pages per account.
        """
        self._client_id = client_id if client_id is not None else settings.XERO_CLIENT_ID
        self._client_secret = (
            client_secret if client_secret is not None else settings.XERO_CLIENT_SECRET
        )
        self._redirect_uri = (
            redirect_uri if redirect_uri is not None else settings.XERO_REDIRECT_URI
        )
        self._transport = transport
        self._sleep = sleep
        self._max_pages = max_pages
        self._rate_limits: dict[str, dict] = {}

    @property
    def provider_id(self) -> str:
        return "xero"

    def is_configured(self) -> bool:
        return not self.missing_settings()

    def missing_settings(self) -> list[str]:
        missing = []
        if not self._client_id:
            missing.append("XERO_CLIENT_ID")
        if not self._client_secret:
            missing.append("XERO_CLIENT_SECRET")
        if not self._redirect_uri:
            missing.append("XERO_REDIRECT_URI")
        return missing

    def _http(
        self,
        base_url: str = "",
        headers: dict | None = None,
        on_call: CallListener | None = None,
    ) -> RateLimitedClient:
        return RateLimitedClient(
            "Xero",
            base_url=base_url,
            headers=headers,
            transport=self._transport,
            sleep=self._sleep,
            error_parser=xero_error_parser,
            on_call=on_call,
        )

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    def get_authorization_url(self, state: str) -> str:
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": self._redirect_uri,
            "scope": " ".join(SCOPES),
            "state": state,
        }
        return f"{AUTH_URL}?{urlencode(params)}"

    def exchange_code_for_token(self, code: str) -> ProviderToken:
        return self._token_request({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._redirect_uri,
        })

    def refresh_access_token(self, refresh_token: str) -> ProviderToken:
        return self._token_request({
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        })

    def _token_request(self, form: dict) -> ProviderToken:
        with self._http() as client:
            data = client.post_json(
                TOKEN_URL,
                data=form,
                auth=(self._client_id, self._client_secret),
            )
        return _parse_token_response(data)

    def fetch_user_info(self, token: ProviderToken) -> dict:
        """Return the first connected organisation as token metadata.

        Raises:
            ProviderDataError: If the token is not connected to any organisation.
        """
        headers = {"Authorization": f"Bearer {token.access_token}", "Accept": "application/json"}
        with self._http(headers=headers) as client:
            connections = client.get_json(CONNECTIONS_URL)

        if not connections:
            raise ProviderDataError(
                "No Xero organisations found. Authorize at least one organisation.",
                provider_name="Xero",
            )
        primary = connections[0]
        logger.info(
            "Xero: tenant resolved (%d organisations connected)", len(connections)
        )
        return {
            "xero_tenant_id": primary.get("tenantId"),
            "xero_tenant_name": primary.get("tenantName"),
            "xero_tenant_type": primary.get("tenantType"),
        }

    def is_token_expired(self, expires_at: datetime | None) -> bool:
        if expires_at is None:
            return False
        return ensure_utc(expires_at) - TOKEN_EXPIRY_BUFFER <= datetime.now(timezone.utc)

    def get_error_message(self, error: BaseException) -> str:
        if isinstance(error, ProviderAuthError):
            return "Xero authorization expired or was revoked. Please reconnect Xero."
        if isinstance(error, ProviderRateLimitError):
            return "Xero rate limit reached. The sync will succeed on a later attempt."
        if isinstance(error, ProviderError):
            return str(error)
        return f"Unexpected Xero error: {error}"

    # ------------------------------------------------------------------
    # Data
    # ------------------------------------------------------------------

    def _api(self, credentials: ProviderCredentials, extra_headers: dict | None = None) -> RateLimitedClient:
        tenant_id = credentials.metadata.get("xero_tenant_id") or credentials.metadata.get(
            "xeroTenantId"
        )
        if not tenant_id:
            raise ProviderAuthError(
                "Xero organisation id missing from the connection. Please reconnect Xero.",
                provider_name="Xero",
            )
        headers = {
            "Authorization": f"Bearer {credentials.access_token}",
            "Xero-Tenant-Id": tenant_id,
            "Accept": "application/json",
        }
        if extra_headers:
            headers.update(extra_headers)
        return self._http(base_url=API_BASE_URL, headers=headers, on_call=credentials.on_api_call)

    def _remember_rate_limit(self, connection_id: str, client: RateLimitedClient) -> None:
        if client.rate_limit:
            self._rate_limits[connection_id] = {
                **client.rate_limit,
                "observed_at": datetime.now(timezone.utc).isoformat(),
            }

    def get_rate_limit_status(self, connection_id: str) -> dict:
        """Last rate-limit headers seen for a connection (empty if none)."""
        return dict(self._rate_limits.get(connection_id, {}))

    def test_connection(self, credentials: ProviderCredentials) -> bool:
        """Return True if the organisation endpoint answers."""
        try:
            with self._api(credentials) as client:
                client.get_json("/Organisation")
            return True
        except ProviderError:
            logger.warning("Xero connection test failed", exc_info=True)
            return False

    def fetch_accounts(self, credentials: ProviderCredentials) -> list[ProviderAccount]:
        """Fetch active bank accounts.

        Xero's chart of accounts includes revenue, expense and equity
        accounts; only ``Type == "BANK"`` with ``Status == "ACTIVE"`` can
        carry bank transactions.
        """
        with self._api(credentials) as client:
            data = client.get_json("/Accounts")
            self._remember_rate_limit(credentials.connection_id, client)

        raw_accounts = data.get("Accounts") or []
        accounts = [
            self._map_account(raw)
            for raw in raw_accounts
            if raw.get("Type") == "BANK" and raw.get("Status") == "ACTIVE"
        ]
        logger.info(
            "Xero: %d bank accounts (%d in chart of accounts)",
            len(accounts), len(raw_accounts),
        )
        return accounts

    @staticmethod
    def _map_account(raw: dict) -> ProviderAccount:
        bank_type = (raw.get("BankAccountType") or "BANK").upper()
        return ProviderAccount(
            external_account_id=raw["AccountID"],
            account_name=raw.get("Name") or raw.get("Code") or raw["AccountID"],
            account_type=ACCOUNT_TYPE_MAP.get(bank_type, "other"),
            currency=raw.get("CurrencyCode") or "USD",
            account_number=raw.get("BankAccountNumber"),
            metadata={
                "code": raw.get("Code"),
                "bank_account_type": bank_type,
                "updated_at": raw.get("UpdatedDateUTC"),
            },
        )

    def fetch_transactions(
        self,
        credentials: ProviderCredentials,
        account_id: str,
        options: FetchOptions,
    ) -> list[ProviderTransaction]:
        """Fetch all bank transactions for one account in the window.

        Pages through ``/BankTransactions`` 100 at a time until a short
        page, stopping at the safety bound.
        """
        where = [f'BankAccount.AccountID=Guid("{account_id}")']
        if options.start_date:
            where.append(f"Date>=DateTime({_xero_date(options.start_date)})")
        if options.end_date:
            where.append(f"Date<=DateTime({_xero_date(options.end_date)})")
        where_clause = " AND ".join(where)

        extra_headers = {}
        if options.modified_since:
            extra_headers["If-Modified-Since"] = format_datetime(
                ensure_utc(options.modified_since), usegmt=True
            )

        next_page = page_number_cursor(PAGE_SIZE)
        skipped = 0

        with self._api(credentials, extra_headers) as client:

            def fetch_page(page_number: int | None) -> Page[dict]:
                page_number = page_number or 1
                data = client.get_json(
                    "/BankTransactions",
                    params={"where": where_clause, "page": page_number, "order": "Date DESC"},
                )
                items = data.get("BankTransactions") or []
                return Page(items=items, next_cursor=next_page(page_number, len(items)))

            transactions = []
            for raw in paginate(
                fetch_page,
                max_pages=self._max_pages,
                label=f"Xero transactions {account_id}",
            ):
                if raw.get("Status") not in IMPORTABLE_STATUSES:
                    skipped += 1
                    continue
                try:
                    transactions.append(self._map_transaction(raw, account_id))
                except ProviderDataError as e:
                    skipped += 1
                    logger.warning("Xero: skipping malformed transaction: %s", e)
            self._remember_rate_limit(credentials.connection_id, client)

        logger.info(
            "Xero: %d transactions for account %s (%d skipped, %d API calls)",
            len(transactions), account_id, skipped, client.api_calls,
        )
        return transactions

    @staticmethod
    def _map_transaction(raw: dict, account_id: str) -> ProviderTransaction:
        txn_id = raw.get("BankTransactionID")
        txn_date = parse_ms_json_date(raw.get("Date")) or parse_ms_json_date(raw.get("DateString"))
        total = parse_decimal(raw.get("Total"))
        if not txn_id or txn_date is None or total is None:
            raise ProviderDataError(
                f"Xero bank transaction missing id, date or total: {txn_id or '<no id>'}",
                provider_name="Xero",
            )

        txn_type = (raw.get("Type") or "").upper()
        line_items = raw.get("LineItems") or []
        contact = raw.get("Contact") or {}
        description = (
            raw.get("Reference")
            or (line_items[0].get("Description") if line_items else None)
            or contact.get("Name")
            or txn_type
        )
        return ProviderTransaction(
            external_transaction_id=txn_id,
            external_account_id=(raw.get("BankAccount") or {}).get("AccountID") or account_id,
            amount=abs(total),
            type="credit" if txn_type.startswith("RECEIVE") else "debit",
            date=txn_date,
            description=description,
            currency=raw.get("CurrencyCode"),
            counterparty_name=contact.get("Name"),
            reference=raw.get("Reference"),
            metadata={
                "xero_type": txn_type,
                "status": raw.get("Status"),
                "is_reconciled": raw.get("IsReconciled"),
                "updated_at": raw.get("UpdatedDateUTC"),
            },
        )

    def fetch_balances(
        self,
        credentials: ProviderCredentials,
        as_of: date | None = None,
    ) -> dict[str, Decimal]:
        """Closing balances per bank account from the BankSummary report.

        Returns:
            Dict mapping Xero AccountID to closing balance.
        """
        as_of = as_of or date.today()
        with self._api(credentials) as client:
            data = client.get_json(
                "/Reports/BankSummary",
                params={"fromDate": as_of.isoformat(), "toDate": as_of.isoformat()},
            )
            self._remember_rate_limit(credentials.connection_id, client)

        reports = data.get("Reports") or []
        if not reports:
            logger.warning("Xero: BankSummary report was empty")
            return {}

        balances: dict[str, Decimal] = {}
        for section in reports[0].get("Rows") or []:
            if section.get("RowType") != "Section":
                continue
            for row in section.get("Rows") or []:
                cells = row.get("Cells") or []
                if row.get("RowType") != "Row" or len(cells) < 5:
                    continue
                account_id = _report_account_id(cells)
                closing = parse_report_amount(cells[4].get("Value"))
                if account_id and closing is not None:
                    balances[account_id] = closing
                else:
                    logger.debug("Xero: BankSummary row without account id or balance")

        logger.info("Xero: balances for %d bank accounts", len(balances))
        return balances


def _parse_token_response(data: dict) -> ProviderToken:
    if not data.get("access_token"):
        raise ProviderDataError("Xero token response had no access_token", provider_name="Xero")
    expires_in = data.get("expires_in")
    expires_at = (
        datetime.now(timezone.utc) + timedelta(seconds=int(expires_in))
        if expires_in is not None
        else None
    )
    return ProviderToken(
        access_token=data["access_token"],
        refresh_token=data.get("refresh_token"),
        expires_at=expires_at,
        token_type=data.get("token_type") or "Bearer",
        scopes=(data.get("scope") or "").split(),
    )


def _xero_date(value: datetime | date) -> str:
    """Format a date for a Xero ``where`` filter: ``DateTime(2024,01,15)``."""
    return f"{value.year},{value.month:02d},{value.day:02d}"


def _report_account_id(cells: list[dict]) -> str | None:
    for cell in cells:
        for attr in cell.get("Attributes") or []:
            if attr.get("Id") == "account" and attr.get("Value"):
                return attr["Value"]
    return None
