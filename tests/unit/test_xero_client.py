"""Tests for the Xero client against a mocked HTTP transport."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from integrations.exceptions import ProviderAuthError, ProviderDataError, ProviderValidationError
from integrations.provider_protocol import FetchOptions, ProviderCredentials, ProviderToken
from integrations.xero_client import XeroClient, xero_error_parser

ACCOUNT_ID = "11111111-2222-3333-4444-555555555555"


def make_client(handler) -> XeroClient:
    return XeroClient(
        client_id="cid",
        client_secret="secret",
        redirect_uri="https://app.example.com/oauth/xero/callback",
        transport=httpx.MockTransport(handler),
        sleep=lambda _: None,
    )


def credentials(**metadata) -> ProviderCredentials:
    return ProviderCredentials(
        connection_id="conn-1",
        tenant_id="tenant-1",
        access_token="access-1",
        metadata=metadata or {"xero_tenant_id": "org-1"},
    )


def bank_transaction(i: int, **overrides) -> dict:
    txn = {
        "BankTransactionID": f"bt-{i:04d}",
        "Type": "RECEIVE" if i % 2 == 0 else "SPEND",
        "Status": "AUTHORISED",
        "Date": "/Date(1709251200000+0000)/",
        "Total": 10 + i,
        "CurrencyCode": "GBP",
        "Reference": f"INV-{i}",
        "Contact": {"Name": "Acme Ltd"},
        "BankAccount": {"AccountID": ACCOUNT_ID},
        "LineItems": [{"Description": "Consulting"}],
    }
    txn.update(overrides)
    return txn


# ---------------------------------------------------------------------------
# Configuration and OAuth
# ---------------------------------------------------------------------------


class TestConfiguration:
    def test_missing_settings(self):
        client = XeroClient(client_id="", client_secret="", redirect_uri="")
        assert client.missing_settings() == [
            "XERO_CLIENT_ID",
            "XERO_CLIENT_SECRET",
            "XERO_REDIRECT_URI",
        ]
        assert client.is_configured() is False

    def test_authorization_url(self):
        url = make_client(lambda r: httpx.Response(200)).get_authorization_url("state-xyz")
        query = parse_qs(urlparse(url).query)
        assert query["state"] == ["state-xyz"]
        assert query["client_id"] == ["cid"]
        assert "offline_access" in query["scope"][0]

    def test_token_expiry_buffer(self):
        client = make_client(lambda r: httpx.Response(200))
        now = datetime.now(timezone.utc)
        assert client.is_token_expired(now + timedelta(minutes=2)) is True
        assert client.is_token_expired(now + timedelta(minutes=30)) is False
        assert client.is_token_expired(None) is False


class TestTokenExchange:
    def test_exchange_code(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["body"] = parse_qs(request.content.decode())
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(
                200,
                json={
                    "access_token": "at",
                    "refresh_token": "rt",
                    "expires_in": 1800,
                    "scope": "offline_access accounting.transactions.read",
                },
            )

        token = make_client(handler).exchange_code_for_token("code-1")
        assert token.access_token == "at"
        assert token.refresh_token == "rt"
        assert token.expires_at > datetime.now(timezone.utc) + timedelta(minutes=29)
        assert "offline_access" in token.scopes
        assert seen["body"]["grant_type"] == ["authorization_code"]
        assert seen["auth"].startswith("Basic ")

    def test_invalid_grant_is_validation_error(self):
        def handler(request):
            return httpx.Response(400, json={"error": "invalid_grant"})

        with pytest.raises(ProviderValidationError) as exc_info:
            make_client(handler).refresh_access_token("old")
        assert exc_info.value.error_code == "invalid_grant"

    def test_fetch_user_info_first_tenant(self):
        def handler(request):
            return httpx.Response(
                200,
                json=[
                    {"tenantId": "org-1", "tenantName": "Demo Co", "tenantType": "ORGANISATION"},
                    {"tenantId": "org-2", "tenantName": "Other", "tenantType": "ORGANISATION"},
                ],
            )

        info = make_client(handler).fetch_user_info(ProviderToken(access_token="at"))
        assert info["xero_tenant_id"] == "org-1"
        assert info["xero_tenant_name"] == "Demo Co"

    def test_fetch_user_info_no_tenants(self):
        with pytest.raises(ProviderDataError):
            make_client(lambda r: httpx.Response(200, json=[])).fetch_user_info(
                ProviderToken(access_token="at")
            )


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------


class TestFetchAccounts:
    def test_only_active_bank_accounts(self):
        def handler(request):
            assert request.headers["Xero-Tenant-Id"] == "org-1"
            assert request.headers["Authorization"] == "Bearer access-1"
            return httpx.Response(
                200,
                json={
                    "Accounts": [
                        {
                            "AccountID": "a1",
                            "Name": "Business Cheque",
                            "Type": "BANK",
                            "Status": "ACTIVE",
                            "BankAccountType": "BANK",
                            "CurrencyCode": "GBP",
                            "BankAccountNumber": "12-3456",
                        },
                        {"AccountID": "a2", "Name": "Card", "Type": "BANK", "Status": "ACTIVE",
                         "BankAccountType": "CREDITCARD"},
                        {"AccountID": "a3", "Name": "Sales", "Type": "REVENUE", "Status": "ACTIVE"},
                        {"AccountID": "a4", "Name": "Old", "Type": "BANK", "Status": "ARCHIVED"},
                    ]
                },
                headers={"X-MinLimit-Remaining": "59"},
            )

        client = make_client(handler)
        accounts = client.fetch_accounts(credentials())

        assert [a.external_account_id for a in accounts] == ["a1", "a2"]
        assert accounts[0].account_type == "checking"
        assert accounts[0].currency == "GBP"
        assert accounts[0].account_number == "12-3456"
        assert accounts[1].account_type == "credit_card"
        assert accounts[1].currency == "USD"
        assert client.get_rate_limit_status("conn-1")["minute_remaining"] == 59

    def test_missing_tenant_requires_reconnect(self):
        client = make_client(lambda r: httpx.Response(200, json={}))
        creds = ProviderCredentials("conn-1", "tenant-1", "access-1", metadata={})
        with pytest.raises(ProviderAuthError):
            client.fetch_accounts(creds)

    def test_camel_case_tenant_key_accepted(self):
        def handler(request):
            assert request.headers["Xero-Tenant-Id"] == "org-9"
            return httpx.Response(200, json={"Accounts": []})

        assert make_client(handler).fetch_accounts(credentials(xeroTenantId="org-9")) == []


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestFetchTransactions:
    def test_pages_until_short_page(self):
        records = [bank_transaction(i) for i in range(250)]
        pages_requested = []

        def handler(request):
            page = int(request.url.params["page"])
            pages_requested.append(page)
            start = (page - 1) * 100
            return httpx.Response(200, json={"BankTransactions": records[start:start + 100]})

        txns = make_client(handler).fetch_transactions(credentials(), ACCOUNT_ID, FetchOptions())

        assert len(txns) == 250
        assert pages_requested == [1, 2, 3]
        assert len({t.external_transaction_id for t in txns}) == 250

    def test_where_filter_and_headers(self):
        seen = {}

        def handler(request):
            seen["where"] = request.url.params["where"]
            seen["order"] = request.url.params["order"]
            seen["if_modified_since"] = request.headers.get("If-Modified-Since")
            return httpx.Response(200, json={"BankTransactions": []})

        options = FetchOptions(
            start_date=datetime(2024, 1, 5, tzinfo=timezone.utc),
            end_date=datetime(2024, 3, 1, 12, tzinfo=timezone.utc),
            modified_since=datetime(2024, 2, 1, tzinfo=timezone.utc),
        )
        make_client(handler).fetch_transactions(credentials(), ACCOUNT_ID, options)

        assert f'BankAccount.AccountID=Guid("{ACCOUNT_ID}")' in seen["where"]
        assert "Date>=DateTime(2024,01,05)" in seen["where"]
        assert "Date<=DateTime(2024,03,01)" in seen["where"]
        assert seen["order"] == "Date DESC"
        assert seen["if_modified_since"] == "Thu, 01 Feb 2024 00:00:00 GMT"

    def test_maps_direction_and_fields(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"BankTransactions": [
                    bank_transaction(0, Total=-125.5),
                    bank_transaction(1, Reference=None, LineItems=[]),
                ]},
            )

        credit, debit = make_client(handler).fetch_transactions(
            credentials(), ACCOUNT_ID, FetchOptions()
        )
        assert credit.type == "credit"
        assert credit.amount == Decimal("125.5")
        assert credit.date == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert credit.description == "INV-0"
        assert credit.counterparty_name == "Acme Ltd"
        assert debit.type == "debit"
        assert debit.description == "Acme Ltd"

    def test_skips_unimportable_and_malformed(self):
        def handler(request):
            return httpx.Response(
                200,
                json={"BankTransactions": [
                    bank_transaction(0),
                    bank_transaction(1, Status="DELETED"),
                    bank_transaction(2, Total=None),
                    bank_transaction(3, Status="SUBMITTED"),
                ]},
            )

        txns = make_client(handler).fetch_transactions(credentials(), ACCOUNT_ID, FetchOptions())
        assert [t.external_transaction_id for t in txns] == ["bt-0000", "bt-0003"]

    def test_page_size_hint_never_truncates(self):
        records = [bank_transaction(i) for i in range(250)]
        pages = []

        def handler(request):
            page = int(request.url.params["page"])
            pages.append(page)
            return httpx.Response(
                200, json={"BankTransactions": records[(page - 1) * 100:page * 100]}
            )

        txns = make_client(handler).fetch_transactions(
            credentials(), ACCOUNT_ID, FetchOptions(page_size=30)
        )
        assert len(txns) == 250
        assert pages == [1, 2, 3]


# ---------------------------------------------------------------------------
# Balances and errors
# ---------------------------------------------------------------------------


class TestFetchBalances:
    def test_bank_summary_closing_balances(self):
        seen = {}

        def handler(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"Reports": [{
                "Rows": [
                    {"RowType": "Header", "Cells": []},
                    {"RowType": "Section", "Rows": [
                        {"RowType": "Row", "Cells": [
                            {"Value": "Business Cheque", "Attributes": [{"Id": "account", "Value": "a1"}]},
                            {"Value": "100.00"}, {"Value": "50.00"}, {"Value": "20.00"},
                            {"Value": "1,520.40"},
                        ]},
                        {"RowType": "Row", "Cells": [
                            {"Value": "Card", "Attributes": [{"Id": "account", "Value": "a2"}]},
                            {"Value": "0"}, {"Value": "0"}, {"Value": "0"}, {"Value": "(75.00)"},
                        ]},
                        {"RowType": "SummaryRow", "Cells": [{"Value": "Total"}] * 5},
                    ]},
                ]
            }]})

        balances = make_client(handler).fetch_balances(credentials(), as_of=date(2024, 3, 1))
        assert balances == {"a1": Decimal("1520.40"), "a2": Decimal("-75.00")}
        assert seen["params"] == {"fromDate": "2024-03-01", "toDate": "2024-03-01"}

    def test_empty_report(self):
        client = make_client(lambda r: httpx.Response(200, json={"Reports": []}))
        assert client.fetch_balances(credentials()) == {}


class TestErrors:
    def test_validation_elements_in_message(self):
        response = httpx.Response(400, json={
            "Type": "ValidationException",
            "Message": "A validation exception occurred",
            "Elements": [{"ValidationErrors": [{"Message": "Date is invalid"}]}],
        })
        message, code, _ = xero_error_parser(response)
        assert message == "A validation exception occurred (Date is invalid)"
        assert code == "ValidationException"

    def test_unauthorized_maps_to_auth_error(self):
        def handler(request):
            return httpx.Response(401, json={"Title": "Unauthorized", "Detail": "TokenExpired"})

        with pytest.raises(ProviderAuthError):
            make_client(handler).fetch_accounts(credentials())

    def test_user_facing_messages(self):
        client = make_client(lambda r: httpx.Response(200))
        assert "reconnect" in client.get_error_message(ProviderAuthError("x")).lower()
        assert client.get_error_message(RuntimeError("boom")) == "Unexpected Xero error: boom"
