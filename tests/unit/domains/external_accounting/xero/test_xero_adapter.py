# tests/unit/domains/external_accounting/xero/test_xero_adapter.py
"""
Tests for XeroAdapter OAuth, paged reads and quote creation.
"""
import time
from datetime import date
from decimal import Decimal
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from pickbridge.domains.external_accounting.base.types import (
    EstimateDraft,
    EstimateLine,
    FailureCause,
    ProviderCallError,
)
from pickbridge.domains.external_accounting.xero.adapter import XeroAdapter
from pickbridge.domains.external_accounting.xero.types import XeroToken
from pickbridge.shared.exceptions import (
    IntegrationConnectionError,
    IntegrationValidationError,
)
from tests.fixtures.http_fixtures import RecordingTransport, form_body

API = XeroAdapter.API_URL


def xero_token(**overrides) -> XeroToken:
    now = int(time.time())
    data = {
        "access_token": "xero-access",
        "refresh_token": "xero-refresh",
        "expires_at": now + 1800,
        "tenant_id": "tenant-abc",
        "created_at": now,
    }
    data.update(overrides)
    return XeroToken(**data)


def connection(tenant_id: str, name: str) -> dict:
    return {
        "id": f"conn-{tenant_id}",
        "tenantId": tenant_id,
        "tenantName": name,
        "tenantType": "ORGANISATION",
    }


def sample_draft(sku="SEM-1") -> EstimateDraft:
    return EstimateDraft(
        customer_external_id="contact-1",
        doc_number="2001",
        txn_date=date(2025, 5, 2),
        memo="Imported order 2001",
        private_note="Imported from pickbridge, order 2001",
        lines=[
            EstimateLine(
                external_item_id="item-1",
                sku=sku,
                description="Semolina Fine",
                quantity=Decimal("3"),
                unit_price=Decimal("4.20"),
                tax_code_ref="OUTPUT2",
            )
        ],
    )


class TestXeroAdapter:
    """Test suite for Xero adapter."""

    @pytest.fixture
    def adapter(self, http_transport: RecordingTransport) -> XeroAdapter:
        return XeroAdapter(
            client_id="xero-client",
            client_secret="xero-secret",
            redirect_uri="http://localhost/callback/xero",
            http_client=http_transport.client(),
        )

    def test_build_auth_url(self, adapter: XeroAdapter) -> None:
        url = adapter.build_auth_url("state-xyz")

        query = parse_qs(urlparse(url).query)
        assert url.startswith(XeroAdapter.AUTH_URL)
        assert query["client_id"] == ["xero-client"]
        assert query["state"] == ["state-xyz"]
        assert query["redirect_uri"] == ["http://localhost/callback/xero"]

    @pytest.mark.asyncio
    async def test_exchange_code_binds_first_tenant(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        """Test the code exchange looks up the connected tenant."""
        # Arrange
        http_transport.add_json(
            "POST",
            XeroAdapter.TOKEN_URL,
            {
                "access_token": "fresh-access",
                "refresh_token": "fresh-refresh",
                "expires_in": 1800,
                "token_type": "Bearer",
            },
        )
        http_transport.add_json(
            "GET",
            XeroAdapter.CONNECTIONS_URL,
            [connection("tenant-abc", "Demo Org"), connection("tenant-def", "Other")],
        )
        before = int(time.time())

        # Act
        token = await adapter.exchange_code("auth-code", {})

        # Assert
        assert token.tenant_id == "tenant-abc"
        assert token.access_token == "fresh-access"
        assert before + 1800 <= token.expires_at <= int(time.time()) + 1800
        token_request = http_transport.requests[0]
        body = form_body(token_request)
        assert body["grant_type"] == "authorization_code"
        assert body["client_id"] == "xero-client"
        assert http_transport.last_request.headers["Authorization"] == "Bearer fresh-access"

    @pytest.mark.asyncio
    async def test_exchange_code_without_tenant(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        # Arrange
        http_transport.add_json(
            "POST",
            XeroAdapter.TOKEN_URL,
            {"access_token": "a", "refresh_token": "r", "expires_in": 1800},
        )
        http_transport.add_json("GET", XeroAdapter.CONNECTIONS_URL, [])

        # Act & Assert
        with pytest.raises(IntegrationConnectionError):
            await adapter.exchange_code("auth-code", {})

    @pytest.mark.asyncio
    async def test_refresh_invalid_grant_is_revoked(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        http_transport.add_json(
            "POST", XeroAdapter.TOKEN_URL, {"error": "invalid_grant"}, status_code=400
        )

        with pytest.raises(ProviderCallError) as exc_info:
            await adapter.refresh(xero_token())

        assert exc_info.value.cause == FailureCause.REVOKED

    @pytest.mark.asyncio
    async def test_refresh_connection_error_is_transient(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        http_transport.add("POST", XeroAdapter.TOKEN_URL, httpx.ConnectError("down"))

        with pytest.raises(ProviderCallError) as exc_info:
            await adapter.refresh(xero_token())

        assert exc_info.value.cause == FailureCause.TRANSIENT

    def test_refresh_token_expiry_is_unknown(self, adapter: XeroAdapter) -> None:
        token = xero_token()

        assert adapter.refresh_token_expires_at(token) is None
        assert adapter.access_token_expires_at(token).timestamp() == token.expires_at

    @pytest.mark.asyncio
    async def test_contacts_page_params_and_archived_flag(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        """Test contacts include archived rows and map ContactStatus."""
        # Arrange
        http_transport.add_json(
            "GET",
            f"{API}/Contacts",
            {
                "Contacts": [
                    {"ContactID": "c-1", "Name": "Ana", "ContactStatus": "ACTIVE"},
                    {"ContactID": "c-2", "Name": "Bo", "ContactStatus": "ARCHIVED"},
                ]
            },
        )

        # Act
        page = await adapter.fetch_customers_page(xero_token(), adapter.first_cursor(2))

        # Assert
        request = http_transport.last_request
        assert request.url.params["includeArchived"] == "true"
        assert request.url.params["summaryOnly"] == "true"
        assert request.url.params["page"] == "1"
        assert request.url.params["pageSize"] == "2"
        assert request.headers["Xero-Tenant-Id"] == "tenant-abc"
        assert [c.is_archived for c in page.records] == [False, True]
        assert page.next_cursor is not None
        assert page.next_cursor.position == 2

    @pytest.mark.asyncio
    async def test_items_page_mapping(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        # Arrange
        http_transport.add_json(
            "GET",
            f"{API}/Items",
            {
                "Items": [
                    {
                        "ItemID": "item-1",
                        "Code": " SEM-1 ",
                        "Name": "Semolina Fine",
                        "IsSold": True,
                        "QuantityOnHand": 12,
                        "SalesDetails": {"UnitPrice": 4.2, "TaxType": "OUTPUT2"},
                    },
                    {"ItemID": "item-2", "Code": "", "Name": "Retired", "IsSold": False},
                ]
            },
        )

        # Act
        page = await adapter.fetch_items_page(xero_token(), adapter.first_cursor(100))

        # Assert
        first, second = page.records
        assert first.sku == "SEM-1"
        assert first.price == Decimal("4.2")
        assert first.quantity_on_hand == Decimal("12")
        assert first.tax_code_ref == "OUTPUT2"
        assert first.is_archived is False
        assert second.sku is None
        assert second.is_archived is True
        assert page.next_cursor is None

    @pytest.mark.asyncio
    async def test_repeated_items_page_ends_pagination(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        """Test a full page served again for the next page number stops paging."""
        # Arrange
        full_page = {
            "Items": [
                {"ItemID": "item-1", "Code": "SEM-1", "Name": "Semolina Fine"},
                {"ItemID": "item-2", "Code": "CF-1", "Name": "Corn Flour"},
            ]
        }
        http_transport.add_json("GET", f"{API}/Items", full_page)
        http_transport.add_json("GET", f"{API}/Items", full_page)

        # Act
        first = await adapter.fetch_items_page(xero_token(), adapter.first_cursor(2))
        second = await adapter.fetch_items_page(xero_token(), first.next_cursor)

        # Assert
        assert first.next_cursor.position == 2
        assert first.next_cursor.anchor == "item-1"
        assert http_transport.last_request.url.params["page"] == "2"
        assert second.records == []
        assert second.next_cursor is None

    @pytest.mark.asyncio
    async def test_advancing_contacts_pages_continue(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        http_transport.add_json(
            "GET",
            f"{API}/Contacts",
            {"Contacts": [{"ContactID": "c-3", "Name": "Cy"}, {"ContactID": "c-4", "Name": "Di"}]},
        )
        cursor = adapter.first_cursor(2).model_copy(update={"position": 2, "anchor": "c-1"})

        page = await adapter.fetch_customers_page(xero_token(), cursor)

        assert [c.external_id for c in page.records] == ["c-3", "c-4"]
        assert page.next_cursor.position == 3
        assert page.next_cursor.anchor == "c-3"

    @pytest.mark.asyncio
    async def test_rate_limited_read_is_transient(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        http_transport.add_json(
            "GET", f"{API}/Items", {}, status_code=429, headers={"Retry-After": "12"}
        )

        with pytest.raises(ProviderCallError) as exc_info:
            await adapter.fetch_items_page(xero_token(), adapter.first_cursor(100))

        assert exc_info.value.cause == FailureCause.TRANSIENT
        assert exc_info.value.retry_after == 12.0

    def test_render_quote_payload(self, adapter: XeroAdapter) -> None:
        # Act
        payload = adapter.render_quote(sample_draft())

        # Assert
        quote = payload["Quotes"][0]
        assert quote["Contact"] == {"ContactID": "contact-1"}
        assert quote["QuoteNumber"] == "2001"
        assert quote["Date"] == "2025-05-02"
        assert quote["Status"] == "DRAFT"
        assert quote["Summary"] == "Imported order 2001"
        assert quote["LineItems"] == [
            {
                "ItemCode": "SEM-1",
                "Description": "Semolina Fine",
                "Quantity": 3.0,
                "UnitAmount": 4.2,
                "TaxType": "OUTPUT2",
            }
        ]

    def test_render_quote_requires_item_code(self, adapter: XeroAdapter) -> None:
        with pytest.raises(IntegrationValidationError):
            adapter.render_quote(sample_draft(sku=None))

    @pytest.mark.asyncio
    async def test_create_quote_success(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        # Arrange
        http_transport.add_json(
            "PUT",
            f"{API}/Quotes",
            {"Quotes": [{"QuoteID": "q-77", "QuoteNumber": "2001"}]},
        )

        # Act
        ref = await adapter.create_estimate(xero_token(), sample_draft())

        # Assert
        assert ref.document_id == "q-77"
        assert ref.url == "https://go.xero.com/app/quotes/edit/q-77"
        assert http_transport.last_request.method == "PUT"

    @pytest.mark.asyncio
    async def test_validation_exception_is_document_fault(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        """Test a ValidationException keeps every element's message."""
        # Arrange
        http_transport.add_json(
            "PUT",
            f"{API}/Quotes",
            {
                "ErrorNumber": 10,
                "Type": "ValidationException",
                "Message": "A validation exception occurred",
                "Elements": [
                    {
                        "ValidationErrors": [
                            {"Message": "Contact could not be found"},
                            {"Message": "Item code 'SEM-1' is not valid"},
                        ]
                    }
                ],
            },
            status_code=400,
        )

        # Act & Assert
        with pytest.raises(ProviderCallError) as exc_info:
            await adapter.create_estimate(xero_token(), sample_draft())

        assert exc_info.value.cause == FailureCause.DOCUMENT_FAULT
        assert exc_info.value.error_code == "ValidationException"
        assert "Contact could not be found" in exc_info.value.message
        assert "Item code 'SEM-1' is not valid" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_unauthorized_quote_is_revoked(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        http_transport.add_json("PUT", f"{API}/Quotes", {}, status_code=401)

        with pytest.raises(ProviderCallError) as exc_info:
            await adapter.create_estimate(xero_token(), sample_draft())

        assert exc_info.value.cause == FailureCause.REVOKED

    @pytest.mark.asyncio
    async def test_revoke_posts_refresh_token(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        http_transport.add("POST", XeroAdapter.REVOKE_URL, httpx.Response(200))

        await adapter.revoke(xero_token())

        assert form_body(http_transport.last_request) == {"token": "xero-refresh"}

    @pytest.mark.asyncio
    async def test_fetch_company_info_matches_token_tenant(
        self, adapter: XeroAdapter, http_transport: RecordingTransport
    ) -> None:
        http_transport.add_json(
            "GET",
            XeroAdapter.CONNECTIONS_URL,
            [connection("tenant-other", "Other"), connection("tenant-abc", "Demo Org")],
        )

        info = await adapter.fetch_company_info(xero_token())

        assert info.company_name == "Demo Org"
        assert info.tenant_id == "tenant-abc"
