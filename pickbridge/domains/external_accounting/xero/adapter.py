# pickbridge/domains/external_accounting/xero/adapter.py
import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from pickbridge.core.settings import settings
from pickbridge.shared.exceptions import (
    IntegrationConnectionError,
    IntegrationValidationError,
)

from ..base.adapter import BaseProviderAdapter
from ..base.types import (
    Cursor,
    EstimateDraft,
    FailureCause,
    OAuthUserInfo,
    Page,
    ProviderCallError,
    ProviderKind,
    RemoteCompanyInfo,
    RemoteCustomer,
    RemoteDocumentRef,
    RemoteItem,
)
from .types import XeroTenantInfo, XeroToken, XeroTokenResponse

logger = logging.getLogger(__name__)


class XeroAdapter(BaseProviderAdapter[XeroToken]):
    """Xero implementation of the provider capability interface."""

    kind = ProviderKind.XERO

    AUTH_URL = "https://login.xero.com/identity/connect/authorize"
    TOKEN_URL = "https://identity.xero.com/connect/token"
    REVOKE_URL = "https://identity.xero.com/connect/revocation"
    USERINFO_URL = "https://identity.xero.com/connect/userinfo"
    CONNECTIONS_URL = "https://api.xero.com/connections"
    API_URL = "https://api.xero.com/api.xro/2.0"
    QUOTE_WEB_URL = "https://go.xero.com/app/quotes/edit/"

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.client_id = client_id or settings.XERO_CLIENT_ID
        self.client_secret = client_secret or settings.XERO_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.XERO_REDIRECT_URI
        self.scopes = settings.XERO_SCOPES
        self.http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS
        )

    # OAuth
    def build_auth_url(self, state: str) -> str:
        auth_params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": self.scopes,
            "state": state,
        }
        return f"{self.AUTH_URL}?{urlencode(auth_params)}"

    async def exchange_code(
        self, code: str, callback_params: Dict[str, str]
    ) -> XeroToken:
        token_response = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )

        # Use the first connection (should only be one for new connections)
        tenants = await self._list_tenants(token_response.access_token)
        if not tenants:
            raise IntegrationConnectionError("No Xero tenant found for this connection")

        return self._build_token(token_response, tenants[0].tenantId)

    async def refresh(self, token: XeroToken) -> XeroToken:
        token_response = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": token.refresh_token}
        )
        logger.info(f"Refreshed Xero token for tenant {token.tenant_id}")
        return self._build_token(token_response, token.tenant_id)

    async def revoke(self, token: XeroToken) -> None:
        response = await self._send(
            "POST",
            self.REVOKE_URL,
            data={"token": token.refresh_token},
            auth=(self.client_id or "", self.client_secret or ""),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        if response.status_code >= 400:
            raise self._data_error(response, "Token revocation failed")

    async def fetch_user_info(self, token: XeroToken) -> OAuthUserInfo:
        response = await self._send(
            "GET", self.USERINFO_URL, headers=self._bearer(token.access_token)
        )
        if response.status_code >= 400:
            raise self._data_error(response, "Failed to get user info")
        return OAuthUserInfo(**self._safe_json(response))

    async def fetch_company_info(self, token: XeroToken) -> RemoteCompanyInfo:
        tenants = await self._list_tenants(token.access_token)
        for tenant in tenants:
            if tenant.tenantId == token.tenant_id:
                return RemoteCompanyInfo(
                    company_name=tenant.tenantName or tenant.tenantId,
                    tenant_id=tenant.tenantId,
                )
        raise IntegrationConnectionError(
            f"Xero tenant {token.tenant_id} is no longer connected"
        )

    # Token inspection
    def parse_token(self, data: Dict[str, Any]) -> XeroToken:
        return XeroToken(**data)

    def access_token_expires_at(self, token: XeroToken) -> datetime:
        return datetime.fromtimestamp(token.expires_at, tz=timezone.utc)

    def refresh_token_expires_at(self, token: XeroToken) -> Optional[datetime]:
        # Xero does not report refresh token lifetime
        return None

    def tenant_id(self, token: XeroToken) -> Optional[str]:
        return token.tenant_id

    # Data
    def first_cursor(self, page_size: int) -> Cursor:
        return Cursor(provider=self.kind, position=1, page_size=page_size)

    async def fetch_items_page(
        self, token: XeroToken, cursor: Cursor
    ) -> Page[RemoteItem]:
        data = await self._get_json(token, "Items", self._page_params(cursor))
        rows = self._unless_repeated(cursor, data.get("Items") or [], "ItemID")
        items = [self._map_item(row) for row in rows]
        return Page[RemoteItem](
            records=items, next_cursor=self._next_cursor(cursor, rows, "ItemID")
        )

    async def fetch_customers_page(
        self, token: XeroToken, cursor: Cursor
    ) -> Page[RemoteCustomer]:
        params = self._page_params(cursor)
        params.update({"includeArchived": "true", "summaryOnly": "true"})
        data = await self._get_json(token, "Contacts", params)
        rows = self._unless_repeated(cursor, data.get("Contacts") or [], "ContactID")
        customers = [
            RemoteCustomer(
                external_id=row.get("ContactID"),
                display_name=row.get("Name"),
                is_archived=row.get("ContactStatus") == "ARCHIVED",
            )
            for row in rows
        ]
        return Page[RemoteCustomer](
            records=customers, next_cursor=self._next_cursor(cursor, rows, "ContactID")
        )

    async def create_estimate(
        self, token: XeroToken, draft: EstimateDraft
    ) -> RemoteDocumentRef:
        payload = self.render_quote(draft)
        response = await self._send(
            "PUT",
            f"{self.API_URL}/Quotes",
            json=payload,
            headers=self._api_headers(token),
        )

        if response.status_code in (401, 429) or response.status_code >= 500:
            raise self._data_error(response, "Quote creation failed")

        body = self._safe_json(response)
        fault = self._extract_validation_errors(body)
        if fault is not None:
            code, message = fault
            raise ProviderCallError(
                self.kind,
                FailureCause.DOCUMENT_FAULT,
                message,
                status_code=response.status_code,
                error_code=code,
            )
        if response.status_code >= 400:
            raise self._data_error(response, "Quote creation failed")

        quotes = body.get("Quotes") or []
        quote_id = quotes[0].get("QuoteID") if quotes else None
        if not quote_id:
            raise ProviderCallError(
                self.kind,
                FailureCause.TRANSIENT,
                "Quote response did not include a QuoteID",
                status_code=response.status_code,
            )

        return RemoteDocumentRef(
            document_id=quote_id,
            document_number=quotes[0].get("QuoteNumber"),
            url=f"{self.QUOTE_WEB_URL}{quote_id}",
        )

    def validate_draft(self, draft: EstimateDraft) -> None:
        for line in draft.lines:
            if not line.sku:
                raise IntegrationValidationError(
                    f"Xero quote lines need an item code: '{line.description}' has no SKU"
                )

    def render_quote(self, draft: EstimateDraft) -> Dict[str, Any]:
        """Render a provider-neutral draft as a Xero Quotes payload."""
        self.validate_draft(draft)
        line_items = []
        for line in draft.lines:
            line_item: Dict[str, Any] = {
                "ItemCode": line.sku,
                "Description": line.description,
                "Quantity": float(line.quantity),
                "UnitAmount": float(line.unit_price),
            }
            if line.tax_code_ref:
                line_item["TaxType"] = line.tax_code_ref
            line_items.append(line_item)

        quote: Dict[str, Any] = {
            "Contact": {"ContactID": draft.customer_external_id},
            "Date": draft.txn_date.isoformat(),
            "QuoteNumber": draft.doc_number,
            "Status": "DRAFT",
            "LineItems": line_items,
        }
        if draft.memo:
            quote["Summary"] = draft.memo
        if draft.private_note:
            quote["Reference"] = draft.private_note
        return {"Quotes": [quote]}

    async def aclose(self) -> None:
        await self.http.aclose()

    # Internals
    @staticmethod
    def _bearer(access_token: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {access_token}",
            "Accept": "application/json",
        }

    def _api_headers(self, token: XeroToken) -> Dict[str, str]:
        headers = self._bearer(token.access_token)
        headers["Content-Type"] = "application/json"
        if token.tenant_id:
            headers["Xero-Tenant-Id"] = token.tenant_id
        return headers

    @staticmethod
    def _page_params(cursor: Cursor) -> Dict[str, str]:
        return {"page": str(cursor.position), "pageSize": str(cursor.page_size)}

    @staticmethod
    def _next_cursor(
        cursor: Cursor, rows: List[Dict[str, Any]], id_key: str
    ) -> Optional[Cursor]:
        if len(rows) < cursor.page_size:
            return None
        return cursor.model_copy(
            update={"position": cursor.position + 1, "anchor": rows[0].get(id_key)}
        )

    @staticmethod
    def _unless_repeated(
        cursor: Cursor, rows: List[Dict[str, Any]], id_key: str
    ) -> List[Dict[str, Any]]:
        """Drop a page that starts where the previous one did; the page parameter was ignored."""
        if rows and cursor.anchor is not None and rows[0].get(id_key) == cursor.anchor:
            logger.warning(
                f"Xero returned page {cursor.position - 1} again for page "
                f"{cursor.position}; stopping pagination"
            )
            return []
        return rows

    @staticmethod
    def _map_item(row: Dict[str, Any]) -> RemoteItem:
        sales = row.get("SalesDetails") or {}
        return RemoteItem(
            external_id=row.get("ItemID"),
            name=row.get("Name"),
            sku=(row.get("Code") or "").strip() or None,
            price=_to_decimal(sales.get("UnitPrice")),
            quantity_on_hand=_to_decimal(row.get("QuantityOnHand")),
            tax_code_ref=sales.get("TaxType"),
            is_archived=row.get("IsSold") is False,
        )

    def _build_token(
        self, response: XeroTokenResponse, tenant_id: Optional[str]
    ) -> XeroToken:
        now = int(datetime.now(timezone.utc).timestamp())
        return XeroToken(
            access_token=response.access_token,
            refresh_token=response.refresh_token,
            token_type=response.token_type,
            expires_at=now + response.expires_in,
            tenant_id=tenant_id,
            id_token=response.id_token,
            scope=response.scope,
            created_at=now,
        )

    async def _list_tenants(self, access_token: str) -> List[XeroTenantInfo]:
        response = await self._send(
            "GET", self.CONNECTIONS_URL, headers=self._bearer(access_token)
        )
        if response.status_code >= 400:
            raise self._data_error(response, "Failed to get tenant info")
        body = response.json()
        return [XeroTenantInfo(**tenant) for tenant in body or []]

    async def _get_json(
        self, token: XeroToken, resource: str, params: Dict[str, str]
    ) -> Dict[str, Any]:
        response = await self._send(
            "GET",
            f"{self.API_URL}/{resource}",
            params=params,
            headers=self._api_headers(token),
        )
        if response.status_code >= 400:
            raise self._data_error(response, f"Xero {resource} request failed")
        return self._safe_json(response)

    async def _token_request(self, data: Dict[str, str]) -> XeroTokenResponse:
        token_data = dict(data)
        token_data["client_id"] = self.client_id or ""
        token_data["client_secret"] = self.client_secret or ""

        response = await self._send(
            "POST",
            self.TOKEN_URL,
            data=token_data,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )

        if response.status_code >= 400:
            body = self._safe_json(response)
            error_code = body.get("error")
            cause = (
                FailureCause.REVOKED
                if error_code == "invalid_grant"
                else FailureCause.TRANSIENT
            )
            raise ProviderCallError(
                self.kind,
                cause,
                f"Token request failed: {body.get('error_description') or response.text}",
                status_code=response.status_code,
                error_code=error_code,
                retry_after=_retry_after(response),
            )

        return XeroTokenResponse(**response.json())

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderCallError(
                self.kind, FailureCause.TRANSIENT, f"Xero request timed out: {e}"
            )
        except httpx.RequestError as e:
            raise ProviderCallError(
                self.kind, FailureCause.TRANSIENT, f"Xero request failed: {e}"
            )

    def _data_error(self, response: httpx.Response, prefix: str) -> ProviderCallError:
        cause = (
            FailureCause.REVOKED
            if response.status_code == 401
            else FailureCause.TRANSIENT
        )
        return ProviderCallError(
            self.kind,
            cause,
            f"{prefix} ({response.status_code}): {response.text}",
            status_code=response.status_code,
            retry_after=_retry_after(response),
        )

    @staticmethod
    def _safe_json(response: httpx.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError:
            return {}
        return body if isinstance(body, dict) else {}

    @staticmethod
    def _extract_validation_errors(body: Dict[str, Any]) -> Optional[tuple]:
        """Return (code, message) for a ValidationException or per-quote errors."""
        messages: List[str] = []
        code: Optional[str] = None

        if body.get("Type") == "ValidationException":
            code = "ValidationException"
            for element in body.get("Elements") or []:
                for error in element.get("ValidationErrors") or []:
                    messages.append(error.get("Message", ""))
            if not messages and body.get("Message"):
                messages.append(body["Message"])

        for quote in body.get("Quotes") or []:
            for error in quote.get("ValidationErrors") or []:
                code = code or "ValidationError"
                messages.append(error.get("Message", ""))

        if code is None:
            return None
        return (code, "; ".join(m for m in messages if m) or "Validation failed")


def _to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return Decimal("0")


def _retry_after(response: httpx.Response) -> Optional[float]:
    value = response.headers.get("Retry-After")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None
