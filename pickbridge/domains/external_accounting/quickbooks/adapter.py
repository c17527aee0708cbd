# pickbridge/domains/external_accounting/quickbooks/adapter.py
import logging
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional
from urllib.parse import urlencode

import httpx

from pickbridge.core.settings import settings
from pickbridge.shared.exceptions import (
    IntegrationAuthenticationError,
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
    RemoteCategory,
    RemoteCompanyInfo,
    RemoteCustomer,
    RemoteDocumentRef,
    RemoteItem,
)
from .types import QboToken, QboTokenResponse, QboUserInfo

logger = logging.getLogger(__name__)

# QuickBooks query ceiling; categories are listed in one request
MAX_CATEGORIES = 1000


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


class QuickBooksAdapter(BaseProviderAdapter[QboToken]):
    """QuickBooks Online implementation of the provider capability interface."""

    kind = ProviderKind.QUICKBOOKS
    supports_categories = True

    AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
    TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
    REVOKE_URL = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
    USERINFO_URLS = {
        "sandbox": "https://sandbox-accounts.platform.intuit.com/v1/openid_connect/userinfo",
        "production": "https://accounts.platform.intuit.com/v1/openid_connect/userinfo",
    }
    API_BASE_URLS = {
        "sandbox": "https://sandbox-quickbooks.api.intuit.com/",
        "production": "https://quickbooks.api.intuit.com/",
    }
    WEB_BASE_URLS = {
        "sandbox": "https://sandbox.qbo.intuit.com/app/",
        "production": "https://qbo.intuit.com/app/",
    }

    def __init__(
        self,
        client_id: Optional[str] = None,
        client_secret: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        environment: Optional[str] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self.client_id = client_id or settings.QBO_CLIENT_ID
        self.client_secret = client_secret or settings.QBO_CLIENT_SECRET
        self.redirect_uri = redirect_uri or settings.QBO_REDIRECT_URI
        self.environment = environment or settings.QBO_ENVIRONMENT
        self.scopes = settings.QBO_SCOPES
        self.minor_version = settings.QBO_MINOR_VERSION
        self.http = http_client or httpx.AsyncClient(
            timeout=timeout or settings.HTTP_TIMEOUT_SECONDS
        )

    @property
    def api_base_url(self) -> str:
        return self.API_BASE_URLS[self.environment]

    # OAuth
    def build_auth_url(self, state: str) -> str:
        auth_params = {
            "client_id": self.client_id,
            "response_type": "code",
            "scope": self.scopes,
            "redirect_uri": self.redirect_uri,
            "state": state,
        }
        return f"{self.AUTH_URL}?{urlencode(auth_params)}"

    async def exchange_code(
        self, code: str, callback_params: Dict[str, str]
    ) -> QboToken:
        realm_id = callback_params.get("realmId")
        if not realm_id:
            raise IntegrationAuthenticationError(
                "QuickBooks callback did not include a realmId"
            )

        token_response = await self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.redirect_uri,
            }
        )
        return self._build_token(token_response, realm_id)

    async def refresh(self, token: QboToken) -> QboToken:
        token_response = await self._token_request(
            {"grant_type": "refresh_token", "refresh_token": token.refresh_token}
        )
        logger.info(f"Refreshed QuickBooks token for realm {token.realmId}")
        return self._build_token(token_response, token.realmId)

    async def revoke(self, token: QboToken) -> None:
        response = await self._send(
            "POST",
            self.REVOKE_URL,
            auth=(self.client_id or "", self.client_secret or ""),
            json={"token": token.refresh_token},
            headers={"Accept": "application/json"},
        )
        if response.status_code >= 400:
            raise self._data_error(response, "Token revocation failed")

    async def fetch_user_info(self, token: QboToken) -> OAuthUserInfo:
        data = await self._get_json(self.USERINFO_URLS[self.environment], token)
        user = QboUserInfo(**data)
        return OAuthUserInfo(
            given_name=user.givenName, family_name=user.familyName, email=user.email
        )

    async def fetch_company_info(self, token: QboToken) -> RemoteCompanyInfo:
        url = (
            f"{self._company_url(token)}/companyinfo/{token.realmId}"
            f"?minorversion={self.minor_version}"
        )
        data = await self._get_json(url, token)
        company_info = data.get("CompanyInfo") or {}
        return RemoteCompanyInfo(
            company_name=company_info.get("CompanyName") or token.realmId,
            tenant_id=token.realmId,
        )

    # Token inspection
    def parse_token(self, data: Dict[str, Any]) -> QboToken:
        return QboToken(**data)

    def access_token_expires_at(self, token: QboToken) -> datetime:
        return self._issued_at(token) + timedelta(seconds=token.expires_in)

    def refresh_token_expires_at(self, token: QboToken) -> Optional[datetime]:
        return self._issued_at(token) + timedelta(
            seconds=token.x_refresh_token_expires_in
        )

    def tenant_id(self, token: QboToken) -> Optional[str]:
        return token.realmId

    # Data
    def first_cursor(self, page_size: int) -> Cursor:
        return Cursor(provider=self.kind, position=1, page_size=page_size)

    async def fetch_items_page(self, token: QboToken, cursor: Cursor) -> Page[RemoteItem]:
        """
        Fetch one page of items. Category rows are never products.

        With `cursor.category_ids` only items under those categories are listed,
        and items without a SKU are left out.
        """
        condition = None
        if cursor.category_ids:
            condition = f"ParentRef IN ({self._quoted_ids(cursor.category_ids)})"
        rows = await self._query(token, "Item", cursor, condition)

        items = []
        for row in rows:
            if row.get("Type") == "Category":
                continue
            if cursor.category_ids and not (row.get("Sku") or "").strip():
                logger.debug(f"Leaving out QuickBooks item {row.get('Id')} without SKU")
                continue
            items.append(self._map_item(row))

        return Page[RemoteItem](
            records=items, next_cursor=self._next_cursor(cursor, len(rows))
        )

    async def list_categories(self, token: QboToken) -> List[RemoteCategory]:
        query = (
            "SELECT * FROM Item WHERE Type = 'Category' "
            f"ORDERBY Name MAXRESULTS {MAX_CATEGORIES}"
        )
        url = f"{self._company_url(token)}/query?" + urlencode(
            {"query": query, "minorversion": self.minor_version}
        )
        data = await self._get_json(url, token)
        rows = (data.get("QueryResponse") or {}).get("Item") or []
        return [
            RemoteCategory(
                external_id=str(row.get("Id")),
                name=row.get("Name") or "",
                fully_qualified_name=row.get("FullyQualifiedName") or row.get("Name"),
                is_active=row.get("Active") is not False,
            )
            for row in rows
        ]

    async def fetch_customers_page(
        self, token: QboToken, cursor: Cursor
    ) -> Page[RemoteCustomer]:
        rows = await self._query(token, "Customer", cursor)
        customers = [
            RemoteCustomer(
                external_id=row.get("Id"),
                display_name=row.get("DisplayName"),
                is_archived=row.get("Active") is False,
            )
            for row in rows
        ]
        return Page[RemoteCustomer](
            records=customers, next_cursor=self._next_cursor(cursor, len(rows))
        )

    async def create_estimate(
        self, token: QboToken, draft: EstimateDraft
    ) -> RemoteDocumentRef:
        url = f"{self._company_url(token)}/estimate?minorversion={self.minor_version}"
        response = await self._send(
            "POST",
            url,
            json=self.render_estimate(draft),
            headers=self._auth_headers(token),
        )

        if response.status_code == 401 or response.status_code == 429:
            raise self._data_error(response, "Estimate creation failed")

        body = self._safe_json(response)
        fault = self._extract_fault(body)
        if fault is not None and response.status_code < 500:
            code, message = fault
            raise ProviderCallError(
                self.kind,
                FailureCause.DOCUMENT_FAULT,
                message,
                status_code=response.status_code,
                error_code=code,
            )
        if response.status_code >= 400:
            raise self._data_error(response, "Estimate creation failed")

        estimate = body.get("Estimate") or {}
        estimate_id = estimate.get("Id")
        if not estimate_id:
            raise ProviderCallError(
                self.kind,
                FailureCause.TRANSIENT,
                "Estimate response did not include an Id",
                status_code=response.status_code,
            )

        return RemoteDocumentRef(
            document_id=str(estimate_id),
            document_number=estimate.get("DocNumber"),
            url=f"{self.WEB_BASE_URLS[self.environment]}estimate?txnId={estimate_id}",
        )

    def render_estimate(self, draft: EstimateDraft) -> Dict[str, Any]:
        """Render a provider-neutral draft as a QuickBooks Estimate payload."""
        lines = []
        for line in draft.lines:
            detail: Dict[str, Any] = {
                "ItemRef": {"value": line.external_item_id},
                "Qty": float(line.quantity),
                "UnitPrice": float(line.unit_price),
            }
            tax_code = line.tax_code_ref or settings.QBO_DEFAULT_TAX_CODE
            if tax_code:
                detail["TaxCodeRef"] = {"value": tax_code}

            lines.append(
                {
                    "DetailType": "SalesItemLineDetail",
                    "Amount": float(line.amount),
                    "Description": line.description,
                    "SalesItemLineDetail": detail,
                }
            )

        payload: Dict[str, Any] = {
            "CustomerRef": {"value": draft.customer_external_id},
            "DocNumber": draft.doc_number,
            "TxnDate": draft.txn_date.isoformat(),
            "Line": lines,
        }
        if draft.memo:
            payload["CustomerMemo"] = {"value": draft.memo}
        if draft.private_note:
            payload["PrivateNote"] = draft.private_note
        return payload

    async def aclose(self) -> None:
        await self.http.aclose()

    # Internals
    def _company_url(self, token: QboToken) -> str:
        return f"{self.api_base_url}v3/company/{token.realmId}"

    def _auth_headers(self, token: QboToken) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {token.access_token}",
            "Accept": "application/json",
            "Content-Type": "application/json",
        }

    def _issued_at(self, token: QboToken) -> datetime:
        return datetime.fromtimestamp(token.created_at / 1000, tz=timezone.utc)

    def _build_token(self, response: QboTokenResponse, realm_id: str) -> QboToken:
        return QboToken(
            **response.model_dump(),
            realmId=realm_id,
            created_at=int(datetime.now(timezone.utc).timestamp() * 1000),
        )

    def _next_cursor(self, cursor: Cursor, row_count: int) -> Optional[Cursor]:
        if row_count < cursor.page_size:
            return None
        return cursor.model_copy(update={"position": cursor.position + row_count})

    def _map_item(self, row: Dict[str, Any]) -> RemoteItem:
        return RemoteItem(
            external_id=row.get("Id"),
            name=row.get("Name"),
            sku=(row.get("Sku") or "").strip() or None,
            price=_to_decimal(row.get("UnitPrice")),
            quantity_on_hand=_to_decimal(row.get("QtyOnHand")),
            tax_code_ref=(row.get("SalesTaxCodeRef") or {}).get("value"),
            category=(row.get("ParentRef") or {}).get("name"),
            is_archived=row.get("Active") is False,
        )

    @staticmethod
    def _quoted_ids(ids: Iterable[str]) -> str:
        for value in ids:
            if not value.isdigit():
                raise IntegrationValidationError(f"Invalid QuickBooks category id: {value!r}")
        return ", ".join(f"'{value}'" for value in ids)

    async def _query(
        self,
        token: QboToken,
        entity: str,
        cursor: Cursor,
        condition: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        where = "Active IN (true, false)"
        if condition:
            where = f"{where} AND {condition}"
        query = (
            f"SELECT * FROM {entity} WHERE {where} ORDERBY Id "
            f"STARTPOSITION {cursor.position} MAXRESULTS {cursor.page_size}"
        )
        url = f"{self._company_url(token)}/query?" + urlencode(
            {"query": query, "minorversion": self.minor_version}
        )
        data = await self._get_json(url, token)
        return (data.get("QueryResponse") or {}).get(entity) or []

    async def _get_json(self, url: str, token: QboToken) -> Dict[str, Any]:
        response = await self._send("GET", url, headers=self._auth_headers(token))
        if response.status_code >= 400:
            raise self._data_error(response, "QuickBooks request failed")
        return self._safe_json(response)

    async def _token_request(self, data: Dict[str, str]) -> QboTokenResponse:
        response = await self._send(
            "POST",
            self.TOKEN_URL,
            data=data,
            auth=(self.client_id or "", self.client_secret or ""),
            headers={
                "Accept": "application/json",
                "Content-Type": "application/x-www-form-urlencoded",
            },
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

        return QboTokenResponse(**response.json())

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self.http.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderCallError(
                self.kind, FailureCause.TRANSIENT, f"QuickBooks request timed out: {e}"
            )
        except httpx.RequestError as e:
            raise ProviderCallError(
                self.kind, FailureCause.TRANSIENT, f"QuickBooks request failed: {e}"
            )

    def _data_error(self, response: httpx.Response, prefix: str) -> ProviderCallError:
        if response.status_code == 401:
            cause = FailureCause.REVOKED
        else:
            cause = FailureCause.TRANSIENT

        fault = self._extract_fault(self._safe_json(response))
        detail = fault[1] if fault else response.text
        return ProviderCallError(
            self.kind,
            cause,
            f"{prefix} ({response.status_code}): {detail}",
            status_code=response.status_code,
            error_code=fault[0] if fault else None,
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
    def _extract_fault(body: Dict[str, Any]) -> Optional[tuple]:
        """Return (code, message) of the first Fault error, if any."""
        fault = body.get("Fault") or body.get("fault")
        if not fault:
            return None
        errors = fault.get("Error") or fault.get("error") or []
        if not errors:
            return (fault.get("type"), "Unknown QuickBooks fault")
        first = errors[0]
        message = first.get("Message") or first.get("message") or "Unknown fault"
        detail = first.get("Detail") or first.get("detail")
        if detail and detail != message:
            message = f"{message}: {detail}"
        return (first.get("code"), message)
