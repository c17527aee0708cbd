# tests/fixtures/provider_fixtures.py
"""Scripted provider adapter and token lifecycle fixtures."""
import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from pydantic import BaseModel

from pickbridge.domains.external_accounting.base.adapter import BaseProviderAdapter
from pickbridge.domains.external_accounting.base.factory import ProviderRegistry
from pickbridge.domains.external_accounting.base.types import (
    Cursor,
    EstimateDraft,
    OAuthUserInfo,
    Page,
    ProviderKind,
    RemoteCategory,
    RemoteCompanyInfo,
    RemoteCustomer,
    RemoteDocumentRef,
    RemoteItem,
)
from pickbridge.domains.external_accounting.tokens.manager import TokenLifecycleManager
from pickbridge.domains.external_accounting.tokens.store import TokenStore


def epoch_in(seconds: int) -> int:
    return int(datetime.now(timezone.utc).timestamp()) + seconds


class FakeToken(BaseModel):
    access_token: str
    refresh_token: str
    expires_at: int
    refresh_expires_at: Optional[int] = None
    tenant_id: str = "tenant-1"


class FakeAdapter(BaseProviderAdapter[FakeToken]):
    """
    Adapter serving records from lists.

    Errors can be scripted per page (1-based fetch number) and counters record
    every call, so tests can assert on network traffic.
    """

    def __init__(
        self,
        kind: ProviderKind = ProviderKind.QUICKBOOKS,
        items: Optional[List[RemoteItem]] = None,
        customers: Optional[List[RemoteCustomer]] = None,
    ):
        self.kind = kind
        self.items = list(items or [])
        self.customers = list(customers or [])
        self.item_fetches = 0
        self.item_cursors: List[Cursor] = []
        self.categories: List[RemoteCategory] = []
        self.categories_error: Optional[Exception] = None
        self.customer_fetches = 0
        self.item_page_errors: Dict[int, Exception] = {}
        self.customer_page_errors: Dict[int, Exception] = {}
        self.after_item_page: Optional[Callable[[int], None]] = None
        self.refresh_calls = 0
        self.refresh_error: Optional[Exception] = None
        self.refresh_delay = 0.0
        self.revoke_calls = 0
        self.revoke_error: Optional[Exception] = None
        self.estimate_errors: List[Exception] = []
        self.drafts: List[EstimateDraft] = []
        self.exchange_error: Optional[Exception] = None

    def build_auth_url(self, state: str) -> str:
        return f"https://provider.example/authorize?state={state}"

    async def exchange_code(self, code: str, callback_params: Dict[str, str]) -> FakeToken:
        if self.exchange_error:
            raise self.exchange_error
        return FakeToken(
            access_token=f"access-{code}",
            refresh_token=f"refresh-{code}",
            expires_at=epoch_in(3600),
            tenant_id=callback_params.get("realmId", "tenant-1"),
        )

    async def refresh(self, token: FakeToken) -> FakeToken:
        self.refresh_calls += 1
        if self.refresh_delay:
            await asyncio.sleep(self.refresh_delay)
        if self.refresh_error:
            raise self.refresh_error
        return token.model_copy(
            update={
                "access_token": f"refreshed-{self.refresh_calls}",
                "expires_at": epoch_in(3600),
            }
        )

    async def revoke(self, token: FakeToken) -> None:
        self.revoke_calls += 1
        if self.revoke_error:
            raise self.revoke_error

    async def fetch_user_info(self, token: FakeToken) -> OAuthUserInfo:
        return OAuthUserInfo(given_name="Test", family_name="User", email="test@example.com")

    async def fetch_company_info(self, token: FakeToken) -> RemoteCompanyInfo:
        return RemoteCompanyInfo(company_name="Remote Co", tenant_id=token.tenant_id)

    def parse_token(self, data: Dict[str, Any]) -> FakeToken:
        return FakeToken(**data)

    def access_token_expires_at(self, token: FakeToken) -> datetime:
        return datetime.fromtimestamp(token.expires_at, tz=timezone.utc)

    def refresh_token_expires_at(self, token: FakeToken) -> Optional[datetime]:
        if token.refresh_expires_at is None:
            return None
        return datetime.fromtimestamp(token.refresh_expires_at, tz=timezone.utc)

    def tenant_id(self, token: FakeToken) -> Optional[str]:
        return token.tenant_id

    def first_cursor(self, page_size: int) -> Cursor:
        return Cursor(provider=self.kind, position=1, page_size=page_size)

    async def fetch_items_page(self, token: FakeToken, cursor: Cursor) -> Page[RemoteItem]:
        self.item_fetches += 1
        self.item_cursors.append(cursor)
        if self.item_fetches in self.item_page_errors:
            raise self.item_page_errors[self.item_fetches]
        items = self.items
        if cursor.category_ids:
            items = [i for i in items if i.category in cursor.category_ids]
        page = self._slice(items, cursor)
        if self.after_item_page:
            self.after_item_page(self.item_fetches)
        return page

    async def list_categories(self, token: FakeToken) -> List[RemoteCategory]:
        if self.categories_error:
            raise self.categories_error
        return list(self.categories)

    async def fetch_customers_page(
        self, token: FakeToken, cursor: Cursor
    ) -> Page[RemoteCustomer]:
        self.customer_fetches += 1
        if self.customer_fetches in self.customer_page_errors:
            raise self.customer_page_errors[self.customer_fetches]
        return self._slice(self.customers, cursor)

    async def create_estimate(
        self, token: FakeToken, draft: EstimateDraft
    ) -> RemoteDocumentRef:
        self.drafts.append(draft)
        if self.estimate_errors:
            raise self.estimate_errors.pop(0)
        document_id = f"doc-{len(self.drafts)}"
        return RemoteDocumentRef(
            document_id=document_id,
            document_number=draft.doc_number,
            url=f"https://provider.example/documents/{document_id}",
        )

    async def aclose(self) -> None:
        pass

    @staticmethod
    def _slice(records: list, cursor: Cursor) -> Page:
        start = cursor.position - 1
        chunk = records[start : start + cursor.page_size]
        next_cursor = None
        if len(chunk) >= cursor.page_size:
            next_cursor = cursor.model_copy(
                update={"position": cursor.position + len(chunk)}
            )
        return Page(records=chunk, next_cursor=next_cursor)


def make_items(count: int, prefix: str = "item") -> List[RemoteItem]:
    return [
        RemoteItem(
            external_id=str(i),
            name=f"Product {i}",
            sku=f"{prefix.upper()}-{i:05d}",
            price="9.50",
            quantity_on_hand=10,
        )
        for i in range(1, count + 1)
    ]


def make_customers(count: int) -> List[RemoteCustomer]:
    return [
        RemoteCustomer(external_id=f"C{i}", display_name=f"Customer {i}")
        for i in range(1, count + 1)
    ]


async def seed_token(
    token_store: TokenStore,
    company_id: str,
    provider: ProviderKind = ProviderKind.QUICKBOOKS,
    expires_in: int = 3600,
    refresh_expires_in: Optional[int] = None,
    tenant_id: str = "tenant-1",
) -> FakeToken:
    """Store an encrypted FakeToken for a company."""
    token = FakeToken(
        access_token="stored-access",
        refresh_token="stored-refresh",
        expires_at=epoch_in(expires_in),
        refresh_expires_at=(
            epoch_in(refresh_expires_in) if refresh_expires_in is not None else None
        ),
        tenant_id=tenant_id,
    )
    await token_store.save(company_id, provider, token, tenant_id)
    return token


async def seed_malformed_token(
    token_store: TokenStore,
    company_id: str,
    provider: ProviderKind = ProviderKind.QUICKBOOKS,
    payload: Optional[Dict[str, Any]] = None,
) -> None:
    """Store a token that decrypts but does not fit the provider's token model."""
    ciphertext = token_store.cipher.encrypt(json.dumps(payload or {"access_token": "x"}))
    await token_store.store.save_token(company_id, provider, ciphertext, None)


@pytest.fixture
def fake_adapter() -> FakeAdapter:
    return FakeAdapter()


@pytest.fixture
def provider_registry(fake_adapter: FakeAdapter) -> ProviderRegistry:
    return ProviderRegistry([fake_adapter, FakeAdapter(kind=ProviderKind.XERO)])


@pytest.fixture
def token_store(memory_store, token_cipher) -> TokenStore:
    return TokenStore(memory_store, token_cipher)


@pytest.fixture
def token_manager(
    memory_store, provider_registry: ProviderRegistry, token_store: TokenStore
) -> TokenLifecycleManager:
    return TokenLifecycleManager(memory_store, provider_registry, token_store)
