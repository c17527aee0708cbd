from typing import Any, List

from .adapter import BaseProviderAdapter
from .types import (
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


class ProviderClient:
    """
    An adapter bound to one company's valid access token.

    Only the token manager hands these out. A client is meant for a single
    operation; callers must not keep it across runs.
    """

    def __init__(self, adapter: BaseProviderAdapter, token: Any, company_id: str):
        self.adapter = adapter
        self.token = token
        self.company_id = company_id

    @property
    def provider(self) -> ProviderKind:
        return self.adapter.kind

    @property
    def tenant_id(self):
        return self.adapter.tenant_id(self.token)

    def first_cursor(self, page_size: int) -> Cursor:
        return self.adapter.first_cursor(page_size)

    async def fetch_items_page(self, cursor: Cursor) -> Page[RemoteItem]:
        return await self.adapter.fetch_items_page(self.token, cursor)

    async def fetch_customers_page(self, cursor: Cursor) -> Page[RemoteCustomer]:
        return await self.adapter.fetch_customers_page(self.token, cursor)

    async def list_categories(self) -> List[RemoteCategory]:
        return await self.adapter.list_categories(self.token)

    async def create_estimate(self, draft: EstimateDraft) -> RemoteDocumentRef:
        return await self.adapter.create_estimate(self.token, draft)

    async def fetch_company_info(self) -> RemoteCompanyInfo:
        return await self.adapter.fetch_company_info(self.token)

    async def fetch_user_info(self) -> OAuthUserInfo:
        return await self.adapter.fetch_user_info(self.token)
