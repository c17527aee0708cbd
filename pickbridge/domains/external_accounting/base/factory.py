from typing import Dict, Iterable, Optional

from pickbridge.shared.exceptions import IntegrationConnectionError

from .adapter import BaseProviderAdapter
from .types import ProviderKind


class ProviderRegistry:
    """Holds one adapter per supported provider for the lifetime of the process."""

    def __init__(self, adapters: Iterable[BaseProviderAdapter]):
        self._adapters: Dict[ProviderKind, BaseProviderAdapter] = {
            adapter.kind: adapter for adapter in adapters
        }

    @classmethod
    def from_settings(cls, timeout: Optional[float] = None) -> "ProviderRegistry":
        """Build the production registry with both provider adapters."""
        from pickbridge.domains.external_accounting.quickbooks.adapter import (
            QuickBooksAdapter,
        )
        from pickbridge.domains.external_accounting.xero.adapter import XeroAdapter

        return cls([QuickBooksAdapter(timeout=timeout), XeroAdapter(timeout=timeout)])

    def get(self, provider: ProviderKind | str) -> BaseProviderAdapter:
        """Get the adapter for a provider."""
        try:
            kind = ProviderKind(provider)
        except ValueError:
            raise IntegrationConnectionError(
                f"Unsupported integration provider: {provider}"
            )

        adapter = self._adapters.get(kind)
        if adapter is None:
            raise IntegrationConnectionError(
                f"Unsupported integration provider: {provider}"
            )
        return adapter

    def providers(self) -> list[ProviderKind]:
        return list(self._adapters)

    async def aclose(self) -> None:
        for adapter in self._adapters.values():
            await adapter.aclose()
