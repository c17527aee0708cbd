from .adapter import BaseProviderAdapter
from .client import ProviderClient
from .factory import ProviderRegistry
from .models import SyncResult
from .store import BaseIntegrationStore
from .types import Cursor, FailureCause, Page, ProviderCallError, ProviderKind

__all__ = [
    "BaseProviderAdapter",
    "BaseIntegrationStore",
    "Cursor",
    "FailureCause",
    "Page",
    "ProviderCallError",
    "ProviderClient",
    "ProviderKind",
    "ProviderRegistry",
    "SyncResult",
]
