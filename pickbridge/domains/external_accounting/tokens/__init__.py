from .manager import TokenLifecycleManager
from .models import RevokeResult, TokenStatus, TokenStatusResult
from .store import TokenStore

__all__ = [
    "RevokeResult",
    "TokenLifecycleManager",
    "TokenStatus",
    "TokenStatusResult",
    "TokenStore",
]
