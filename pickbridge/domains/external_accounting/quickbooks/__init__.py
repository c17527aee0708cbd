from .adapter import QuickBooksAdapter
from .types import QboToken

__all__ = ["QuickBooksAdapter", "QboToken"]
