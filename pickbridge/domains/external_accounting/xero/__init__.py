from .adapter import XeroAdapter
from .types import XeroToken

__all__ = ["XeroAdapter", "XeroToken"]
