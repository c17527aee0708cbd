from .matching import ProductMatcher, parse_items_description
from .models import ConversionOutcome, LocalOrder, LocalOrderLine
from .service import FinalizationService

__all__ = [
    "ConversionOutcome",
    "FinalizationService",
    "LocalOrder",
    "LocalOrderLine",
    "ProductMatcher",
    "parse_items_description",
]
