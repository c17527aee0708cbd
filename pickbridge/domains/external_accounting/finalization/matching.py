"""
Product matching for imported order lines.

Imported spreadsheets describe lines as free text such as
"2x(00) Semolina Fine 1KGx12". Lines are parsed into quantity and product name
and matched against the company's non-archived products by similarity of name,
SKU or barcode.
"""

import logging
import re
from difflib import SequenceMatcher
from typing import List, Optional

from ..base.models import ProductRecord
from ..base.store import BaseIntegrationStore
from .models import ImportedLine, MatchedLine

logger = logging.getLogger(__name__)

MATCH_THRESHOLD = 0.4

# quantity, optional "x", optional parenthesised code, product name
_LINE_PATTERN = re.compile(r"^(\d+)\s*x?\s*(?:\(([^)]*)\))?\s*(.+)$", re.IGNORECASE)
_CASE_SIZE_SUFFIX = re.compile(r"\s*x\d+$", re.IGNORECASE)
_SEPARATORS = re.compile(r"[,;\n\r]")


def parse_items_description(text: str) -> List[ImportedLine]:
    """Split a free-text items description into quantity/name lines."""
    if not text:
        return []

    lines: List[ImportedLine] = []
    for part in _SEPARATORS.split(text):
        trimmed = part.strip()
        if not trimmed:
            continue

        match = _LINE_PATTERN.match(trimmed)
        if match:
            quantity = int(match.group(1)) or 1
            product_name = _CASE_SIZE_SUFFIX.sub("", match.group(3).strip()).strip()
            lines.append(
                ImportedLine(
                    quantity=quantity, product_name=product_name, original_text=trimmed
                )
            )
        else:
            lines.append(
                ImportedLine(quantity=1, product_name=trimmed, original_text=trimmed)
            )

    return lines


def similarity(a: Optional[str], b: Optional[str]) -> float:
    if not a or not b:
        return 0.0
    return SequenceMatcher(None, a.casefold(), b.casefold()).ratio()


class ProductMatcher:
    """Matches imported lines to a company's products."""

    def __init__(self, store: BaseIntegrationStore, threshold: float = MATCH_THRESHOLD):
        self.store = store
        self.threshold = threshold

    async def match_line_items(
        self, company_id: str, lines: List[ImportedLine]
    ) -> List[MatchedLine]:
        candidates = await self.store.list_match_candidates(company_id)
        matched = [self._match(line, candidates) for line in lines]

        misses = sum(1 for line in matched if not line.matched)
        if misses:
            logger.info(
                f"{misses} of {len(matched)} imported lines unmatched for company {company_id}"
            )
        return matched

    def _match(self, line: ImportedLine, candidates: List[ProductRecord]) -> MatchedLine:
        best: Optional[ProductRecord] = None
        best_key = (0.0, 0.0)

        for product in candidates:
            name_score = similarity(product.name, line.product_name)
            score = max(
                name_score,
                similarity(product.sku, line.product_name),
                similarity(product.barcode, line.product_name),
            )
            if score <= self.threshold:
                continue
            # Ranked by name similarity, then by best field
            key = (name_score, score)
            if key > best_key:
                best, best_key = product, key

        if best is None:
            return MatchedLine(**line.model_dump())

        return MatchedLine(
            **line.model_dump(),
            matched=True,
            product_id=best.id,
            sku=best.sku,
            barcode=best.barcode,
            price=best.price,
            external_item_id=best.external_item_id,
            tax_code_ref=best.tax_code_ref,
            score=best_key[1],
        )
