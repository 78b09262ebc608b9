"""
Base Strategy - Abstract base class for receipt line classification strategies

Every strategy implements:
1. classify() - Decide the role of one line, given its position and the receipt context

Strategies never raise for an unclassifiable line. They signal doubt through a
low confidence and leave the decision to the strategy chain.
"""

from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional, Tuple
import re

import structlog

from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassificationResult,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)

logger = structlog.get_logger()


# Keyword sets (English, French, Spanish). Matched case-insensitively on word boundaries.
KEYWORDS: Dict[str, Tuple[str, ...]] = {
    "tax": ("tax", "taxes", "vat", "gst", "hst", "pst", "sales tax", "tva", "taxe", "iva", "impuesto"),
    "tip": ("tip", "tips", "pourboire", "propina"),
    "gratuity": ("gratuity", "auto grat", "auto-grat", "large party", "party charge"),
    "subtotal": ("subtotal", "sub total", "sub-total", "sous-total", "sous total", "items total"),
    "total": ("total", "grand total", "amount due", "balance due", "total ttc", "importe"),
    "discount": ("discount", "coupon", "promo", "savings", "on sale", "remise", "descuento"),
    "delivery": ("delivery", "shipping", "postage", "freight", "livraison", "envío", "envio"),
    "service": (
        "service charge", "service fee", "processing fee", "convenience fee",
        "handling fee", "handling charge", "frais de service", "servicio",
    ),
}

# Words that signal an auto-added charge when next to a percentage
GRATUITY_MARKERS = ("gratuity", "service", "party", "auto", "grat")

PERCENTAGE_PATTERN = re.compile(r"(\d+(?:[.,]\d+)?)\s*%")
# Discount phrasing like "20% off" or "$5 off"; a bare "off" is not a discount
AMOUNT_OFF_PATTERN = re.compile(r"(?:\d\s*%|\$\s*\d+(?:[.,]\d+)?)\s*off(?!\w)", re.IGNORECASE)
QUANTITY_PATTERNS = (
    re.compile(r"^(\d+)\s*[x×]\s*", re.IGNORECASE),
    re.compile(r"^(\d+)\s+"),
)

_KEYWORD_PATTERNS = {}


def _keyword_pattern(keyword: str) -> "re.Pattern[str]":
    pattern = _KEYWORD_PATTERNS.get(keyword)
    if pattern is None:
        pattern = re.compile(r"(?<!\w)" + re.escape(keyword) + r"(?!\w)", re.IGNORECASE)
        _KEYWORD_PATTERNS[keyword] = pattern
    return pattern


class ClassificationStrategy(ABC):
    """
    Abstract base class for classification strategies.

    All strategies must implement:
    - classify(): Returns a ClassificationResult for one line
    - method: The ClassificationMethod recorded as provenance

    Utility methods provided:
    - has_keyword(): Word-boundary keyword match against a keyword set
    - contains_percentage() / extract_percentage(): "18%" style tokens
    - starts_with_quantity() / extract_quantity(): "2 Burgers", "3x Soda"
    """

    method: ClassificationMethod

    @abstractmethod
    def classify(
        self,
        item: RawLineItem,
        position: int,
        context: ReceiptContext,
    ) -> ClassificationResult:
        """
        Classify a single receipt line.

        Args:
            item: Line name and price
            position: 0-based line position in the receipt
            context: Receipt-level signals (declared totals, type, ...)

        Returns:
            ClassificationResult with category, confidence and method
        """
        pass

    @property
    def name(self) -> str:
        return self.method.value

    # Utility methods for common matching tasks

    def result(
        self,
        category: ItemCategory,
        confidence: float,
        reasoning: Optional[str] = None,
    ) -> ClassificationResult:
        """Build a result stamped with this strategy's method"""
        return ClassificationResult(
            category=category,
            confidence=max(0.0, min(1.0, confidence)),
            method=self.method,
            reasoning=reasoning,
        )

    def has_keyword(self, name: str, group: str) -> bool:
        """
        Check if the line name contains any keyword of a group.

        Args:
            name: Line name from OCR
            group: Key into KEYWORDS ("tax", "tip", ...)

        Returns:
            True if any keyword matches on word boundaries
        """
        if group == "discount" and AMOUNT_OFF_PATTERN.search(name):
            return True
        return self.matches_any(name, KEYWORDS[group])

    def matches_any(self, name: str, keywords: Iterable[str]) -> bool:
        return any(_keyword_pattern(keyword).search(name) for keyword in keywords)

    def has_total_keyword(self, name: str) -> bool:
        """Total keyword that is not part of a subtotal"""
        return self.has_keyword(name, "total") and not self.has_keyword(name, "subtotal")

    def contains_percentage(self, name: str) -> bool:
        return PERCENTAGE_PATTERN.search(name) is not None

    def extract_percentage(self, name: str) -> Optional[Decimal]:
        """
        Extract the first percentage in the line name.

        "Gratuity (18%)" → Decimal("18"), "TVA 5,5%" → Decimal("5.5")
        """
        match = PERCENTAGE_PATTERN.search(name)
        if not match:
            return None
        try:
            return Decimal(match.group(1).replace(",", "."))
        except InvalidOperation:
            logger.debug("percentage_parse_failed", name=name)
            return None

    def starts_with_quantity(self, name: str) -> bool:
        return self.extract_quantity(name) is not None

    def extract_quantity(self, name: str) -> Optional[int]:
        """Leading quantity token: "2 Burgers", "3x Soda", "2× Fries" """
        stripped = name.strip()
        for pattern in QUANTITY_PATTERNS:
            match = pattern.match(stripped)
            if match:
                return int(match.group(1))
        return None

    def is_exact_name(self, name: str, candidates: Iterable[str]) -> bool:
        """Whole-name match, ignoring case and a trailing colon"""
        normalized = name.strip().rstrip(":").strip().lower()
        return normalized in candidates
