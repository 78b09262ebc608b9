"""
Price Relationship Strategy - Check category hypotheses against receipt arithmetic

Uses the declared subtotal/total from the receipt context:
- Tax lines: implied rate (price / subtotal) vs the receipt type's tax range
- Tip lines: implied rate vs typical tip rates (15, 18, 20, 22, 25%)
- Total / subtotal lines: price vs the declared amount
- Anything else: weak hints from the price magnitude relative to the subtotal

Without a declared subtotal or total there is nothing to check against, and
the strategy answers unknown with low confidence.
"""
from decimal import Decimal
from typing import Optional, Tuple

from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassificationResult,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies.base import ClassificationStrategy

STANDARD_TIP_RATES = (Decimal("15"), Decimal("18"), Decimal("20"), Decimal("22"), Decimal("25"))

EXPLICIT_TAX_NAMES = ("tax", "sales tax", "vat")
EXPLICIT_TIP_NAMES = ("tip", "gratuity")

# Magnitude hints never outrank real evidence
MAGNITUDE_CONFIDENCE_CAP = 0.55

HUNDRED = Decimal("100")


class PriceRelationshipStrategy(ClassificationStrategy):
    """Arithmetic classification against declared receipt totals"""

    method = ClassificationMethod.PRICE_RELATIONSHIP

    def __init__(
        self,
        tip_rate_range: Tuple[Decimal, Decimal] = (Decimal("0.10"), Decimal("0.30")),
    ):
        self.tip_rate_range = tip_rate_range

    def classify(
        self,
        item: RawLineItem,
        position: int,
        context: ReceiptContext,
    ) -> ClassificationResult:
        # Checked in order of reliability
        for check in (
            self._classify_by_tax_rate,
            self._classify_by_tip_rate,
            self._classify_by_total,
            self._classify_by_subtotal,
            self._classify_by_magnitude,
        ):
            result = check(item, context)
            if result is not None:
                return result

        return self.result(ItemCategory.UNKNOWN, 0.1, "No price relationship detected")

    def _classify_by_tax_rate(self, item: RawLineItem, context: ReceiptContext) -> Optional[ClassificationResult]:
        subtotal = context.subtotal_amount
        if subtotal is None or subtotal <= 0 or not self.has_keyword(item.name, "tax"):
            return None

        rate = item.price / subtotal * HUNDRED
        low, high = (bound * HUNDRED for bound in context.expected_tax_range)

        if low <= rate <= high:
            center = (low + high) / 2
            width = high - low
            confidence = 1.0 if width == 0 else max(0.5, 1.0 - float(abs(rate - center) / width))
            if self.is_exact_name(item.name, EXPLICIT_TAX_NAMES):
                confidence = min(1.0, confidence + 0.15)
            return self.result(
                ItemCategory.TAX,
                confidence,
                f"Tax rate {rate:.1f}% in expected range for {context.receipt_type.value}",
            )

        if 0 < rate < 20:
            return self.result(ItemCategory.TAX, 0.6, f"Tax rate {rate:.1f}% outside expected range but plausible")

        return None

    def _classify_by_tip_rate(self, item: RawLineItem, context: ReceiptContext) -> Optional[ClassificationResult]:
        subtotal = context.subtotal_amount
        name = item.name
        if subtotal is None or subtotal <= 0:
            return None
        if not (self.has_keyword(name, "tip") or self.has_keyword(name, "gratuity") or self.has_keyword(name, "service")):
            return None

        rate = item.price / subtotal * HUNDRED
        category = ItemCategory.GRATUITY if self.has_keyword(name, "gratuity") else ItemCategory.TIP
        low, high = (bound * HUNDRED for bound in self.tip_rate_range)

        if low <= rate <= high:
            closest = min(STANDARD_TIP_RATES, key=lambda standard: abs(standard - rate))
            confidence = max(0.6, 1.0 - float(abs(rate - closest) / 10))
            if self.is_exact_name(name, EXPLICIT_TIP_NAMES):
                confidence = min(1.0, confidence + 0.10)
            return self.result(category, confidence, f"Tip rate {rate:.1f}% in typical range")

        if 5 < rate < 40:
            return self.result(category, 0.55, f"Tip rate {rate:.1f}% outside typical range but plausible")

        return None

    def _classify_by_total(self, item: RawLineItem, context: ReceiptContext) -> Optional[ClassificationResult]:
        expected = context.total_amount
        if expected is None or expected == 0 or not self.has_total_keyword(item.name):
            return None

        diff = abs((item.price - expected) / expected) * HUNDRED
        if diff < 1:
            return self.result(ItemCategory.TOTAL, 0.95, f"Price matches declared total (within {diff:.1f}%)")
        if diff < 5:
            return self.result(ItemCategory.TOTAL, 0.75, f"Price close to declared total (within {diff:.1f}%)")
        return None

    def _classify_by_subtotal(self, item: RawLineItem, context: ReceiptContext) -> Optional[ClassificationResult]:
        expected = context.subtotal_amount
        if expected is None or expected == 0 or not self.has_keyword(item.name, "subtotal"):
            return None

        diff = abs((item.price - expected) / expected) * HUNDRED
        if diff < 2:
            return self.result(ItemCategory.SUBTOTAL, 0.92, f"Price matches declared subtotal (within {diff:.1f}%)")
        if diff < 5:
            return self.result(ItemCategory.SUBTOTAL, 0.70, f"Price close to declared subtotal (within {diff:.1f}%)")
        return None

    def _classify_by_magnitude(self, item: RawLineItem, context: ReceiptContext) -> Optional[ClassificationResult]:
        subtotal = context.subtotal_amount
        if subtotal is None or subtotal <= 0:
            return None

        name = item.name
        ratio = item.price / subtotal

        if Decimal("0.05") <= ratio <= Decimal("0.12") and not (
            self.has_keyword(name, "tip") or self.has_keyword(name, "gratuity")
        ):
            return self._magnitude(ItemCategory.TAX, 0.55, f"{ratio:.1%} of subtotal, typical for tax")

        if Decimal("0.02") < ratio < Decimal("0.05"):
            return self._magnitude(ItemCategory.SERVICE_CHARGE, 0.50, f"{ratio:.1%} of subtotal, typical for a fee")

        if Decimal("0.15") <= ratio <= Decimal("0.30") and (
            self.has_keyword(name, "tip") or self.has_keyword(name, "service")
        ):
            return self._magnitude(ItemCategory.TIP, 0.55, f"{ratio:.1%} of subtotal, typical for tip")

        if ratio >= Decimal("0.50") and self.has_keyword(name, "total"):
            category = ItemCategory.SUBTOTAL if ratio < Decimal("0.80") else ItemCategory.TOTAL
            return self._magnitude(category, 0.55, f"{ratio:.1%} of subtotal, likely a summary line")

        if Decimal("0.05") <= ratio <= Decimal("0.50"):
            return self._magnitude(ItemCategory.FOOD, 0.50, "Price in typical food item range")

        return None

    def _magnitude(self, category: ItemCategory, confidence: float, reasoning: str) -> ClassificationResult:
        return self.result(category, min(confidence, MAGNITUDE_CONFIDENCE_CAP), reasoning)
