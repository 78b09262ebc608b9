"""
Geometric Strategy - Classify lines by their position on the receipt

Receipts follow a common layout:
- Items first (middle zone)
- Tax / tip near the bottom (second-to-last line)
- Total last

Position alone is weak evidence, so boundary lines need a corroborating
keyword or amount before they get a high confidence.
"""
from decimal import Decimal

from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassificationResult,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies.base import ClassificationStrategy

# Keyword groups that mark a line as something other than a purchased item
NON_ITEM_GROUPS = ("tax", "tip", "gratuity", "subtotal", "total", "discount", "delivery", "service")

ORDINARY_PRICE_MIN = Decimal("1")
ORDINARY_PRICE_MAX = Decimal("100")


class GeometricStrategy(ClassificationStrategy):
    """Position-based classification (last line total, second-to-last tax/tip)"""

    method = ClassificationMethod.GEOMETRIC

    def __init__(self, sum_tolerance: Decimal = Decimal("0.01")):
        self.sum_tolerance = sum_tolerance

    def classify(
        self,
        item: RawLineItem,
        position: int,
        context: ReceiptContext,
    ) -> ClassificationResult:
        count = context.item_count

        # Position outside the declared layout: no boundary evidence
        if position >= count:
            return self._classify_middle_zone(item)

        if position == count - 1:
            return self._classify_last_line(item, context)

        if position == count - 2:
            return self._classify_second_to_last(item)

        return self._classify_middle_zone(item)

    def _classify_last_line(self, item: RawLineItem, context: ReceiptContext) -> ClassificationResult:
        if self.has_total_keyword(item.name):
            return self.result(ItemCategory.TOTAL, 0.95, "Last line with total keyword")

        if context.total_amount is not None and abs(item.price - context.total_amount) <= self.sum_tolerance:
            return self.result(ItemCategory.TOTAL, 0.95, "Last line matches declared total")

        return self.result(ItemCategory.UNKNOWN, 0.5, "Last line without total evidence")

    def _classify_second_to_last(self, item: RawLineItem) -> ClassificationResult:
        name = item.name

        if self.has_keyword(name, "gratuity"):
            return self.result(ItemCategory.GRATUITY, 0.85, "Second-to-last line with gratuity keyword")

        if self.has_keyword(name, "tip"):
            if self.contains_percentage(name):
                return self.result(ItemCategory.GRATUITY, 0.85, "Second-to-last line with percentage tip")
            return self.result(ItemCategory.TIP, 0.85, "Second-to-last line with tip keyword")

        if self.has_keyword(name, "tax"):
            return self.result(ItemCategory.TAX, 0.85, "Second-to-last line with tax keyword")

        middle = self._classify_middle_zone(item)
        if middle.category == ItemCategory.FOOD:
            return self.result(ItemCategory.FOOD, 0.6, "Second-to-last line without tax/tip keyword")
        return middle

    def _classify_middle_zone(self, item: RawLineItem) -> ClassificationResult:
        name = item.name

        if item.price <= 0 or any(self.has_keyword(name, group) for group in NON_ITEM_GROUPS):
            return self.result(ItemCategory.UNKNOWN, 0.4, "Middle-zone line that does not look like an item")

        if self.starts_with_quantity(name):
            return self.result(ItemCategory.FOOD, 0.85, "Middle-zone line with quantity")

        if ORDINARY_PRICE_MIN <= item.price <= ORDINARY_PRICE_MAX:
            return self.result(ItemCategory.FOOD, 0.75, "Middle-zone line with ordinary price")

        return self.result(ItemCategory.FOOD, 0.65, "Middle-zone line")
