"""
Pattern Heuristic Strategy - Keyword and regex rules on the line name

Rules are checked in priority order; the first match wins:
1. Negative price → discount
2. Percentage with gratuity/service/party marker → gratuity
3. Percentage with tax keyword → tax
4. Leading quantity ("2 Burgers", "3x Soda") → food
5. Keyword rules (subtotal, tax, gratuity, tip, total, discount, delivery, service)
6. Otherwise unknown

Keywords cover English, French and Spanish receipts.
"""
from decimal import Decimal

from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassificationResult,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies.base import (
    GRATUITY_MARKERS,
    ClassificationStrategy,
)


class PatternHeuristicStrategy(ClassificationStrategy):
    """Language-aware keyword/regex classification"""

    method = ClassificationMethod.HEURISTIC

    def classify(
        self,
        item: RawLineItem,
        position: int,
        context: ReceiptContext,
    ) -> ClassificationResult:
        name = item.name

        if item.price < 0:
            if self.has_keyword(name, "discount"):
                return self.result(ItemCategory.DISCOUNT, 0.95, "Negative amount with discount keyword")
            return self.result(ItemCategory.DISCOUNT, 0.85, "Negative amount")

        if self.contains_percentage(name):
            result = self._classify_percentage_line(name)
            if result is not None:
                return result

        if self.starts_with_quantity(name):
            return self.result(ItemCategory.FOOD, 0.90, "Leading quantity")

        return self._classify_keywords(name)

    def _classify_percentage_line(self, name: str):
        if self.matches_any(name, GRATUITY_MARKERS) or self.has_keyword(name, "gratuity"):
            return self.result(ItemCategory.GRATUITY, 0.95, "Percentage with gratuity marker")

        if self.has_keyword(name, "tax"):
            return self.result(ItemCategory.TAX, 0.90, "Percentage with tax keyword")

        if self.has_keyword(name, "discount"):
            return self.result(ItemCategory.DISCOUNT, 0.88, "Percentage with discount keyword")

        # Bare percentage: judge by the rate itself
        rate = self.extract_percentage(name)
        if rate is None:
            return None
        if Decimal("15") <= rate <= Decimal("25"):
            return self.result(ItemCategory.GRATUITY, 0.80, "Percentage in gratuity range")
        if Decimal("5") <= rate < Decimal("15"):
            return self.result(ItemCategory.TAX, 0.70, "Percentage in tax range")
        return None

    def _classify_keywords(self, name: str) -> ClassificationResult:
        if self.has_keyword(name, "subtotal"):
            return self.result(ItemCategory.SUBTOTAL, 0.90, "Subtotal keyword")

        if self.has_keyword(name, "tax"):
            return self.result(ItemCategory.TAX, 0.92, "Tax keyword")

        if self.has_keyword(name, "gratuity"):
            return self.result(ItemCategory.GRATUITY, 0.93, "Gratuity keyword")

        if self.has_keyword(name, "tip"):
            return self.result(ItemCategory.TIP, 0.90, "Tip keyword")

        if self.has_total_keyword(name):
            return self.result(ItemCategory.TOTAL, 0.88, "Total keyword")

        if self.has_keyword(name, "discount"):
            return self.result(ItemCategory.DISCOUNT, 0.85, "Discount keyword")

        if self.has_keyword(name, "delivery"):
            return self.result(ItemCategory.DELIVERY_FEE, 0.88, "Delivery keyword")

        if self.has_keyword(name, "service"):
            return self.result(ItemCategory.SERVICE_CHARGE, 0.85, "Service charge keyword")

        return self.result(ItemCategory.UNKNOWN, 0.1, "No pattern matched")
