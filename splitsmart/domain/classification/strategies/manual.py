"""
Manual Strategy - User corrections

Never part of the strategy chain; only the correction transform uses it.
"""
from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassificationResult,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies.base import ClassificationStrategy


class ManualClassificationStrategy(ClassificationStrategy):
    """Returns the user-chosen category with full confidence"""

    method = ClassificationMethod.MANUAL

    def __init__(self, category: ItemCategory):
        self.category = category

    def classify(
        self,
        item: RawLineItem,
        position: int,
        context: ReceiptContext,
    ) -> ClassificationResult:
        return self.result(self.category, 1.0, "Corrected by user")
