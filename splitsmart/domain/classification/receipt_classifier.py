"""
Receipt Classifier - Orchestrates line classification, bucketing and validation

Flow:
1. Each raw line goes through the strategy chain with its original position
2. Results are assembled into a ClassifiedReceipt (one item per line, position order)
3. The validator attaches status + issues

Example:
- Input: [Burger 12.99, Fries 4.99, Subtotal 17.98, Tax 1.44, Total 19.42]
- Chain: Burger/Fries → food (geometric), Subtotal → subtotal (heuristic),
  Tax → tax (geometric, second-to-last), Total → total (geometric, last line)
- Output: ClassifiedReceipt with validation_status == valid

Singleton slots (tax, tip, gratuity, subtotal, total) keep the later line on a
conflict; the earlier one is demoted to unknown_items for review.
"""
from typing import List, Optional, Sequence

import structlog

from splitsmart.common.config import ClassificationConfig
from splitsmart.common.schemas.receipt_classification import (
    ClassifiedReceipt,
    ClassifiedReceiptItem,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.receipt_validator import ReceiptValidator
from splitsmart.domain.classification.strategies import LLMCallBudget, LLMCollaborator
from splitsmart.domain.classification.strategy_chain import (
    ClassificationStrategyChain,
    build_default_chain,
)

logger = structlog.get_logger()


class ReceiptClassifier:
    """
    Top-level entry point: raw OCR lines in, validated ClassifiedReceipt out.

    Usage:
        classifier = ReceiptClassifier(load_config())
        receipt = await classifier.classify(items, context)
        print(receipt.validation_status, [i.name for i in receipt.food_items])
    """

    def __init__(
        self,
        config: Optional[ClassificationConfig] = None,
        llm_collaborator: Optional[LLMCollaborator] = None,
        chain: Optional[ClassificationStrategyChain] = None,
        validator: Optional[ReceiptValidator] = None,
    ):
        """
        Initialize classifier with config, strategy chain and validator.

        Args:
            config: Classification configuration (defaults when omitted)
            llm_collaborator: LLM backend for the fallback strategy
            chain: Pre-built strategy chain (built from config when omitted)
            validator: Receipt validator (built from config when omitted)
        """
        self.config = config or ClassificationConfig()
        self.chain = chain or build_default_chain(self.config, llm_collaborator)
        self.validator = validator or ReceiptValidator(self.config)

    async def classify(
        self,
        items: Sequence[RawLineItem],
        context: ReceiptContext,
        *,
        validate: bool = True,
    ) -> ClassifiedReceipt:
        """
        Classify every line of a receipt.

        Args:
            items: Raw OCR lines in receipt order
            context: Receipt-level signals
            validate: Run the validator (status stays needs_review when False)

        Returns:
            ClassifiedReceipt with every input line in exactly one bucket
        """
        if context.item_count != len(items):
            logger.warning("item_count_mismatch",
                           declared=context.item_count,
                           actual=len(items))
            context = context.model_copy(update={"item_count": len(items)})

        logger.info("receipt_classification_started",
                    item_count=len(items),
                    receipt_type=context.receipt_type.value,
                    merchant=context.merchant_name,
                    strategies=self.chain.list_strategies())

        budget = LLMCallBudget(self.config.max_llm_calls_per_receipt)
        classified: List[ClassifiedReceiptItem] = []

        for position, item in enumerate(items):
            result = await self.chain.classify(item, position, context, budget=budget)

            classified.append(ClassifiedReceiptItem(
                name=item.name,
                price=item.price,
                category=result.category,
                classification_confidence=result.confidence,
                classification_method=result.method,
                original_text=item.name,
                position=position,
            ))

            logger.debug("line_classified",
                         position=position,
                         item_name=item.name,
                         category=result.category.value,
                         method=result.method.value,
                         confidence=result.confidence,
                         reasoning=result.reasoning)

        receipt = ClassifiedReceipt.from_items(
            classified,
            demoted_confidence=self.config.demoted_confidence,
        )

        if validate:
            receipt = self.validator.validate(receipt, context)

        self._log_summary(receipt, llm_calls=budget.calls_made)
        return receipt

    def _log_summary(self, receipt: ClassifiedReceipt, llm_calls: int) -> None:
        logger.info("receipt_classification_complete",
                    receipt_id=receipt.id,
                    food_items=len(receipt.food_items),
                    tax=str(receipt.tax.price) if receipt.tax else None,
                    tip=str(receipt.tip.price) if receipt.tip else None,
                    gratuity=str(receipt.gratuity.price) if receipt.gratuity else None,
                    subtotal=str(receipt.subtotal.price) if receipt.subtotal else None,
                    total=str(receipt.total.price) if receipt.total else None,
                    discounts=len(receipt.discounts),
                    other_charges=len(receipt.other_charges),
                    unknown_items=len(receipt.unknown_items),
                    total_confidence=round(receipt.total_confidence, 3),
                    validation_status=receipt.validation_status.value,
                    issue_count=len(receipt.validation_issues),
                    llm_calls=llm_calls)
