"""
Batch LLM Receipt Classifier - Whole receipt in one LLM call

Flow:
1. Send every line (numbered, with merchant/type/total context) to the LLM at once
2. Build one item per line from the answers; lines the model skipped become
   unknown at 0.3
3. Bucket and validate exactly like the strategy-chain classifier

Any failure of the batch call (missing backend, API error, timeout, unusable
reply) falls back to the strategy chain without the LLM strategy, so the
caller always gets a fully-formed receipt.
"""
import asyncio
from typing import Dict, List, Optional, Sequence

import structlog

from splitsmart.common.config import ClassificationConfig, ClassificationEngine
from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassifiedReceipt,
    ClassifiedReceiptItem,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.receipt_classifier import ReceiptClassifier
from splitsmart.domain.classification.receipt_validator import ReceiptValidator
from splitsmart.domain.classification.strategies import (
    BatchLLMCollaborator,
    LLMClassification,
    coerce_category,
)

logger = structlog.get_logger()

# Confidence for a line the model left out of its reply
MISSING_ANSWER_CONFIDENCE = 0.3


class BatchLLMReceiptClassifier(ReceiptClassifier):
    """
    Receipt classifier that asks the LLM about every line in a single call.

    Usage:
        classifier = BatchLLMReceiptClassifier(config, llm_collaborator=AnthropicLineItemClassifier())
        receipt = await classifier.classify(items, context)
    """

    def __init__(
        self,
        config: Optional[ClassificationConfig] = None,
        llm_collaborator: Optional[BatchLLMCollaborator] = None,
        validator: Optional[ReceiptValidator] = None,
    ):
        """
        Initialize classifier.

        Args:
            config: Classification configuration (defaults when omitted)
            llm_collaborator: Backend implementing classify_receipt
            validator: Receipt validator (built from config when omitted)
        """
        # The inherited chain never calls the LLM: it is the fallback path
        super().__init__(config, llm_collaborator=None, validator=validator)
        self.batch_collaborator = llm_collaborator

    async def classify(
        self,
        items: Sequence[RawLineItem],
        context: ReceiptContext,
        *,
        validate: bool = True,
    ) -> ClassifiedReceipt:
        """
        Classify every line of a receipt with one LLM call.

        Args:
            items: Raw OCR lines in receipt order
            context: Receipt-level signals
            validate: Run the validator (status stays needs_review when False)

        Returns:
            ClassifiedReceipt with every input line in exactly one bucket
        """
        if self.batch_collaborator is None or not self.config.llm_enabled or not items:
            return await super().classify(items, context, validate=validate)

        if context.item_count != len(items):
            logger.warning("item_count_mismatch",
                           declared=context.item_count,
                           actual=len(items))
            context = context.model_copy(update={"item_count": len(items)})

        logger.info("batch_classification_started",
                    item_count=len(items),
                    receipt_type=context.receipt_type.value,
                    merchant=context.merchant_name)

        try:
            answers = await asyncio.wait_for(
                self.batch_collaborator.classify_receipt(items, context),
                timeout=self.config.llm_batch_timeout_seconds,
            )
            classified = self._build_items(items, answers)
        except asyncio.TimeoutError:
            logger.warning("batch_classification_timeout",
                           timeout_seconds=self.config.llm_batch_timeout_seconds)
            return await super().classify(items, context, validate=validate)
        except Exception as e:
            logger.warning("batch_classification_failed",
                           error=str(e),
                           exc_info=True)
            return await super().classify(items, context, validate=validate)

        receipt = ClassifiedReceipt.from_items(
            classified,
            demoted_confidence=self.config.demoted_confidence,
        )

        if validate:
            receipt = self.validator.validate(receipt, context)

        self._log_summary(receipt, llm_calls=1)
        return receipt

    def _build_items(
        self,
        items: Sequence[RawLineItem],
        answers: Dict[int, LLMClassification],
    ) -> List[ClassifiedReceiptItem]:
        classified = []

        for position, item in enumerate(items):
            answer = answers.get(position)
            if answer is None:
                logger.warning("batch_answer_missing", position=position, item_name=item.name)
                category, confidence = ItemCategory.UNKNOWN, MISSING_ANSWER_CONFIDENCE
            else:
                category = coerce_category(answer.category)
                confidence = max(0.0, min(1.0, float(answer.confidence)))

            classified.append(ClassifiedReceiptItem(
                name=item.name,
                price=item.price,
                category=category,
                classification_confidence=confidence,
                classification_method=ClassificationMethod.LLM,
                original_text=item.name,
                position=position,
            ))

        return classified


def build_classifier(
    config: Optional[ClassificationConfig] = None,
    llm_collaborator=None,
) -> ReceiptClassifier:
    """
    Build the classifier selected by config.engine.

    Args:
        config: Classification configuration (defaults when omitted)
        llm_collaborator: LLM backend (classify_unknown for the chain,
            classify_receipt for the batch engine)

    Returns:
        ReceiptClassifier or BatchLLMReceiptClassifier
    """
    config = config or ClassificationConfig()

    if config.engine == ClassificationEngine.BATCH_LLM:
        return BatchLLMReceiptClassifier(config, llm_collaborator=llm_collaborator)
    return ReceiptClassifier(config, llm_collaborator=llm_collaborator)
