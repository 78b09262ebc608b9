"""
LLM Strategy - Language model fallback for lines no other strategy can place

Only consulted by the strategy chain when every other strategy stayed below
the minimum acceptable confidence. The call is bounded by a timeout and a
per-receipt call budget; any failure resolves to unknown with confidence 0.0.
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Optional, Protocol, Sequence

import structlog

from splitsmart.common.config import ClassificationConfig
from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassificationResult,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies.base import ClassificationStrategy

logger = structlog.get_logger()


class LLMClassificationError(Exception):
    """Raised by LLM collaborators when a line cannot be classified"""


def coerce_category(value) -> ItemCategory:
    """
    Map a model-supplied category ("SERVICE_CHARGE", "food", ItemCategory.TAX) to ItemCategory.

    Raises:
        ValueError: If the value names no known category
    """
    if isinstance(value, ItemCategory):
        return value
    if not isinstance(value, str):
        raise ValueError(f"Category must be a string, got {type(value).__name__}")
    return ItemCategory(value.strip().lower())


@dataclass
class LLMClassification:
    """
    Answer from an LLM collaborator.

    Attributes:
        category: Category chosen by the model
        confidence: Model-reported confidence (0.0 to 1.0)
        reasoning: Short explanation from the model
    """
    category: ItemCategory
    confidence: float  # 0.0 to 1.0
    reasoning: Optional[str] = None

    def __post_init__(self) -> None:
        """Normalize the category and validate confidence is in valid range"""
        self.category = coerce_category(self.category)
        if not 0 <= self.confidence <= 1:
            raise ValueError(f"Confidence must be 0-1, got {self.confidence}")


class LLMCollaborator(Protocol):
    """
    Protocol for LLM line classifiers.

    Implementations may fail; the LLM strategy absorbs every failure.
    """

    async def classify_unknown(
        self,
        name: str,
        price: Decimal,
        context: ReceiptContext,
    ) -> LLMClassification:
        """
        Classify one receipt line.

        Args:
            name: Line name from OCR
            price: Line amount
            context: Receipt-level signals

        Returns:
            LLMClassification with category and confidence

        Raises:
            LLMClassificationError: If the model cannot be reached or its reply cannot be used
        """
        ...


class BatchLLMCollaborator(Protocol):
    """Protocol for LLM backends that classify a whole receipt in one call"""

    async def classify_receipt(
        self,
        items: Sequence[RawLineItem],
        context: ReceiptContext,
    ) -> Dict[int, LLMClassification]:
        """
        Classify every line of a receipt.

        Returns:
            Answers keyed by 0-based position; lines the model skipped are absent

        Raises:
            LLMClassificationError: If the model cannot be reached or its reply cannot be used
        """
        ...


class LLMCallBudget:
    """Caps LLM calls for a single receipt"""

    def __init__(self, max_calls: int):
        self.max_calls = max_calls
        self.calls_made = 0

    @property
    def remaining(self) -> int:
        return max(0, self.max_calls - self.calls_made)

    def try_acquire(self) -> bool:
        """Reserve one call; False once the budget is used up"""
        if self.calls_made >= self.max_calls:
            return False
        self.calls_made += 1
        return True


class LLMClassificationStrategy(ClassificationStrategy):
    """
    Fallback classification through an LLM collaborator.

    Usage:
        strategy = LLMClassificationStrategy(AnthropicLineItemClassifier(), config)
        result = await strategy.classify(item, position, context)
    """

    method = ClassificationMethod.LLM

    def __init__(
        self,
        collaborator: Optional[LLMCollaborator],
        config: Optional[ClassificationConfig] = None,
    ):
        self.collaborator = collaborator
        self.timeout_seconds = config.llm_timeout_seconds if config else 5.0

    async def classify(
        self,
        item: RawLineItem,
        position: int,
        context: ReceiptContext,
        budget: Optional[LLMCallBudget] = None,
    ) -> ClassificationResult:
        """
        Ask the collaborator to classify one line.

        Args:
            item: Line name and price
            position: 0-based line position
            context: Receipt-level signals
            budget: Per-receipt call budget (unlimited when omitted)

        Returns:
            The collaborator's answer, or unknown at 0.0 on any failure
        """
        if self.collaborator is None:
            return self.result(ItemCategory.UNKNOWN, 0.0, "LLM collaborator unavailable")

        if budget is not None and not budget.try_acquire():
            logger.info("llm_budget_exhausted",
                        item_name=item.name,
                        position=position,
                        max_calls=budget.max_calls)
            return self.result(ItemCategory.UNKNOWN, 0.0, "LLM call budget exhausted")

        try:
            answer = await asyncio.wait_for(
                self.collaborator.classify_unknown(item.name, item.price, context),
                timeout=self.timeout_seconds,
            )
            result = self._to_result(answer)
        except asyncio.TimeoutError:
            logger.warning("llm_classification_timeout",
                           item_name=item.name,
                           position=position,
                           timeout_seconds=self.timeout_seconds)
            return self.result(ItemCategory.UNKNOWN, 0.0, "LLM call timed out")
        except Exception as e:
            logger.error("llm_classification_failed",
                         item_name=item.name,
                         position=position,
                         error=str(e),
                         exc_info=True)
            return self.result(ItemCategory.UNKNOWN, 0.0, "LLM call failed")

        logger.info("llm_classification_complete",
                    item_name=item.name,
                    position=position,
                    category=result.category.value,
                    confidence=result.confidence)

        return result

    def _to_result(self, answer) -> ClassificationResult:
        """Collaborators may hand back loose {category, confidence} answers"""
        if isinstance(answer, dict):
            category, confidence = answer.get("category"), answer.get("confidence")
            reasoning = answer.get("reasoning")
        else:
            category, confidence = answer.category, answer.confidence
            reasoning = getattr(answer, "reasoning", None)

        return self.result(
            coerce_category(category),
            float(confidence),
            str(reasoning) if reasoning is not None else None,
        )
