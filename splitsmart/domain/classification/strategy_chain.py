"""
Strategy Chain - Runs classification strategies in order for one receipt line

Flow:
1. Try each strategy in configured order
2. Stop at the first result at or above the stop threshold
3. Otherwise keep the best result seen (earliest wins ties)

The LLM strategy is fallback-only: it is consulted only while the best result
so far is below the minimum acceptable confidence.

Default order (cheapest, most reliable first):
1. Geometric (line position)
2. Pattern heuristic (keywords)
3. Price relationship (arithmetic)
4. LLM (network call)
"""
from typing import List, Optional, Sequence

import structlog

from splitsmart.common.config import ClassificationConfig
from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ClassificationResult,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies import (
    ClassificationStrategy,
    GeometricStrategy,
    LLMCallBudget,
    LLMClassificationStrategy,
    LLMCollaborator,
    ManualClassificationStrategy,
    PatternHeuristicStrategy,
    PriceRelationshipStrategy,
)

logger = structlog.get_logger()


class ClassificationStrategyChain:
    """
    Ordered fallback over classification strategies.

    Holds no per-receipt state; the LLM call budget is passed in per call.
    """

    def __init__(
        self,
        strategies: Sequence[ClassificationStrategy],
        config: Optional[ClassificationConfig] = None,
    ):
        """
        Initialize chain with an ordered strategy list.

        Args:
            strategies: Strategies in the order they are tried
            config: Thresholds (defaults when omitted)

        Raises:
            ValueError: If a manual strategy is included
        """
        for strategy in strategies:
            if isinstance(strategy, ManualClassificationStrategy):
                raise ValueError("Manual classification is assigned by corrections only, not the strategy chain")

        self.strategies: List[ClassificationStrategy] = list(strategies)
        self.config = config or ClassificationConfig()

        logger.debug("strategy_chain_initialized",
                     strategies=self.list_strategies(),
                     stop_confidence_threshold=self.config.stop_confidence_threshold,
                     minimum_acceptable_confidence=self.config.minimum_acceptable_confidence)

    async def classify(
        self,
        item: RawLineItem,
        position: int,
        context: ReceiptContext,
        budget: Optional[LLMCallBudget] = None,
    ) -> ClassificationResult:
        """
        Classify one line by running the strategies in order.

        Args:
            item: Line name and price
            position: 0-based line position
            context: Receipt-level signals
            budget: Per-receipt LLM call budget

        Returns:
            First high-confidence result, else the best one seen, else unknown at 0.0
        """
        stop_threshold = self.config.stop_confidence_threshold
        minimum = self.config.minimum_acceptable_confidence
        best: Optional[ClassificationResult] = None

        for strategy in self.strategies:
            if isinstance(strategy, LLMClassificationStrategy):
                if best is not None and best.confidence >= minimum:
                    continue
                result = await strategy.classify(item, position, context, budget=budget)
            else:
                try:
                    result = strategy.classify(item, position, context)
                except Exception as e:
                    logger.warning("strategy_failed",
                                   strategy=strategy.name,
                                   item_name=item.name,
                                   position=position,
                                   error=str(e),
                                   exc_info=True)
                    # Continue to next strategy
                    continue

            if result.confidence >= stop_threshold:
                logger.debug("chain_high_confidence_stop",
                             strategy=strategy.name,
                             position=position,
                             category=result.category.value,
                             confidence=result.confidence)
                return result

            if best is None or result.confidence > best.confidence:
                best = result

        if best is None:
            logger.warning("chain_no_results", item_name=item.name, position=position)
            return ClassificationResult(
                category=ItemCategory.UNKNOWN,
                confidence=0.0,
                method=ClassificationMethod.HEURISTIC,
                reasoning="No strategy produced a result",
            )

        logger.debug("chain_best_result",
                     method=best.method.value,
                     position=position,
                     category=best.category.value,
                     confidence=best.confidence)
        return best

    def list_strategies(self) -> List[str]:
        """
        Get names of the strategies in chain order.

        Returns:
            List of method names
        """
        return [s.name for s in self.strategies]


def build_default_chain(
    config: ClassificationConfig,
    llm_collaborator: Optional[LLMCollaborator] = None,
) -> ClassificationStrategyChain:
    """
    Build a chain from config.strategy_order.

    The LLM strategy is left out when LLM use is disabled or no collaborator
    is given.

    Args:
        config: Classification configuration
        llm_collaborator: LLM backend for the fallback strategy

    Returns:
        ClassificationStrategyChain
    """
    strategies: List[ClassificationStrategy] = []

    for method in config.strategy_order:
        if method == ClassificationMethod.GEOMETRIC:
            strategies.append(GeometricStrategy(sum_tolerance=config.sum_tolerance))
        elif method == ClassificationMethod.HEURISTIC:
            strategies.append(PatternHeuristicStrategy())
        elif method == ClassificationMethod.PRICE_RELATIONSHIP:
            strategies.append(PriceRelationshipStrategy(
                tip_rate_range=(config.tip_rate_min, config.tip_rate_max),
            ))
        elif method == ClassificationMethod.LLM:
            if config.llm_enabled and llm_collaborator is not None:
                strategies.append(LLMClassificationStrategy(llm_collaborator, config))

    return ClassificationStrategyChain(strategies, config)
