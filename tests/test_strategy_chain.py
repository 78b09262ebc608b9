"""
Tests for the strategy chain: early stop, best-of fallback, LLM gating and
default chain construction.
"""
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest

from splitsmart.common.config import load_config
from splitsmart.common.schemas.receipt_classification import (
    ClassificationMethod,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies import (
    ClassificationStrategy,
    GeometricStrategy,
    LLMCallBudget,
    LLMClassification,
    LLMClassificationStrategy,
    ManualClassificationStrategy,
    PatternHeuristicStrategy,
    PriceRelationshipStrategy,
)
from splitsmart.domain.classification.strategy_chain import (
    ClassificationStrategyChain,
    build_default_chain,
)


class FixedStrategy(ClassificationStrategy):
    """Returns a canned answer and counts calls."""

    def __init__(self, category, confidence, method=ClassificationMethod.HEURISTIC):
        self.method = method
        self.category = category
        self.confidence = confidence
        self.calls = 0

    def classify(self, item, position, context):
        self.calls += 1
        return self.result(self.category, self.confidence)


class BrokenStrategy(ClassificationStrategy):
    method = ClassificationMethod.PRICE_RELATIONSHIP

    def classify(self, item, position, context):
        raise RuntimeError("boom")


ITEM = RawLineItem(name="Mystery", price=Decimal("3.00"))
CONTEXT = ReceiptContext(item_count=5)


def llm_strategy(category=ItemCategory.SERVICE_CHARGE, confidence=0.82):
    collaborator = AsyncMock()
    collaborator.classify_unknown.return_value = LLMClassification(category=category, confidence=confidence)
    return LLMClassificationStrategy(collaborator), collaborator


# ── Ordering and stopping ────────────────────────────────────────────────────

class TestChainStopping:
    @pytest.mark.asyncio
    async def test_stops_at_first_confident_result(self, config):
        first = FixedStrategy(ItemCategory.TAX, 0.9)
        second = FixedStrategy(ItemCategory.TIP, 0.95)
        chain = ClassificationStrategyChain([first, second], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        assert result.category == ItemCategory.TAX
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_stop_threshold_is_inclusive(self, config):
        first = FixedStrategy(ItemCategory.TAX, 0.8)
        second = FixedStrategy(ItemCategory.TIP, 0.95)
        chain = ClassificationStrategyChain([first, second], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        assert result.category == ItemCategory.TAX
        assert second.calls == 0

    @pytest.mark.asyncio
    async def test_returns_best_when_none_confident(self, config):
        chain = ClassificationStrategyChain([
            FixedStrategy(ItemCategory.FOOD, 0.6),
            FixedStrategy(ItemCategory.TAX, 0.75),
            FixedStrategy(ItemCategory.TIP, 0.5),
        ], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        assert result.category == ItemCategory.TAX
        assert result.confidence == 0.75

    @pytest.mark.asyncio
    async def test_ties_keep_earliest(self, config):
        chain = ClassificationStrategyChain([
            FixedStrategy(ItemCategory.FOOD, 0.6, ClassificationMethod.GEOMETRIC),
            FixedStrategy(ItemCategory.TAX, 0.6, ClassificationMethod.HEURISTIC),
        ], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        assert result.category == ItemCategory.FOOD
        assert result.method == ClassificationMethod.GEOMETRIC

    @pytest.mark.asyncio
    async def test_later_strategies_still_run_after_weak_guess(self, config):
        """A weak early guess never causes later strategies to be skipped."""
        later = FixedStrategy(ItemCategory.TIP, 0.3)
        chain = ClassificationStrategyChain([FixedStrategy(ItemCategory.FOOD, 0.6), later], config)

        await chain.classify(ITEM, 0, CONTEXT)

        assert later.calls == 1

    @pytest.mark.asyncio
    async def test_empty_chain_returns_unknown(self, config):
        chain = ClassificationStrategyChain([], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        assert result.category == ItemCategory.UNKNOWN
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_failing_strategy_is_skipped(self, config):
        chain = ClassificationStrategyChain([BrokenStrategy(), FixedStrategy(ItemCategory.FOOD, 0.7)], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        assert result.category == ItemCategory.FOOD


# ── LLM gating ───────────────────────────────────────────────────────────────

class TestChainLLMFallback:
    @pytest.mark.asyncio
    async def test_llm_consulted_below_minimum(self, config):
        strategy, collaborator = llm_strategy()
        chain = ClassificationStrategyChain([FixedStrategy(ItemCategory.UNKNOWN, 0.1), strategy], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        collaborator.classify_unknown.assert_awaited_once()
        assert result.category == ItemCategory.SERVICE_CHARGE
        assert result.method == ClassificationMethod.LLM

    @pytest.mark.asyncio
    async def test_llm_skipped_when_best_is_acceptable(self, config):
        strategy, collaborator = llm_strategy()
        chain = ClassificationStrategyChain([FixedStrategy(ItemCategory.FOOD, 0.75), strategy], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        collaborator.classify_unknown.assert_not_awaited()
        assert result.category == ItemCategory.FOOD

    @pytest.mark.asyncio
    async def test_llm_low_answer_does_not_replace_better_result(self, config):
        strategy, _ = llm_strategy(ItemCategory.TIP, 0.2)
        chain = ClassificationStrategyChain([FixedStrategy(ItemCategory.FOOD, 0.6), strategy], config)

        result = await chain.classify(ITEM, 0, CONTEXT)

        assert result.category == ItemCategory.FOOD

    @pytest.mark.asyncio
    async def test_budget_passed_through(self, config):
        strategy, collaborator = llm_strategy()
        chain = ClassificationStrategyChain([strategy], config)
        budget = LLMCallBudget(max_calls=0)

        result = await chain.classify(ITEM, 0, CONTEXT, budget=budget)

        collaborator.classify_unknown.assert_not_awaited()
        assert result.category == ItemCategory.UNKNOWN
        assert result.confidence == 0.0


# ── Construction ─────────────────────────────────────────────────────────────

class TestChainConstruction:
    def test_rejects_manual_strategy(self, config):
        with pytest.raises(ValueError):
            ClassificationStrategyChain([ManualClassificationStrategy(ItemCategory.FOOD)], config)

    def test_default_chain_order_without_llm(self, config):
        chain = build_default_chain(config)
        assert [type(s) for s in chain.strategies] == [
            GeometricStrategy,
            PatternHeuristicStrategy,
            PriceRelationshipStrategy,
        ]

    def test_default_chain_includes_llm_when_enabled(self):
        config = load_config(llm_enabled=True)
        chain = build_default_chain(config, llm_collaborator=AsyncMock())
        assert isinstance(chain.strategies[-1], LLMClassificationStrategy)
        assert chain.list_strategies() == ["geometric", "heuristic", "price_relationship", "llm"]

    def test_disabled_llm_is_left_out(self, config):
        chain = build_default_chain(config, llm_collaborator=AsyncMock())
        assert "llm" not in chain.list_strategies()

    def test_custom_order(self):
        config = load_config(strategy_order=(ClassificationMethod.HEURISTIC, ClassificationMethod.GEOMETRIC))
        chain = build_default_chain(config)
        assert chain.list_strategies() == ["heuristic", "geometric"]
