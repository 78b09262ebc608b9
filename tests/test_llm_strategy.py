"""
Tests for the LLM fallback strategy: success, timeout, collaborator errors
and the per-receipt call budget. The collaborator is always an AsyncMock.
"""
import asyncio
from decimal import Decimal
from types import SimpleNamespace
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
    LLMCallBudget,
    LLMClassification,
    LLMClassificationError,
    LLMClassificationStrategy,
)

ITEM = RawLineItem(name="SVC CHG", price=Decimal("4.50"))
CONTEXT = ReceiptContext(item_count=6)


def make_strategy(collaborator, **overrides):
    return LLMClassificationStrategy(collaborator, load_config(**overrides))


class TestLLMClassificationStrategy:

    @pytest.mark.asyncio
    async def test_returns_collaborator_answer(self):
        collaborator = AsyncMock()
        collaborator.classify_unknown.return_value = LLMClassification(
            category=ItemCategory.SERVICE_CHARGE, confidence=0.82, reasoning="Service charge abbreviation",
        )

        result = await make_strategy(collaborator).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.SERVICE_CHARGE
        assert result.confidence == 0.82
        assert result.method == ClassificationMethod.LLM
        assert result.reasoning == "Service charge abbreviation"
        collaborator.classify_unknown.assert_awaited_once_with("SVC CHG", Decimal("4.50"), CONTEXT)

    @pytest.mark.asyncio
    async def test_collaborator_error_becomes_unknown(self):
        collaborator = AsyncMock()
        collaborator.classify_unknown.side_effect = LLMClassificationError("API down")

        result = await make_strategy(collaborator).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.UNKNOWN
        assert result.confidence == 0.0
        assert result.method == ClassificationMethod.LLM

    @pytest.mark.asyncio
    async def test_unexpected_error_becomes_unknown(self):
        collaborator = AsyncMock()
        collaborator.classify_unknown.side_effect = ConnectionError("network unreachable")

        result = await make_strategy(collaborator).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.UNKNOWN
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_timeout_becomes_unknown(self):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)
            return LLMClassification(category=ItemCategory.FOOD, confidence=0.9)

        collaborator = AsyncMock()
        collaborator.classify_unknown.side_effect = slow

        result = await make_strategy(collaborator, llm_timeout_seconds=0.01).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.UNKNOWN
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_missing_collaborator(self):
        result = await LLMClassificationStrategy(None).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.UNKNOWN
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_loose_string_answer_is_coerced(self):
        collaborator = AsyncMock()
        collaborator.classify_unknown.return_value = SimpleNamespace(category="SERVICE_CHARGE", confidence=0.9)

        result = await make_strategy(collaborator).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.SERVICE_CHARGE
        assert result.confidence == 0.9
        assert result.reasoning is None

    @pytest.mark.asyncio
    async def test_dict_answer_is_coerced(self):
        collaborator = AsyncMock()
        collaborator.classify_unknown.return_value = {"category": "tip", "confidence": "0.8"}

        result = await make_strategy(collaborator).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.TIP
        assert result.confidence == 0.8

    @pytest.mark.asyncio
    @pytest.mark.parametrize("answer", [
        SimpleNamespace(category="beverage", confidence=0.9, reasoning=None),
        SimpleNamespace(category=None, confidence=0.9, reasoning=None),
        SimpleNamespace(category="food", confidence=None, reasoning=None),
        {"confidence": 0.9},
        "FOOD",
    ])
    async def test_unusable_answer_becomes_unknown(self, answer):
        collaborator = AsyncMock()
        collaborator.classify_unknown.return_value = answer

        result = await make_strategy(collaborator).classify(ITEM, 3, CONTEXT)

        assert result.category == ItemCategory.UNKNOWN
        assert result.confidence == 0.0
        assert result.method == ClassificationMethod.LLM


class TestLLMCallBudget:
    def test_acquire_until_exhausted(self):
        budget = LLMCallBudget(max_calls=2)
        assert budget.try_acquire()
        assert budget.try_acquire()
        assert not budget.try_acquire()
        assert budget.calls_made == 2
        assert budget.remaining == 0

    @pytest.mark.asyncio
    async def test_exhausted_budget_skips_call(self):
        collaborator = AsyncMock()
        collaborator.classify_unknown.return_value = LLMClassification(category=ItemCategory.FOOD, confidence=0.9)
        strategy = make_strategy(collaborator)
        budget = LLMCallBudget(max_calls=1)

        first = await strategy.classify(ITEM, 0, CONTEXT, budget=budget)
        second = await strategy.classify(ITEM, 1, CONTEXT, budget=budget)

        assert first.category == ItemCategory.FOOD
        assert second.category == ItemCategory.UNKNOWN
        assert second.confidence == 0.0
        assert collaborator.classify_unknown.await_count == 1


class TestLLMClassification:
    def test_confidence_validated(self):
        with pytest.raises(ValueError):
            LLMClassification(category=ItemCategory.FOOD, confidence=1.5)

    def test_category_name_is_normalized(self):
        answer = LLMClassification(category="SERVICE_CHARGE", confidence=0.9)

        assert answer.category == ItemCategory.SERVICE_CHARGE

    def test_unknown_category_name_rejected(self):
        with pytest.raises(ValueError):
            LLMClassification(category="beverage", confidence=0.9)
