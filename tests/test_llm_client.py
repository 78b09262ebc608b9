"""
Tests for the Anthropic-backed LLM collaborator: prompt contents, reply
parsing and error mapping. The Anthropic client is mocked throughout.
"""
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import anthropic
import httpx
import pytest

from splitsmart.common.schemas.receipt_classification import (
    ItemCategory,
    RawLineItem,
    ReceiptContext,
    ReceiptType,
)
from splitsmart.domain.classification.llm_client import AnthropicLineItemClassifier
from splitsmart.domain.classification.strategies import LLMClassificationError

CONTEXT = ReceiptContext(
    item_count=6,
    total_amount=Decimal("30.00"),
    receipt_type=ReceiptType.RESTAURANT,
    merchant_name="Luigi's",
)


def mock_client(reply_text):
    """AsyncAnthropic stand-in whose messages.create returns reply_text."""
    response = SimpleNamespace(
        content=[SimpleNamespace(text=reply_text)],
        usage=SimpleNamespace(input_tokens=120, output_tokens=30),
    )
    client = MagicMock()
    client.messages.create = AsyncMock(return_value=response)
    return client


class TestClassifyUnknown:

    @pytest.mark.asyncio
    async def test_parses_json_reply(self):
        client = mock_client('{"category": "SERVICE_CHARGE", "confidence": 0.82, "reasoning": "fee"}')
        classifier = AnthropicLineItemClassifier(client=client)

        answer = await classifier.classify_unknown("SVC CHG", Decimal("4.50"), CONTEXT)

        assert answer.category == ItemCategory.SERVICE_CHARGE
        assert answer.confidence == 0.82
        assert answer.reasoning == "fee"

    @pytest.mark.asyncio
    async def test_tolerates_markdown_fences(self):
        client = mock_client('```json\n{"category": "delivery_fee", "confidence": 0.9}\n```')
        classifier = AnthropicLineItemClassifier(client=client)

        answer = await classifier.classify_unknown("DLVRY", Decimal("3.99"), CONTEXT)

        assert answer.category == ItemCategory.DELIVERY_FEE

    @pytest.mark.asyncio
    async def test_clamps_confidence(self):
        client = mock_client('{"category": "food", "confidence": 1.7}')
        classifier = AnthropicLineItemClassifier(client=client)

        answer = await classifier.classify_unknown("Burger", Decimal("9.00"), CONTEXT)

        assert answer.confidence == 1.0

    @pytest.mark.asyncio
    async def test_request_is_deterministic(self):
        client = mock_client('{"category": "food", "confidence": 0.9}')
        classifier = AnthropicLineItemClassifier(client=client, model="claude-test")

        await classifier.classify_unknown("SVC CHG", Decimal("4.50"), CONTEXT)

        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["model"] == "claude-test"
        assert kwargs["temperature"] == 0.0
        prompt = kwargs["messages"][0]["content"]
        assert '"SVC CHG"' in prompt
        assert "$4.50" in prompt
        assert "restaurant" in prompt
        assert "Luigi's" in prompt
        assert "$30.00" in prompt


class TestClassifyUnknownErrors:

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        classifier = AnthropicLineItemClassifier(api_key=None)

        with pytest.raises(LLMClassificationError):
            await classifier.classify_unknown("SVC CHG", Decimal("4.50"), CONTEXT)

    @pytest.mark.asyncio
    async def test_unparseable_reply(self):
        classifier = AnthropicLineItemClassifier(client=mock_client("I think it's a fee"))

        with pytest.raises(LLMClassificationError):
            await classifier.classify_unknown("SVC CHG", Decimal("4.50"), CONTEXT)

    @pytest.mark.asyncio
    async def test_unknown_category(self):
        classifier = AnthropicLineItemClassifier(client=mock_client('{"category": "beverage", "confidence": 0.9}'))

        with pytest.raises(LLMClassificationError):
            await classifier.classify_unknown("Cola", Decimal("2.00"), CONTEXT)

    @pytest.mark.asyncio
    async def test_api_error(self):
        client = MagicMock()
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        client.messages.create = AsyncMock(side_effect=anthropic.APIConnectionError(request=request))
        classifier = AnthropicLineItemClassifier(client=client)

        with pytest.raises(LLMClassificationError):
            await classifier.classify_unknown("SVC CHG", Decimal("4.50"), CONTEXT)


# ── Batch classification ─────────────────────────────────────────────────────

BATCH_ITEMS = [
    RawLineItem(name="1 Pad Thai", price=Decimal("14.00")),
    RawLineItem(name="Large Party (20.00%)", price=Decimal("2.80")),
    RawLineItem(name="Total", price=Decimal("16.80")),
]


class TestClassifyReceipt:

    @pytest.mark.asyncio
    async def test_answers_keyed_by_position(self):
        client = mock_client(
            '{"classifications": ['
            '{"item_number": 1, "category": "FOOD", "confidence": 0.95, "reasoning": "dish"},'
            '{"item_number": 2, "category": "GRATUITY", "confidence": 0.9},'
            '{"item_number": 3, "category": "TOTAL", "confidence": 0.97}'
            ']}'
        )
        classifier = AnthropicLineItemClassifier(client=client)

        answers = await classifier.classify_receipt(BATCH_ITEMS, CONTEXT)

        assert sorted(answers) == [0, 1, 2]
        assert answers[0].category == ItemCategory.FOOD
        assert answers[0].reasoning == "dish"
        assert answers[1].category == ItemCategory.GRATUITY
        assert answers[2].confidence == 0.97

    @pytest.mark.asyncio
    async def test_prompt_lists_every_line(self):
        client = mock_client('{"classifications": [{"item_number": 1, "category": "FOOD", "confidence": 0.9}]}')
        classifier = AnthropicLineItemClassifier(client=client, batch_max_tokens=2048)

        await classifier.classify_receipt(BATCH_ITEMS, CONTEXT)

        kwargs = client.messages.create.await_args.kwargs
        assert kwargs["max_tokens"] == 2048
        assert kwargs["temperature"] == 0.0
        prompt = kwargs["messages"][0]["content"]
        assert '1. "1 Pad Thai" - $14.00' in prompt
        assert '3. "Total" - $16.80' in prompt
        assert "Luigi's" in prompt
        assert "Expected Total: $30.00" in prompt
        assert client.messages.create.await_count == 1

    @pytest.mark.asyncio
    async def test_unknown_category_and_bad_numbers(self):
        client = mock_client(
            '```json\n{"classifications": ['
            '{"itemNumber": 1, "category": "BEVERAGE", "confidence": 0.8},'
            '{"item_number": 7, "category": "TAX", "confidence": 0.9},'
            '{"item_number": "two", "category": "TAX", "confidence": 0.9},'
            '{"item_number": 3, "category": "total", "confidence": 1.4}'
            ']}\n```'
        )
        classifier = AnthropicLineItemClassifier(client=client)

        answers = await classifier.classify_receipt(BATCH_ITEMS, CONTEXT)

        assert sorted(answers) == [0, 2]
        assert answers[0].category == ItemCategory.UNKNOWN
        assert answers[2].category == ItemCategory.TOTAL
        assert answers[2].confidence == 1.0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reply", [
        "Here are the classifications you asked for",
        '{"classifications": []}',
        '{"items": [{"item_number": 1, "category": "FOOD"}]}',
    ])
    async def test_unusable_reply(self, reply):
        classifier = AnthropicLineItemClassifier(client=mock_client(reply))

        with pytest.raises(LLMClassificationError):
            await classifier.classify_receipt(BATCH_ITEMS, CONTEXT)

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        classifier = AnthropicLineItemClassifier(api_key=None)

        with pytest.raises(LLMClassificationError):
            await classifier.classify_receipt(BATCH_ITEMS, CONTEXT)
