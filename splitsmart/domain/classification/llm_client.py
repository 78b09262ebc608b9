"""
Anthropic Line Classifier - LLM collaborator backed by the Claude API

Two modes, both deterministic (temperature 0) with a JSON reply:
- classify_unknown: one line the strategy chain could not place
- classify_receipt: every line of a receipt in a single call (batch engine)

Example:
- Input: "SVC CHG" $4.50 on a restaurant receipt
- AI Output: {"category": "SERVICE_CHARGE", "confidence": 0.82, "reasoning": "..."}
"""
import json
import os
from decimal import Decimal
from typing import Any, Dict, Optional, Sequence

import anthropic
import structlog

from splitsmart.common.schemas.receipt_classification import (
    ItemCategory,
    RawLineItem,
    ReceiptContext,
)
from splitsmart.domain.classification.strategies.llm import (
    LLMClassification,
    LLMClassificationError,
    coerce_category,
)

logger = structlog.get_logger()

DEFAULT_MODEL = "claude-sonnet-4-5"


class AnthropicLineItemClassifier:
    """
    LLM collaborator using Anthropic Claude.

    Usage:
        classifier = AnthropicLineItemClassifier(api_key=config.anthropic_api_key)
        answer = await classifier.classify_unknown("SVC CHG", Decimal("4.50"), context)
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        client: Optional[Any] = None,
        max_tokens: int = 200,
        batch_max_tokens: int = 4096,
    ):
        """
        Initialize classifier.

        Args:
            api_key: Anthropic API key (defaults to ANTHROPIC_API_KEY env var)
            model: Claude model name
            client: Pre-built AsyncAnthropic client (for tests / shared pools)
            max_tokens: Reply token limit for one line
            batch_max_tokens: Reply token limit for a whole receipt
        """
        self.model = model
        self.max_tokens = max_tokens
        self.batch_max_tokens = batch_max_tokens

        if client is not None:
            self.client = client
            return

        api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not api_key:
            logger.warning("anthropic_api_key_missing",
                           message="ANTHROPIC_API_KEY not set, LLM classification will fail")

        self.client = anthropic.AsyncAnthropic(api_key=api_key) if api_key else None

    async def classify_unknown(
        self,
        name: str,
        price: Decimal,
        context: ReceiptContext,
    ) -> LLMClassification:
        """
        Classify one receipt line with Claude.

        Args:
            name: Line name from OCR
            price: Line amount
            context: Receipt-level signals

        Returns:
            LLMClassification

        Raises:
            LLMClassificationError: Missing API key, API failure or unusable reply
        """
        if self.client is None:
            raise LLMClassificationError("Cannot call Claude without an API key")

        prompt = self._build_classification_prompt(name, price, context)

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                temperature=0.0,  # Deterministic for consistency
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ]
            )
        except anthropic.APIError as e:
            raise LLMClassificationError(f"Claude API call failed: {e}") from e

        logger.debug("llm_response_received",
                     item_name=name,
                     input_tokens=response.usage.input_tokens,
                     output_tokens=response.usage.output_tokens)

        return self._parse_ai_response(response.content[0].text)

    async def classify_receipt(
        self,
        items: Sequence[RawLineItem],
        context: ReceiptContext,
    ) -> Dict[int, LLMClassification]:
        """
        Classify every line of a receipt in one Claude call.

        Args:
            items: Raw OCR lines in receipt order
            context: Receipt-level signals

        Returns:
            Answers keyed by 0-based position (lines Claude skipped are absent)

        Raises:
            LLMClassificationError: Missing API key, API failure or unusable reply
        """
        if self.client is None:
            raise LLMClassificationError("Cannot call Claude without an API key")

        prompt = self._build_batch_prompt(items, context)

        try:
            response = await self.client.messages.create(
                model=self.model,
                max_tokens=self.batch_max_tokens,
                temperature=0.0,
                messages=[
                    {
                        "role": "user",
                        "content": prompt
                    }
                ]
            )
        except anthropic.APIError as e:
            raise LLMClassificationError(f"Claude API call failed: {e}") from e

        logger.info("llm_batch_response_received",
                    item_count=len(items),
                    input_tokens=response.usage.input_tokens,
                    output_tokens=response.usage.output_tokens)

        return self._parse_batch_response(response.content[0].text, len(items))

    def _build_classification_prompt(self, name: str, price: Decimal, context: ReceiptContext) -> str:
        """
        Build the classification prompt for one line.

        Args:
            name: Line name
            price: Line amount
            context: Receipt-level signals

        Returns:
            Prompt text
        """
        total = f"${context.total_amount:.2f}" if context.total_amount is not None else "unknown"
        subtotal = f"${context.subtotal_amount:.2f}" if context.subtotal_amount is not None else "unknown"

        prompt = f"""You are a receipt item classifier. Classify the following receipt line item into one of these categories:

CATEGORIES:
- FOOD: Food and beverage items ordered by customers
- TAX: Sales tax, VAT, GST, HST, or other government taxes
- TIP: Optional gratuity added by customer
- GRATUITY: Mandatory auto-added gratuity (e.g., "Large Party 20%")
- SUBTOTAL: Sum of all food items before tax/tip
- TOTAL: Final amount to be paid (subtotal + tax + tip + fees - discounts)
- DISCOUNT: Coupons, promotions, price reductions (usually negative or "off")
- SERVICE_CHARGE: Mandatory service fees (not gratuity)
- DELIVERY_FEE: Delivery or shipping charges
- UNKNOWN: Cannot determine category with confidence

RECEIPT CONTEXT:
- Receipt Type: {context.receipt_type.value}
- Total Items: {context.item_count}
- Expected Total: {total}
- Expected Subtotal: {subtotal}
- Language: {context.detected_language}
"""
        if context.merchant_name:
            prompt += f"- Merchant: {context.merchant_name}\n"

        prompt += f"""
ITEM TO CLASSIFY:
- Name: "{name}"
- Price: ${price:.2f}

CLASSIFICATION RULES:
1. TAX vs TIP: Tax is government-mandated (tax, vat, gst, hst, tva, iva), Tip is customer gratuity (tip, pourboire, propina)
2. TIP vs GRATUITY: Tip is optional, Gratuity is auto-added and mandatory (auto grat, large party, service charge with %)
3. SUBTOTAL vs TOTAL: Subtotal excludes tax/tip, Total includes everything
4. SERVICE_CHARGE vs GRATUITY: Service charge is a non-tip fee (processing, convenience)
5. Negative amounts are almost always discounts

RESPONSE FORMAT (return ONLY this JSON, no other text):
{{
  "category": "<CATEGORY>",
  "confidence": 0.85,
  "reasoning": "<brief explanation>"
}}
"""
        return prompt

    def _parse_ai_response(self, response_text: str) -> LLMClassification:
        """
        Parse JSON reply from Claude.

        Args:
            response_text: Raw reply text

        Returns:
            LLMClassification

        Raises:
            LLMClassificationError: If the reply is not usable JSON or names an unknown category
        """
        response_text = strip_code_fence(response_text)

        try:
            data = json.loads(response_text)
            raw_category = str(data["category"]).strip().lower()
            confidence = float(data.get("confidence", 0.5))
        except (ValueError, KeyError, TypeError) as e:
            logger.error("ai_response_parse_failed",
                         response=response_text,
                         error=str(e))
            raise LLMClassificationError(f"Unparseable LLM reply: {response_text!r}") from e

        try:
            category = ItemCategory(raw_category)
        except ValueError as e:
            raise LLMClassificationError(f"Unknown category in LLM reply: {raw_category!r}") from e

        return LLMClassification(
            category=category,
            confidence=max(0.0, min(1.0, confidence)),
            reasoning=data.get("reasoning"),
        )

    def _build_batch_prompt(self, items: Sequence[RawLineItem], context: ReceiptContext) -> str:
        """
        Build one prompt listing every line, numbered from 1.

        Args:
            items: Raw OCR lines in receipt order
            context: Receipt-level signals

        Returns:
            Prompt text
        """
        lines = "\n".join(
            f'{number}. "{item.name}" - ${item.price:.2f}'
            for number, item in enumerate(items, start=1)
        )

        prompt = f"""You are an expert receipt classification system. Classify every line item of this receipt.

RECEIPT CONTEXT:
- Merchant: {context.merchant_name or "Unknown merchant"}
- Receipt Type: {context.receipt_type.value}
- Total Items: {len(items)}
- Language: {context.detected_language}
"""
        if context.total_amount is not None:
            prompt += f"- Expected Total: ${context.total_amount:.2f}\n"
        if context.subtotal_amount is not None:
            prompt += f"- Expected Subtotal: ${context.subtotal_amount:.2f}\n"

        prompt += f"""
ITEMS TO CLASSIFY:
{lines}

CATEGORIES:
- FOOD: Food and beverage items ordered by customers
- TAX: Sales tax, VAT, GST, HST, or other government taxes
- TIP: Optional gratuity added by customer
- GRATUITY: Mandatory auto-added gratuity (e.g., "Large Party 20%")
- SUBTOTAL: Sum of all food items before tax/tip
- TOTAL: Final amount to be paid
- DISCOUNT: Coupons, promotions, price reductions (usually negative)
- SERVICE_CHARGE: Mandatory service or convenience fees (not gratuity)
- DELIVERY_FEE: Delivery or shipping charges
- UNKNOWN: Cannot determine category

CLASSIFICATION RULES:
1. Quantity prefixes ("1 Pad Thai", "2x Soda") indicate FOOD
2. A percentage next to "party", "auto" or "gratuity" is GRATUITY, not TIP or FOOD
3. Totals are usually at the bottom; the subtotal comes before tax and tip
4. Negative amounts are almost always discounts
5. Use the receipt type and the surrounding lines for ambiguous items

RESPONSE FORMAT (return ONLY this JSON, no other text):
{{
  "classifications": [
    {{"item_number": 1, "category": "FOOD", "confidence": 0.95, "reasoning": "<brief explanation>"}}
  ]
}}

Provide a classification for ALL {len(items)} items. Confidence must be between 0.0 and 1.0.
"""
        return prompt

    def _parse_batch_response(self, response_text: str, item_count: int) -> Dict[int, LLMClassification]:
        """
        Parse a batch reply into answers keyed by 0-based position.

        Entries with an unknown category become UNKNOWN. Entries with a
        missing or out-of-range item number are logged and skipped.

        Raises:
            LLMClassificationError: If the reply is not JSON or holds no classifications
        """
        response_text = strip_code_fence(response_text)

        try:
            entries = json.loads(response_text)["classifications"]
        except (ValueError, KeyError, TypeError) as e:
            logger.error("ai_batch_response_parse_failed",
                         response=response_text,
                         error=str(e))
            raise LLMClassificationError(f"Unparseable LLM batch reply: {response_text!r}") from e

        if not isinstance(entries, list) or not entries:
            raise LLMClassificationError("LLM batch reply holds no classifications")

        answers: Dict[int, LLMClassification] = {}
        for entry in entries:
            try:
                number = int(entry.get("item_number", entry.get("itemNumber")))
                confidence = max(0.0, min(1.0, float(entry.get("confidence", 0.5))))
            except (AttributeError, TypeError, ValueError):
                logger.warning("ai_batch_entry_skipped", entry=entry)
                continue

            if not 1 <= number <= item_count:
                logger.warning("ai_batch_item_out_of_range", item_number=number, item_count=item_count)
                continue

            try:
                category = coerce_category(entry.get("category"))
            except ValueError:
                category = ItemCategory.UNKNOWN

            answers[number - 1] = LLMClassification(
                category=category,
                confidence=confidence,
                reasoning=entry.get("reasoning"),
            )

        return answers


def strip_code_fence(response_text: str) -> str:
    """Claude should return clean JSON, but extract it if wrapped in markdown"""
    if "```json" in response_text:
        return response_text.split("```json")[1].split("```")[0].strip()
    if "```" in response_text:
        return response_text.split("```")[1].split("```")[0].strip()
    return response_text
