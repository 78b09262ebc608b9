"""
Classification Module - Multi-strategy receipt line classification

Three-stage process:
1. Strategy chain: position → keywords → arithmetic → LLM fallback, per line
2. Bucketing: one item per line into food/tax/tip/gratuity/subtotal/total/... buckets
3. Validation: sums, tax/tip plausibility, missing essentials, low confidence

Example flow:
- "Burger 12.99" (middle of receipt) → geometric → food (0.75)
- "TVA 5,5%" → pattern heuristic → tax (0.90)
- "Total 26.12" (last line) → geometric → total (0.95)
- "SVC CHG 4.50" → nothing confident → LLM → service_charge

The batch engine (BatchLLMReceiptClassifier) instead sends the whole receipt
to the LLM in one call and falls back to the chain when that call fails.
"""

from splitsmart.domain.classification.batch_classifier import (
    BatchLLMReceiptClassifier,
    build_classifier,
)
from splitsmart.domain.classification.context_builder import build_context, infer_receipt_type
from splitsmart.domain.classification.corrections import apply_correction, correct_item
from splitsmart.domain.classification.llm_client import AnthropicLineItemClassifier
from splitsmart.domain.classification.receipt_classifier import ReceiptClassifier
from splitsmart.domain.classification.receipt_validator import ReceiptValidator
from splitsmart.domain.classification.strategy_chain import (
    ClassificationStrategyChain,
    build_default_chain,
)

__all__ = [
    'AnthropicLineItemClassifier',
    'BatchLLMReceiptClassifier',
    'ClassificationStrategyChain',
    'ReceiptClassifier',
    'ReceiptValidator',
    'apply_correction',
    'build_classifier',
    'build_context',
    'build_default_chain',
    'correct_item',
    'infer_receipt_type',
]
