"""
Context Builder - ReceiptContext from raw OCR lines

OCR rarely knows what kind of receipt it read. Infer a receipt type from the
line names so tax-rate expectations fit the receipt.
"""
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

import structlog

from splitsmart.common.schemas.receipt_classification import (
    RawLineItem,
    ReceiptContext,
    ReceiptType,
)

logger = structlog.get_logger()

RESTAURANT_KEYWORDS = (
    "burger", "pizza", "fries", "drink", "soda", "entree", "appetizer",
    "dessert", "meal", "sandwich",
)
GROCERY_KEYWORDS = ("milk", "bread", "eggs", "produce", "meat", "organic", "fresh")
DELIVERY_KEYWORDS = ("delivery", "shipping", "postage")

# Long receipts without other signals are usually grocery runs
GROCERY_ITEM_COUNT = 10


def _count_matches(names: Sequence[str], keywords: Sequence[str]) -> int:
    return sum(1 for name in names if any(keyword in name for keyword in keywords))


def infer_receipt_type(items: Sequence[RawLineItem]) -> ReceiptType:
    """
    Guess the receipt type from line names.

    Priority:
    1. Any delivery keyword → delivery
    2. Two or more restaurant lines → restaurant
    3. Two or more grocery lines, or more than 10 lines → grocery
    4. Otherwise unknown

    Args:
        items: Raw OCR lines

    Returns:
        Inferred ReceiptType
    """
    names = [item.name.lower() for item in items]

    if _count_matches(names, DELIVERY_KEYWORDS) > 0:
        return ReceiptType.DELIVERY
    if _count_matches(names, RESTAURANT_KEYWORDS) >= 2:
        return ReceiptType.RESTAURANT
    if _count_matches(names, GROCERY_KEYWORDS) >= 2 or len(items) > GROCERY_ITEM_COUNT:
        return ReceiptType.GROCERY
    return ReceiptType.UNKNOWN


def build_context(
    items: Sequence[RawLineItem],
    total_amount: Optional[Decimal] = None,
    subtotal_amount: Optional[Decimal] = None,
    receipt_type: Optional[ReceiptType] = None,
    detected_language: str = "en",
    merchant_name: Optional[str] = None,
    date: Optional[datetime] = None,
) -> ReceiptContext:
    """
    Build a ReceiptContext for a list of raw lines.

    The item count always comes from the lines; the receipt type is inferred
    unless given.

    Returns:
        ReceiptContext
    """
    if receipt_type is None:
        receipt_type = infer_receipt_type(items)
        logger.debug("receipt_type_inferred", receipt_type=receipt_type.value, item_count=len(items))

    return ReceiptContext(
        total_amount=total_amount,
        subtotal_amount=subtotal_amount,
        item_count=len(items),
        receipt_type=receipt_type,
        detected_language=detected_language,
        merchant_name=merchant_name,
        date=date,
    )
