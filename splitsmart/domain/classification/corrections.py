"""
Corrections - User re-categorization of classified items

Corrections are pure: they return new values and never touch the receipt they
were given. Re-validating after a correction is the caller's decision.
"""
from datetime import datetime
from typing import Optional

import structlog

from splitsmart.common.schemas.receipt_classification import (
    ClassifiedReceipt,
    ClassifiedReceiptItem,
    ItemCategory,
    RawLineItem,
    ReceiptContext,
    utc_now,
)
from splitsmart.domain.classification.strategies import ManualClassificationStrategy

logger = structlog.get_logger()


def correct_item(
    item: ClassifiedReceiptItem,
    category: ItemCategory,
    corrected_by: str,
    now: Optional[datetime] = None,
) -> ClassifiedReceiptItem:
    """
    Re-categorize a single item as a manual correction.

    Args:
        item: Item to correct
        category: Category chosen by the user
        corrected_by: User identifier
        now: Correction timestamp (current UTC time when omitted)

    Returns:
        New item with method manual, confidence 1.0 and correction provenance
    """
    now = now or utc_now()
    result = ManualClassificationStrategy(category).classify(
        RawLineItem(name=item.name, price=item.price),
        item.position,
        ReceiptContext(),
    )

    return ClassifiedReceiptItem.model_validate({
        **item.model_dump(),
        "category": result.category,
        "classification_confidence": result.confidence,
        "classification_method": result.method,
        "corrected_by": corrected_by,
        "corrected_at": now,
        "updated_at": now,
    })


def apply_correction(
    receipt: ClassifiedReceipt,
    item_id: str,
    category: ItemCategory,
    corrected_by: str,
    demoted_confidence: float = 0.5,
    now: Optional[datetime] = None,
) -> ClassifiedReceipt:
    """
    Correct one item of a receipt and move it to its new bucket.

    If the target slot (tax, tip, gratuity, subtotal, total) is taken, the
    current occupant is demoted to unknown_items.

    Args:
        receipt: Receipt containing the item
        item_id: Id of the item to correct
        category: Category chosen by the user
        corrected_by: User identifier
        demoted_confidence: Confidence cap for a displaced occupant
        now: Correction timestamp

    Returns:
        New ClassifiedReceipt (not re-validated)

    Raises:
        KeyError: If the item is not part of the receipt
    """
    if item_id not in receipt.items:
        raise KeyError(f"Item {item_id} is not part of receipt {receipt.id}")

    original = receipt.items[item_id]
    corrected = correct_item(original, category, corrected_by, now=now)

    logger.info("item_corrected",
                receipt_id=receipt.id,
                item_id=item_id,
                previous_category=original.category.value,
                category=category.value,
                corrected_by=corrected_by)

    return receipt.relocate(corrected, demoted_confidence=demoted_confidence)
