"""
Receipt classification schema (Pydantic models)

Line items arrive from OCR as a name + price. The classification pipeline
assigns each line a role (food, tax, tip, ...) and assembles the lines into a
ClassifiedReceipt: an arena of items keyed by id, with buckets holding the ids
of the items in each role.

All models are immutable - every change produces a new value.
"""
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator


DEFAULT_REVIEW_THRESHOLD = 0.7

# Confidence level cut-offs for UI badges
HIGH_CONFIDENCE_LEVEL = 0.85
MEDIUM_CONFIDENCE_LEVEL = 0.70


def utc_now() -> datetime:
    """Current time, timezone-aware"""
    return datetime.now(timezone.utc)


class ReceiptType(str, Enum):
    """Type of receipt (drives tax/tip plausibility)"""
    RESTAURANT = "restaurant"
    GROCERY = "grocery"
    RETAIL = "retail"
    DELIVERY = "delivery"
    UNKNOWN = "unknown"

    @property
    def typical_tax_range(self) -> Tuple[Decimal, Decimal]:
        """Inclusive tax rate range, as a fraction of subtotal"""
        return _TAX_RANGES[self]

    @property
    def expects_tax(self) -> bool:
        """Grocery receipts can be entirely tax-exempt"""
        return self.typical_tax_range[0] > 0

    @property
    def expects_tip(self) -> bool:
        return self in (ReceiptType.RESTAURANT, ReceiptType.DELIVERY)

    @property
    def expects_service_charge(self) -> bool:
        return self in (ReceiptType.RESTAURANT, ReceiptType.DELIVERY)


_TAX_RANGES = {
    ReceiptType.RESTAURANT: (Decimal("0.05"), Decimal("0.12")),
    ReceiptType.GROCERY: (Decimal("0.00"), Decimal("0.10")),
    ReceiptType.RETAIL: (Decimal("0.06"), Decimal("0.10")),
    ReceiptType.DELIVERY: (Decimal("0.05"), Decimal("0.12")),
    ReceiptType.UNKNOWN: (Decimal("0.05"), Decimal("0.15")),
}


class ItemCategory(str, Enum):
    """Semantic role of a receipt line"""
    FOOD = "food"
    TAX = "tax"
    TIP = "tip"
    GRATUITY = "gratuity"            # Auto-added (mandatory) gratuity
    SUBTOTAL = "subtotal"
    TOTAL = "total"
    DISCOUNT = "discount"
    SERVICE_CHARGE = "service_charge"
    DELIVERY_FEE = "delivery_fee"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def is_additional_charge(self) -> bool:
        """Charges added on top of the food items"""
        return self in (
            ItemCategory.TAX,
            ItemCategory.TIP,
            ItemCategory.GRATUITY,
            ItemCategory.SERVICE_CHARGE,
            ItemCategory.DELIVERY_FEE,
        )

    @property
    def is_summary_line(self) -> bool:
        return self in (ItemCategory.SUBTOTAL, ItemCategory.TOTAL)


_DISPLAY_NAMES = {
    ItemCategory.FOOD: "Food Item",
    ItemCategory.TAX: "Tax",
    ItemCategory.TIP: "Tip",
    ItemCategory.GRATUITY: "Auto-Gratuity",
    ItemCategory.SUBTOTAL: "Subtotal",
    ItemCategory.TOTAL: "Total",
    ItemCategory.DISCOUNT: "Discount",
    ItemCategory.SERVICE_CHARGE: "Service Charge",
    ItemCategory.DELIVERY_FEE: "Delivery Fee",
    ItemCategory.UNKNOWN: "Unknown",
}


class ClassificationMethod(str, Enum):
    """Provenance of a classification decision"""
    GEOMETRIC = "geometric"                    # Line position
    HEURISTIC = "heuristic"                    # Keyword / regex patterns
    PRICE_RELATIONSHIP = "price_relationship"  # Arithmetic against declared totals
    LLM = "llm"                                # Language model fallback
    MANUAL = "manual"                          # User correction


class ConfidenceLevel(str, Enum):
    """Bucketed confidence for UI badges"""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    PLACEHOLDER = "placeholder"


def confidence_level_for(confidence: Optional[float]) -> ConfidenceLevel:
    """Bucket a confidence score; None means not classified yet."""
    if confidence is None:
        return ConfidenceLevel.PLACEHOLDER
    if confidence >= HIGH_CONFIDENCE_LEVEL:
        return ConfidenceLevel.HIGH
    if confidence >= MEDIUM_CONFIDENCE_LEVEL:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


class RawLineItem(BaseModel):
    """Single OCR-detected receipt line"""
    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Line text as read by OCR")
    price: Decimal = Field(..., description="Line amount (negative for discounts)")


class ReceiptContext(BaseModel):
    """Receipt-level signals shared by every classification strategy"""
    model_config = ConfigDict(frozen=True)

    total_amount: Optional[Decimal] = Field(None, description="Declared total, if found in text")
    subtotal_amount: Optional[Decimal] = Field(None, description="Declared subtotal, if found in text")
    item_count: int = Field(default=0, ge=0, description="Number of OCR line items")
    receipt_type: ReceiptType = ReceiptType.UNKNOWN
    detected_language: str = Field(default="en", description="ISO language code")
    merchant_name: Optional[str] = None
    date: Optional[datetime] = None

    @property
    def expected_tax_range(self) -> Tuple[Decimal, Decimal]:
        return self.receipt_type.typical_tax_range


class ClassificationResult(BaseModel):
    """Output of a single strategy for a single line"""
    model_config = ConfigDict(frozen=True)

    category: ItemCategory
    confidence: float = Field(..., ge=0.0, le=1.0)
    method: ClassificationMethod
    reasoning: Optional[str] = Field(None, description="Why the strategy decided this")


class ClassifiedReceiptItem(BaseModel):
    """A receipt line with its classification metadata"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    name: str
    price: Decimal

    category: ItemCategory
    classification_confidence: float = Field(..., ge=0.0, le=1.0)
    classification_method: ClassificationMethod
    original_text: str
    position: int = Field(..., ge=0, description="Line position in receipt (0-based)")

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Manual correction tracking
    corrected_by: Optional[str] = None
    corrected_at: Optional[datetime] = None

    @model_validator(mode="after")
    def check_correction_provenance(self) -> "ClassifiedReceiptItem":
        """A corrected item is always manual with full confidence"""
        if self.corrected_by is not None:
            if self.classification_method != ClassificationMethod.MANUAL:
                raise ValueError("Corrected items must use the manual classification method")
            if self.classification_confidence != 1.0:
                raise ValueError("Corrected items must have confidence 1.0")
        return self

    def needs_review(self, threshold: float = DEFAULT_REVIEW_THRESHOLD) -> bool:
        return self.classification_confidence < threshold

    @property
    def confidence_level(self) -> ConfidenceLevel:
        return confidence_level_for(self.classification_confidence)

    @property
    def is_corrected(self) -> bool:
        return self.corrected_by is not None


class IssueSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class IssueType(str, Enum):
    SUBTOTAL_MISMATCH = "subtotal_mismatch"
    SUM_MISMATCH = "sum_mismatch"
    INVALID_TAX_RATE = "invalid_tax_rate"
    INVALID_TIP_RATE = "invalid_tip_rate"
    MISSING_TOTAL = "missing_total"
    MISSING_TAX = "missing_tax"
    MISSING_FOOD_ITEMS = "missing_food_items"
    LOW_CONFIDENCE = "low_confidence"


class ValidationIssue(BaseModel):
    """Non-fatal finding about a classified receipt"""
    model_config = ConfigDict(frozen=True)

    message: str
    severity: IssueSeverity
    issue_type: Optional[IssueType] = None
    affected_item_ids: Tuple[str, ...] = ()


class ValidationStatus(str, Enum):
    """Overall receipt status, ordered by severity"""
    VALID = "valid"
    NEEDS_REVIEW = "needs_review"
    WARNING = "warning"
    INVALID = "invalid"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def __lt__(self, other):
        if not isinstance(other, ValidationStatus):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, ValidationStatus):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, ValidationStatus):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, ValidationStatus):
            return NotImplemented
        return self.rank >= other.rank


_STATUS_RANK = {
    ValidationStatus.VALID: 0,
    ValidationStatus.NEEDS_REVIEW: 1,
    ValidationStatus.WARNING: 2,
    ValidationStatus.INVALID: 3,
}


class Bucket(str, Enum):
    """Named slots of a classified receipt"""
    FOOD_ITEMS = "food_items"
    TAX = "tax"
    TIP = "tip"
    GRATUITY = "gratuity"
    SUBTOTAL = "subtotal"
    TOTAL = "total"
    DISCOUNTS = "discounts"
    OTHER_CHARGES = "other_charges"
    UNKNOWN_ITEMS = "unknown_items"

    @property
    def is_singleton(self) -> bool:
        return self in SINGLETON_BUCKETS


SINGLETON_BUCKETS = frozenset({
    Bucket.TAX,
    Bucket.TIP,
    Bucket.GRATUITY,
    Bucket.SUBTOTAL,
    Bucket.TOTAL,
})

CATEGORY_BUCKETS = {
    ItemCategory.FOOD: Bucket.FOOD_ITEMS,
    ItemCategory.TAX: Bucket.TAX,
    ItemCategory.TIP: Bucket.TIP,
    ItemCategory.GRATUITY: Bucket.GRATUITY,
    ItemCategory.SUBTOTAL: Bucket.SUBTOTAL,
    ItemCategory.TOTAL: Bucket.TOTAL,
    ItemCategory.DISCOUNT: Bucket.DISCOUNTS,
    ItemCategory.SERVICE_CHARGE: Bucket.OTHER_CHARGES,
    ItemCategory.DELIVERY_FEE: Bucket.OTHER_CHARGES,
    ItemCategory.UNKNOWN: Bucket.UNKNOWN_ITEMS,
}


def demote_item(item: ClassifiedReceiptItem, confidence_cap: float) -> ClassifiedReceiptItem:
    """
    Demote an item that lost a singleton slot to another item.

    The item becomes unknown with its confidence capped so it surfaces for
    manual review. Correction provenance is dropped, since the category is no
    longer the one the user chose.
    """
    return item.model_copy(update={
        "category": ItemCategory.UNKNOWN,
        "classification_confidence": min(item.classification_confidence, confidence_cap),
        "corrected_by": None,
        "corrected_at": None,
        "updated_at": utc_now(),
    })


class ClassifiedReceipt(BaseModel):
    """
    A complete receipt with classified items and validation.

    Items are stored once in `items` (keyed by id); `buckets` maps each bucket
    to the ids it holds, sorted by position. Singleton buckets (tax, tip,
    gratuity, subtotal, total) hold at most one id.

    Frozen only stops field reassignment; `items` and `buckets` are plain
    dicts and must be treated as read-only. `relocate` and corrections build
    new maps for the receipt they return and never write to the maps of the
    receipt they were given. Copies made with `model_copy` (validation) share
    those maps with the source.
    """
    model_config = ConfigDict(
        frozen=True,
        json_schema_extra={
            "example": {
                "items": {
                    "3f0c...": {
                        "name": "Burger",
                        "price": "12.99",
                        "category": "food",
                        "classification_confidence": 0.75,
                        "classification_method": "geometric",
                        "original_text": "Burger",
                        "position": 0,
                    }
                },
                "buckets": {"food_items": ["3f0c..."], "tax": []},
                "total_confidence": 0.86,
                "validation_status": "valid",
                "validation_issues": [],
            }
        },
    )

    id: str = Field(default_factory=lambda: str(uuid4()))

    items: Dict[str, ClassifiedReceiptItem] = Field(default_factory=dict)
    buckets: Dict[Bucket, Tuple[str, ...]] = Field(
        default_factory=lambda: {bucket: () for bucket in Bucket}
    )

    total_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    validation_status: ValidationStatus = ValidationStatus.NEEDS_REVIEW
    validation_issues: Tuple[ValidationIssue, ...] = ()

    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    # Construction

    @classmethod
    def from_items(
        cls,
        items: Iterable[ClassifiedReceiptItem],
        demoted_confidence: float = 0.5,
        **fields,
    ) -> "ClassifiedReceipt":
        """
        Build a receipt by inserting items in position order.

        When two items land in the same singleton bucket, the later position
        wins and the earlier one is demoted to unknown_items.
        """
        arena: Dict[str, ClassifiedReceiptItem] = {}
        buckets: Dict[Bucket, List[str]] = {bucket: [] for bucket in Bucket}

        for item in sorted(items, key=lambda i: i.position):
            _insert(arena, buckets, item, demoted_confidence)

        if "total_confidence" not in fields:
            fields["total_confidence"] = _mean_confidence(arena.values())

        return cls(items=arena, buckets=_freeze(arena, buckets), **fields)

    def relocate(
        self,
        item: ClassifiedReceiptItem,
        demoted_confidence: float = 0.5,
    ) -> "ClassifiedReceipt":
        """
        Remove an item (by id) from its bucket and insert the given version
        into the bucket its category maps to.

        Returns a new receipt; validation status and issues are carried over
        unchanged (re-validating is the caller's job).
        """
        if item.id not in self.items:
            raise KeyError(f"Item {item.id} is not part of receipt {self.id}")

        arena = dict(self.items)
        buckets = {bucket: [i for i in ids if i != item.id] for bucket, ids in self.buckets.items()}
        del arena[item.id]

        _insert(arena, buckets, item, demoted_confidence)

        return self.model_copy(update={
            "items": arena,
            "buckets": _freeze(arena, buckets),
            "total_confidence": _mean_confidence(arena.values()),
            "updated_at": utc_now(),
        })

    # Bucket accessors

    def bucket_items(self, bucket: Bucket) -> List[ClassifiedReceiptItem]:
        return [self.items[item_id] for item_id in self.buckets.get(bucket, ())]

    def _single(self, bucket: Bucket) -> Optional[ClassifiedReceiptItem]:
        ids = self.buckets.get(bucket, ())
        return self.items[ids[0]] if ids else None

    @property
    def food_items(self) -> List[ClassifiedReceiptItem]:
        return self.bucket_items(Bucket.FOOD_ITEMS)

    @property
    def tax(self) -> Optional[ClassifiedReceiptItem]:
        return self._single(Bucket.TAX)

    @property
    def tip(self) -> Optional[ClassifiedReceiptItem]:
        return self._single(Bucket.TIP)

    @property
    def gratuity(self) -> Optional[ClassifiedReceiptItem]:
        return self._single(Bucket.GRATUITY)

    @property
    def subtotal(self) -> Optional[ClassifiedReceiptItem]:
        return self._single(Bucket.SUBTOTAL)

    @property
    def total(self) -> Optional[ClassifiedReceiptItem]:
        return self._single(Bucket.TOTAL)

    @property
    def discounts(self) -> List[ClassifiedReceiptItem]:
        return self.bucket_items(Bucket.DISCOUNTS)

    @property
    def other_charges(self) -> List[ClassifiedReceiptItem]:
        return self.bucket_items(Bucket.OTHER_CHARGES)

    @property
    def unknown_items(self) -> List[ClassifiedReceiptItem]:
        return self.bucket_items(Bucket.UNKNOWN_ITEMS)

    @property
    def all_items(self) -> List[ClassifiedReceiptItem]:
        """Every item across all buckets, in receipt order"""
        return sorted(self.items.values(), key=lambda i: i.position)

    def bucket_of(self, item_id: str) -> Optional[Bucket]:
        for bucket, ids in self.buckets.items():
            if item_id in ids:
                return bucket
        return None

    # Arithmetic helpers

    def food_items_sum(self) -> Decimal:
        return sum((i.price for i in self.food_items), Decimal("0"))

    def total_discounts(self) -> Decimal:
        """Discounts as a positive amount, whatever sign OCR gave them"""
        return sum((abs(i.price) for i in self.discounts), Decimal("0"))

    def total_charges(self) -> Decimal:
        """Tax + tip + gratuity + service/delivery charges"""
        charges = [self.tax, self.tip, self.gratuity, *self.other_charges]
        return sum((i.price for i in charges if i is not None), Decimal("0"))

    def expected_total(self) -> Decimal:
        return self.food_items_sum() + self.total_charges() - self.total_discounts()

    def items_needing_review(self, threshold: float = DEFAULT_REVIEW_THRESHOLD) -> List[ClassifiedReceiptItem]:
        return [i for i in self.all_items if i.needs_review(threshold)]

    def requires_user_review(self, threshold: float = DEFAULT_REVIEW_THRESHOLD) -> bool:
        return (
            self.validation_status in (ValidationStatus.INVALID, ValidationStatus.NEEDS_REVIEW)
            or bool(self.items_needing_review(threshold))
        )


def _insert(
    arena: Dict[str, ClassifiedReceiptItem],
    buckets: Dict[Bucket, List[str]],
    item: ClassifiedReceiptItem,
    demoted_confidence: float,
) -> None:
    bucket = CATEGORY_BUCKETS[item.category]

    if bucket.is_singleton and buckets[bucket]:
        previous_id = buckets[bucket].pop()
        demoted = demote_item(arena[previous_id], demoted_confidence)
        arena[previous_id] = demoted
        buckets[Bucket.UNKNOWN_ITEMS].append(previous_id)

    arena[item.id] = item
    buckets[bucket].append(item.id)


def _freeze(
    arena: Dict[str, ClassifiedReceiptItem],
    buckets: Dict[Bucket, List[str]],
) -> Dict[Bucket, Tuple[str, ...]]:
    return {
        bucket: tuple(sorted(ids, key=lambda item_id: arena[item_id].position))
        for bucket, ids in buckets.items()
    }


def _mean_confidence(items: Iterable[ClassifiedReceiptItem]) -> float:
    confidences = [i.classification_confidence for i in items]
    if not confidences:
        return 0.0
    return sum(confidences) / len(confidences)
