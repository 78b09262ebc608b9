"""
Shared fixtures for classification tests.

Every test gets a default configuration with the LLM fallback disabled, so
nothing reaches the network unless a test wires in a mock collaborator.
"""
from decimal import Decimal

import pytest

from splitsmart.common.config import load_config
from splitsmart.common.schemas.receipt_classification import (
    RawLineItem,
    ReceiptContext,
    ReceiptType,
)
from splitsmart.domain.classification import ReceiptClassifier


def make_items(*pairs):
    """[("Burger", "12.99"), ...] → [RawLineItem, ...]"""
    return [RawLineItem(name=name, price=Decimal(price)) for name, price in pairs]


def make_context(items=None, total=None, subtotal=None, receipt_type=ReceiptType.UNKNOWN, **kwargs):
    """ReceiptContext with item_count taken from the items list"""
    return ReceiptContext(
        total_amount=Decimal(total) if total is not None else None,
        subtotal_amount=Decimal(subtotal) if subtotal is not None else None,
        item_count=len(items) if items is not None else kwargs.pop("item_count", 0),
        receipt_type=receipt_type,
        **kwargs,
    )


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep developer .env files and RECEIPT_* variables out of tests."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
    for name in [
        "RECEIPT_STOP_CONFIDENCE_THRESHOLD",
        "RECEIPT_MINIMUM_ACCEPTABLE_CONFIDENCE",
        "RECEIPT_STRATEGY_ORDER",
        "RECEIPT_REVIEW_THRESHOLD",
        "RECEIPT_DEMOTED_CONFIDENCE",
        "RECEIPT_SUM_TOLERANCE",
        "RECEIPT_TIP_RATE_MIN",
        "RECEIPT_TIP_RATE_MAX",
        "RECEIPT_LLM_ENABLED",
        "RECEIPT_ENGINE",
        "RECEIPT_LLM_TIMEOUT_SECONDS",
        "RECEIPT_LLM_BATCH_TIMEOUT_SECONDS",
        "RECEIPT_LLM_MODEL",
        "RECEIPT_MAX_LLM_CALLS_PER_RECEIPT",
        "LOG_LEVEL",
    ]:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def config():
    return load_config(llm_enabled=False)


@pytest.fixture
def classifier(config):
    return ReceiptClassifier(config)


# ── Scenario receipts ────────────────────────────────────────────────────────

@pytest.fixture
def restaurant_items():
    return make_items(
        ("Burger", "12.99"),
        ("Fries", "4.99"),
        ("Soda", "2.50"),
        ("Subtotal", "20.48"),
        ("Tax", "1.64"),
        ("Tip", "4.00"),
        ("Total", "26.12"),
    )


@pytest.fixture
def restaurant_context(restaurant_items):
    return make_context(
        restaurant_items,
        total="26.12",
        subtotal="20.48",
        receipt_type=ReceiptType.RESTAURANT,
    )


@pytest.fixture
def gratuity_items():
    return make_items(
        ("1 Pasta", "18.00"),
        ("1 Pizza", "22.00"),
        ("2 Drinks", "8.00"),
        ("Subtotal", "48.00"),
        ("Tax", "3.84"),
        ("Large Party Gratuity (20%)", "9.60"),
        ("Total", "61.44"),
    )
