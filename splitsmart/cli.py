#!/usr/bin/env python3
"""
Classify receipt line items from a JSON file.

Usage:
    splitsmart-classify items.json [--receipt-type restaurant] [--total 26.12] [--engine batch_llm]

Input format:
    [{"name": "Burger", "price": 12.99}, {"name": "Tax", "price": 1.04}, ...]

Prints the validated ClassifiedReceipt as JSON on stdout; logs go to stderr.
"""
import argparse
import asyncio
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import List, Optional, Sequence

import structlog

from splitsmart.common.config import PRESETS, ClassificationEngine, load_config
from splitsmart.common.logging_config import configure_logging
from splitsmart.common.schemas.receipt_classification import RawLineItem, ReceiptType
from splitsmart.domain.classification import (
    AnthropicLineItemClassifier,
    build_classifier,
    build_context,
)

logger = structlog.get_logger()


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a valid amount: {value!r}") from None


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="splitsmart-classify",
        description="Classify OCR receipt line items (food, tax, tip, total, ...)",
    )
    parser.add_argument("file", type=Path, help="JSON file with [{\"name\": ..., \"price\": ...}]")
    parser.add_argument(
        "--receipt-type",
        choices=[t.value for t in ReceiptType],
        help="Receipt type (inferred from item names if omitted)",
    )
    parser.add_argument("--total", type=_decimal, help="Declared receipt total")
    parser.add_argument("--subtotal", type=_decimal, help="Declared receipt subtotal")
    parser.add_argument("--merchant", help="Merchant name")
    parser.add_argument("--language", default="en", help="ISO language code (default: en)")
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default="default",
        help="Classification preset (default: default)",
    )
    parser.add_argument(
        "--engine",
        choices=[e.value for e in ClassificationEngine],
        help="chain (per-line strategies) or batch_llm (whole receipt in one LLM call)",
    )
    parser.add_argument("--no-llm", action="store_true", help="Disable the LLM fallback")
    return parser


def load_items(path: Path) -> List[RawLineItem]:
    """
    Read raw line items from a JSON file.

    Raises:
        ValueError: If the file is not a JSON list of {name, price} objects
    """
    data = json.loads(path.read_text(encoding="utf-8"), parse_float=Decimal)
    if not isinstance(data, list):
        raise ValueError("Expected a JSON list of line items")

    items = []
    for index, entry in enumerate(data):
        try:
            items.append(RawLineItem(name=entry["name"], price=Decimal(str(entry["price"]))))
        except (KeyError, TypeError, InvalidOperation) as e:
            raise ValueError(f"Malformed line item at index {index}: {e!r}") from e
    return items


async def run(args: argparse.Namespace) -> str:
    overrides = {"llm_enabled": False} if args.no_llm else {}
    if args.engine:
        overrides["engine"] = args.engine
    config = load_config(args.preset, **overrides)
    configure_logging(config.log_level, file=sys.stderr)

    items = load_items(args.file)
    logger.info("cli_classification_started",
                file=str(args.file),
                item_count=len(items),
                preset=args.preset,
                engine=config.engine.value)
    context = build_context(
        items,
        total_amount=args.total,
        subtotal_amount=args.subtotal,
        receipt_type=ReceiptType(args.receipt_type) if args.receipt_type else None,
        detected_language=args.language,
        merchant_name=args.merchant,
    )

    collaborator = None
    if config.llm_enabled:
        collaborator = AnthropicLineItemClassifier(api_key=config.anthropic_api_key, model=config.llm_model)

    classifier = build_classifier(config, llm_collaborator=collaborator)
    receipt = await classifier.classify(items, context)
    return receipt.model_dump_json(indent=2)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    try:
        output = asyncio.run(run(args))
    except (OSError, KeyError, ValueError) as e:
        print(f"error: {e}", file=sys.stderr)
        return 1

    print(output)
    return 0


if __name__ == "__main__":
    sys.exit(main())
