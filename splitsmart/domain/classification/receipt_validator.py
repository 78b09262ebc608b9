"""
Receipt Validator - Arithmetic and plausibility checks on a classified receipt

Checks:
1. Subtotal matches the food items (less discounts)
2. Total matches subtotal plus charges
3. Tax rate is plausible for the receipt type
4. Tip rate is within the typical range
5. Essentials are present (total, tax, food items)
6. Low-confidence items are flagged for review

Validation never changes categorization and never raises; findings become
ValidationIssue entries and drive the overall status.
"""
from typing import List, Optional

import structlog

from splitsmart.common.config import ClassificationConfig
from splitsmart.common.schemas.receipt_classification import (
    ClassifiedReceipt,
    IssueSeverity,
    IssueType,
    ReceiptContext,
    ValidationIssue,
    ValidationStatus,
)

logger = structlog.get_logger()


class ReceiptValidator:
    """
    Validates classified receipts for mathematical consistency.

    Usage:
        validator = ReceiptValidator(config)
        validated = validator.validate(receipt, context)
        print(validated.validation_status, validated.validation_issues)
    """

    def __init__(self, config: Optional[ClassificationConfig] = None):
        self.config = config or ClassificationConfig()

    def validate(self, receipt: ClassifiedReceipt, context: ReceiptContext) -> ClassifiedReceipt:
        """
        Run all checks and attach status + issues.

        Args:
            receipt: Bucketed receipt from the classifier
            context: Receipt-level signals (receipt type drives tax expectations)

        Returns:
            New ClassifiedReceipt with validation_status and validation_issues set
        """
        issues: List[ValidationIssue] = []

        for check in (self._check_subtotal_sum, self._check_total_sum):
            issue = check(receipt)
            if issue is not None:
                issues.append(issue)

        tax_issue = self._check_tax_rate(receipt, context)
        if tax_issue is not None:
            issues.append(tax_issue)

        tip_issue = self._check_tip_rate(receipt)
        if tip_issue is not None:
            issues.append(tip_issue)

        issues.extend(self._check_missing_essentials(receipt, context))

        review_issue = self._check_confidence(receipt)
        if review_issue is not None:
            issues.append(review_issue)

        status = self.determine_status(issues)

        logger.info("receipt_validated",
                    receipt_id=receipt.id,
                    status=status.value,
                    issue_count=len(issues),
                    issue_types=[i.issue_type.value for i in issues if i.issue_type])

        return receipt.model_copy(update={
            "validation_status": status,
            "validation_issues": tuple(issues),
        })

    # Validation checks

    def _check_subtotal_sum(self, receipt: ClassifiedReceipt) -> Optional[ValidationIssue]:
        subtotal = receipt.subtotal
        if subtotal is None or not receipt.food_items:
            return None

        calculated = receipt.food_items_sum() - receipt.total_discounts()
        if abs(calculated - subtotal.price) <= self.config.sum_tolerance:
            return None

        logger.debug("subtotal_mismatch",
                     subtotal=str(subtotal.price),
                     calculated=str(calculated))
        return ValidationIssue(
            message="Subtotal does not match sum of items.",
            severity=IssueSeverity.ERROR,
            issue_type=IssueType.SUBTOTAL_MISMATCH,
            affected_item_ids=(subtotal.id,),
        )

    def _check_total_sum(self, receipt: ClassifiedReceipt) -> Optional[ValidationIssue]:
        total = receipt.total
        if total is None:
            return None

        # A declared subtotal already has discounts applied
        if receipt.subtotal is not None:
            base = receipt.subtotal.price
        else:
            base = receipt.food_items_sum() - receipt.total_discounts()

        calculated = base + receipt.total_charges()
        if abs(calculated - total.price) <= self.config.sum_tolerance:
            return None

        logger.debug("total_mismatch",
                     total=str(total.price),
                     calculated=str(calculated))
        return ValidationIssue(
            message="Total does not match sum of charges.",
            severity=IssueSeverity.ERROR,
            issue_type=IssueType.SUM_MISMATCH,
            affected_item_ids=(total.id,),
        )

    def _check_tax_rate(self, receipt: ClassifiedReceipt, context: ReceiptContext) -> Optional[ValidationIssue]:
        tax, subtotal = receipt.tax, receipt.subtotal
        if tax is None or subtotal is None or subtotal.price <= 0:
            return None

        rate = tax.price / subtotal.price
        low, high = context.expected_tax_range
        if low <= rate <= high:
            return None

        return ValidationIssue(
            message="Tax rate unusual for receipt type.",
            severity=IssueSeverity.WARNING,
            issue_type=IssueType.INVALID_TAX_RATE,
            affected_item_ids=(tax.id,),
        )

    def _check_tip_rate(self, receipt: ClassifiedReceipt) -> Optional[ValidationIssue]:
        tip, subtotal = receipt.tip, receipt.subtotal
        if tip is None:
            return None

        base = subtotal.price if subtotal is not None else receipt.food_items_sum()
        if base <= 0:
            return None

        rate = tip.price / base
        if self.config.tip_rate_min <= rate <= self.config.tip_rate_max:
            return None

        return ValidationIssue(
            message="Tip rate unusual.",
            severity=IssueSeverity.INFO,
            issue_type=IssueType.INVALID_TIP_RATE,
            affected_item_ids=(tip.id,),
        )

    def _check_missing_essentials(self, receipt: ClassifiedReceipt, context: ReceiptContext) -> List[ValidationIssue]:
        issues = []

        if receipt.total is None:
            issues.append(ValidationIssue(
                message="No total detected.",
                severity=IssueSeverity.WARNING,
                issue_type=IssueType.MISSING_TOTAL,
            ))

        if receipt.tax is None and context.receipt_type.expects_tax:
            issues.append(ValidationIssue(
                message="No tax detected.",
                severity=IssueSeverity.INFO,
                issue_type=IssueType.MISSING_TAX,
            ))

        if not receipt.food_items:
            issues.append(ValidationIssue(
                message="No food items detected.",
                severity=IssueSeverity.ERROR,
                issue_type=IssueType.MISSING_FOOD_ITEMS,
            ))

        return issues

    def _check_confidence(self, receipt: ClassifiedReceipt) -> Optional[ValidationIssue]:
        low_confidence = receipt.items_needing_review(self.config.review_threshold)
        if not low_confidence:
            return None

        return ValidationIssue(
            message=f"{len(low_confidence)} items need manual review.",
            severity=IssueSeverity.INFO,
            issue_type=IssueType.LOW_CONFIDENCE,
            affected_item_ids=tuple(i.id for i in low_confidence),
        )

    @staticmethod
    def determine_status(issues: List[ValidationIssue]) -> ValidationStatus:
        """Worst severity wins; any remaining issue means review"""
        severities = {i.severity for i in issues}

        if IssueSeverity.ERROR in severities:
            return ValidationStatus.INVALID
        if IssueSeverity.WARNING in severities:
            return ValidationStatus.WARNING
        if issues:
            return ValidationStatus.NEEDS_REVIEW
        return ValidationStatus.VALID
