"""
Two-Stage Validation of Extraction Output

The extraction service is asked to respect an enumerated schema, but nothing
guarantees it did. Every FinanceEventDTO passes through this validator before
it may be persisted.

STAGE 1 - SCHEMA VALIDATION:
- `type` must be one of the EventType members
- `category` must be one of the EventCategory members
- `amount`, when present, must be a finite positive number
- `currency`, when present, must be a short code or symbol
- `item` and `merchant` must fit the stored column width

STAGE 2 - SEMANTIC VALIDATION (warnings only):
- Unusually large amounts
- Type / category combinations that contradict each other
- Merchant names without any letters

IMPORTANT: Validation NEVER silently fixes issues. Harmless spelling
variants ("food and drink", "EXPENSE") are resolved to their member;
anything else is rejected, not mapped to "Other".
"""

import math
from typing import Optional

from finance_capture.config import AppSettings, get_settings
from finance_capture.models.event import (
    EventCategory,
    EventType,
    FinanceEventDTO,
    ValidationIssue,
    ValidationResult,
)


class ValidationRejectedError(Exception):
    """The extraction output failed validation and was not persisted."""

    def __init__(self, result: ValidationResult):
        self.result = result
        messages = "; ".join(
            issue.message for issue in result.issues if issue.severity == "error"
        )
        super().__init__(f"Extraction rejected: {messages}")


MAX_TEXT_LENGTH = 200


def _normalize_key(value: str) -> str:
    return " ".join(value.lower().replace("&", " and ").split())


_TYPE_LOOKUP = {_normalize_key(t.value): t for t in EventType}
_CATEGORY_LOOKUP = {_normalize_key(c.value): c for c in EventCategory}

# Category each non-expense type is expected to come with
_EXPECTED_CATEGORY = {
    EventType.INCOME: EventCategory.INCOME,
    EventType.TRANSFER: EventCategory.TRANSFER,
}


def resolve_event_type(value: Optional[str]) -> Optional[EventType]:
    """Map a raw type string to its member, or None if it isn't one."""
    if not value:
        return None
    return _TYPE_LOOKUP.get(_normalize_key(value))


def resolve_category(value: Optional[str]) -> Optional[EventCategory]:
    """Map a raw category string to its member, or None if it isn't one."""
    if not value:
        return None
    return _CATEGORY_LOOKUP.get(_normalize_key(value))


class EventValidator:
    """
    Classifies extraction output as accepted or rejected.

    Stage 1: Schema validation (errors reject the extraction)
    Stage 2: Semantic validation (warnings, reported but not blocking)
    """

    def __init__(self, settings: Optional[AppSettings] = None):
        self._settings = settings or get_settings().app

    def _validate_schema(
        self,
        dto: FinanceEventDTO,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 1: Schema validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if resolve_event_type(dto.type) is None:
            issues.append(ValidationIssue(
                field="type",
                issue_type="not_in_enum",
                message=f"Type '{dto.type}' is not one of: {', '.join(t.value for t in EventType)}",
                severity="error",
                suggested_fix="Record the event again and say whether it was spent or received",
            ))

        if resolve_category(dto.category) is None:
            issues.append(ValidationIssue(
                field="category",
                issue_type="not_in_enum",
                message=f"Category '{dto.category}' is not a known category",
                severity="error",
                suggested_fix="Record the event again with a clearer description",
            ))

        if dto.amount is not None:
            if not math.isfinite(dto.amount):
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message="Amount is not a finite number",
                    severity="error",
                ))
            elif dto.amount <= 0:
                issues.append(ValidationIssue(
                    field="amount",
                    issue_type="invalid_value",
                    message=f"Amount must be greater than zero (got {dto.amount})",
                    severity="error",
                    suggested_fix="Check if the amount was heard or read correctly",
                ))

        if dto.currency is not None and len(dto.currency) > 10:
            issues.append(ValidationIssue(
                field="currency",
                issue_type="invalid_format",
                message=f"Currency '{dto.currency[:20]}' is not a code or symbol",
                severity="error",
            ))

        for field_name in ("item", "merchant"):
            value = getattr(dto, field_name)
            if value is not None and len(value) > MAX_TEXT_LENGTH:
                issues.append(ValidationIssue(
                    field=field_name,
                    issue_type="too_long",
                    message=f"{field_name.capitalize()} is longer than {MAX_TEXT_LENGTH} characters",
                    severity="error",
                ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def _validate_semantic(
        self,
        dto: FinanceEventDTO,
        event_type: EventType,
        category: EventCategory,
    ) -> tuple[bool, list[ValidationIssue]]:
        """
        Stage 2: Semantic validation.

        Returns: (is_valid, list_of_issues)
        """
        issues = []

        if dto.amount is not None and dto.amount > self._settings.max_event_amount:
            issues.append(ValidationIssue(
                field="amount",
                issue_type="suspicious_value",
                message=f"Amount ({dto.amount:,.2f}) seems unusually high",
                severity="warning",
                suggested_fix="Please verify this amount is correct",
            ))

        expected = _EXPECTED_CATEGORY.get(event_type)
        if expected is not None and category != expected:
            issues.append(ValidationIssue(
                field="category",
                issue_type="inconsistent",
                message=f"{event_type.value.capitalize()} is usually categorized as '{expected.value}', not '{category.value}'",
                severity="warning",
            ))
        elif event_type == EventType.EXPENSE and category in _EXPECTED_CATEGORY.values():
            issues.append(ValidationIssue(
                field="category",
                issue_type="inconsistent",
                message=f"An expense was categorized as '{category.value}'",
                severity="warning",
            ))

        if dto.merchant and not any(c.isalpha() for c in dto.merchant):
            issues.append(ValidationIssue(
                field="merchant",
                issue_type="suspicious_value",
                message="Merchant name looks unusual (no letters)",
                severity="warning",
                suggested_fix="Please verify the merchant name",
            ))

        is_valid = not any(issue.severity == "error" for issue in issues)
        return is_valid, issues

    def validate(self, dto: FinanceEventDTO) -> ValidationResult:
        """
        Run full two-stage validation.

        Returns:
            ValidationResult; `accepted` is True only without error issues
        """
        all_issues = []

        schema_valid, schema_issues = self._validate_schema(dto)
        all_issues.extend(schema_issues)

        event_type = resolve_event_type(dto.type)
        category = resolve_category(dto.category)

        # Only run stage 2 if stage 1 passes
        semantic_valid = False
        if schema_valid:
            semantic_valid, semantic_issues = self._validate_semantic(dto, event_type, category)
            all_issues.extend(semantic_issues)

        warnings = [issue.message for issue in all_issues if issue.severity == "warning"]

        return ValidationResult(
            extraction_id=dto.extraction_id,
            schema_valid=schema_valid,
            semantic_valid=semantic_valid,
            accepted=schema_valid and semantic_valid,
            event_type=event_type,
            category=category,
            issues=all_issues,
            warnings=warnings,
        )

    def get_user_friendly_summary(
        self,
        result: ValidationResult,
    ) -> str:
        """Summary of a validation result for display."""
        if result.accepted and not result.warnings:
            return "✅ All checks passed."

        lines = []

        if not result.accepted:
            lines.append("❌ The extracted event could not be saved:")
            for issue in result.issues:
                if issue.severity == "error":
                    lines.append(f"   • {issue.message}")
                    if issue.suggested_fix:
                        lines.append(f"     💡 {issue.suggested_fix}")

        if result.warnings:
            if lines:
                lines.append("")
            lines.append("⚠️ Please verify the following:")
            for warning in result.warnings:
                lines.append(f"   • {warning}")

        return "\n".join(lines)
