"""Validation of untrusted inventory item and category input.

Validators never raise. Every applicable check runs and the messages are
collected per field, so a form can show all problems at once.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping

NAME_MAX_LENGTH = 255
SKU_MAX_LENGTH = 100
CATEGORY_MAX_LENGTH = 100
CATEGORY_NAME_MAX_LENGTH = 100


@dataclass
class ValidationResult:
    """Outcome of validating one candidate record."""

    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def summary(self) -> str:
        """All error messages joined by a comma."""
        return ", ".join(self.errors.values())


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


def _is_non_negative_integer(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return value >= 0
    if isinstance(value, float):
        return value.is_integer() and value >= 0
    return False


def _check_text(
    errors: Dict[str, str],
    candidate: Mapping[str, Any],
    key: str,
    label: str,
    max_length: int
) -> None:
    value = candidate.get(key)
    if _is_blank(value):
        errors[key] = f"{label} is required"
    elif len(value) > max_length:
        errors[key] = f"{label} must be less than {max_length} characters"


def validate_inventory_item(candidate: Mapping[str, Any], partial: bool = False) -> ValidationResult:
    """
    Validate an inventory item candidate.

    Args:
        candidate: Raw field values (e.g. from a form or API payload)
        partial: Only check the fields present in *candidate*; used for updates

    Returns:
        ValidationResult with one message per failing field
    """
    if not isinstance(candidate, Mapping):
        candidate = {}
    errors: Dict[str, str] = {}

    def applies(key: str) -> bool:
        return not partial or key in candidate

    if applies("name"):
        _check_text(errors, candidate, "name", "Name", NAME_MAX_LENGTH)

    if applies("sku"):
        _check_text(errors, candidate, "sku", "SKU", SKU_MAX_LENGTH)

    if applies("quantity"):
        quantity = candidate.get("quantity")
        if quantity is None:
            errors["quantity"] = "Quantity is required"
        elif not _is_non_negative_integer(quantity):
            errors["quantity"] = "Quantity must be a non-negative integer"

    if applies("category"):
        _check_text(errors, candidate, "category", "Category", CATEGORY_MAX_LENGTH)

    threshold = candidate.get("low_stock_threshold")
    if threshold is not None and not _is_non_negative_integer(threshold):
        errors["low_stock_threshold"] = "Low stock threshold must be a non-negative integer"

    return ValidationResult(errors=errors)


def validate_category(candidate: Mapping[str, Any], partial: bool = False) -> ValidationResult:
    """Validate a category candidate. ``description`` is unconstrained."""
    if not isinstance(candidate, Mapping):
        candidate = {}
    errors: Dict[str, str] = {}

    if not partial or "name" in candidate:
        _check_text(errors, candidate, "name", "Name", CATEGORY_NAME_MAX_LENGTH)

    return ValidationResult(errors=errors)
