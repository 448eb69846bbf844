from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Mapping, Optional
from zoneinfo import ZoneInfo

import pydantic

from models import CATEGORIES_BY_TYPE, DEFAULT_INCOME_CATEGORY, TransactionType
from schemas import TransactionIn

INVALID_TYPE = "invalid type"
MISSING_FIELDS = "missing required fields"
CATEGORY_REQUIRED = "category required for expenses"
AMOUNT_NOT_POSITIVE = "amount must be greater than 0"
AMOUNT_NOT_NUMBER = "amount must be a number"
INVALID_DATE = "invalid date"
INVALID_CATEGORY = "invalid category"

_OPTIONAL_TEXT_FIELDS = ("merchant", "location", "notes")


@dataclass(frozen=True)
class ValidationResult:
    ok: bool
    reason: Optional[str] = None
    transaction: Optional[TransactionIn] = None

    @classmethod
    def rejected(cls, reason: str) -> "ValidationResult":
        return cls(ok=False, reason=reason)


def _present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and not value.strip():
        return False
    return True


def _parse_amount(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(amount):
        return None
    return amount


def _to_local(moment: datetime, timezone: str) -> datetime:
    """Naive wall-clock time in ``timezone``; naive input is taken as already local."""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(ZoneInfo(timezone)).replace(tzinfo=None)


def _parse_date(value: Any, timezone: str = "UTC") -> Optional[datetime]:
    if isinstance(value, datetime):
        return _to_local(value, timezone)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if not isinstance(value, str):
        return None
    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    try:
        return _to_local(datetime.fromisoformat(raw), timezone)
    except ValueError:
        return None


def _clean_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def validate_transaction(
    candidate: Mapping[str, Any], timezone: str = "UTC"
) -> ValidationResult:
    """Check a proposed transaction; the first failing rule decides the reason.

    Order: type, required fields, expense category, positive amount. Income
    without a category gets ``Salary``. On success the normalized payload is
    returned as ``TransactionIn``.
    """
    raw_type = candidate.get("type")
    try:
        txn_type = TransactionType(raw_type)
    except ValueError:
        return ValidationResult.rejected(INVALID_TYPE)

    if not all(_present(candidate.get(f)) for f in ("amount", "description", "date")):
        return ValidationResult.rejected(MISSING_FIELDS)

    category = _clean_text(candidate.get("category"))
    if category is None:
        if txn_type == TransactionType.expense:
            return ValidationResult.rejected(CATEGORY_REQUIRED)
        category = DEFAULT_INCOME_CATEGORY

    amount = _parse_amount(candidate.get("amount"))
    if amount is None:
        return ValidationResult.rejected(AMOUNT_NOT_NUMBER)
    if amount <= 0:
        return ValidationResult.rejected(AMOUNT_NOT_POSITIVE)

    if category not in CATEGORIES_BY_TYPE[txn_type]:
        return ValidationResult.rejected(INVALID_CATEGORY)

    txn_date = _parse_date(candidate.get("date"), timezone)
    if txn_date is None:
        return ValidationResult.rejected(INVALID_DATE)

    fields: dict[str, Any] = {
        "type": txn_type,
        "category": category,
        "amount": amount,
        "description": str(candidate["description"]).strip(),
        "date": txn_date,
    }
    for name in _OPTIONAL_TEXT_FIELDS:
        fields[name] = _clean_text(candidate.get(name))
    if candidate.get("status") is not None:
        fields["status"] = candidate["status"]
    if candidate.get("receipt") is not None:
        fields["receipt"] = candidate["receipt"]

    try:
        return ValidationResult(ok=True, transaction=TransactionIn(**fields))
    except pydantic.ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        return ValidationResult.rejected(f"invalid {field}")
