import csv
import re
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import StringIO
from typing import Sequence

from models import Transaction

EXPORT_HEADER = [
    "Date",
    "Type",
    "Category",
    "Amount",
    "Description",
    "Merchant",
    "Notes",
    "Status",
]


def sanitize_csv_value(value: str) -> str:
    """
    Sanitize CSV values to prevent formula injection by prefixing dangerous patterns with tab.
    """
    if not value or value.strip() == "":
        return ""

    value = value.strip()

    formula_triggers = ("=", "+", "-", "@", "\t", "\r")

    if value.startswith(formula_triggers):
        return "\t" + value

    dangerous_patterns = [
        r"^cmd\s*",
        r"^powershell\s*",
        r"^bash\s*",
        r"^sh\s*",
        r"^http[s]?://",
    ]

    for pattern in dangerous_patterns:
        if re.match(pattern, value, re.IGNORECASE):
            return "\t" + value

    return value


def parse_date(value: str) -> datetime:
    value = value.strip()
    for fmt in ("%Y-%m-%d", "%Y-%m-%dT%H:%M:%S", "%d.%m.%Y", "%m/%d/%Y"):
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}'")


def parse_amount(value: str) -> float:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    return float(amount)


def parse_csv(content: str) -> tuple[list[dict[str, object]], list[str]]:
    """Read import rows into raw transaction candidates.

    Only cell-level parsing happens here; business validation is left to the
    transaction validator so that every row is judged the same way.
    """
    reader = csv.DictReader(StringIO(content))
    rows: list[dict[str, object]] = []
    errors: list[str] = []
    for idx, raw in enumerate(reader, start=1):
        try:
            date_raw = (raw.get("Date") or "").strip()
            amount_raw = (raw.get("Amount") or "").strip()
            rows.append(
                {
                    "row": idx,
                    "date": parse_date(date_raw) if date_raw else None,
                    "type": (raw.get("Type") or "").strip().lower() or None,
                    "category": (raw.get("Category") or "").strip() or None,
                    "amount": parse_amount(amount_raw) if amount_raw else None,
                    "description": (raw.get("Description") or "").strip() or None,
                    "merchant": (raw.get("Merchant") or "").strip() or None,
                    "notes": (raw.get("Notes") or "").strip() or None,
                }
            )
        except Exception as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors


def export_transactions(transactions: Sequence[Transaction]) -> str:
    output = StringIO()
    writer = csv.writer(output)
    writer.writerow(EXPORT_HEADER)
    for txn in transactions:
        writer.writerow(
            [
                txn.date.date().isoformat(),
                txn.type.value,
                sanitize_csv_value(txn.category),
                f"{txn.amount:.2f}",
                sanitize_csv_value(txn.description),
                sanitize_csv_value(txn.merchant or ""),
                sanitize_csv_value(txn.notes or ""),
                txn.status.value,
            ]
        )
    return output.getvalue()
