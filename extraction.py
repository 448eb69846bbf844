from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Protocol

from schemas import LineItem

KNOWN_MERCHANTS = (
    r"walmart",
    r"target",
    r"costco",
    r"kroger",
    r"safeway",
    r"shell",
    r"chevron",
    r"\bbp\b",
    r"exxon",
    r"mobil",
    r"mcdonald",
    r"burger king",
    r"kfc",
    r"subway",
    r"starbucks",
    r"amazon",
    r"best buy",
    r"home depot",
    r"lowes",
)

_TOTAL_PATTERNS = (
    re.compile(r"^\s*(?:grand\s+)?total[:\s]*\$?(\d+(?:\.\d+)?)", re.I | re.M),
    re.compile(r"^\s*amount[:\s]*\$?(\d+(?:\.\d+)?)", re.I | re.M),
    re.compile(r"^\s*balance[:\s]*\$?(\d+(?:\.\d+)?)", re.I | re.M),
)
_ANY_PRICE = re.compile(r"\$(\d+\.\d{2})")
_TAX = re.compile(r"^\s*tax[:\s]*\$?(\d+(?:\.\d+)?)", re.I | re.M)
_SUBTOTAL = re.compile(r"^\s*sub\s*total[:\s]*\$?(\d+(?:\.\d+)?)", re.I | re.M)
_ITEM = re.compile(r"^(.+?)[:\s]+\$?(\d+\.\d{1,2})\s*$")
_NON_ITEM_WORDS = ("total", "tax", "subtotal", "change", "cash", "balance", "amount")
_DATE_FORMATS = (
    (re.compile(r"\b(\d{4}-\d{1,2}-\d{1,2})\b"), ("%Y-%m-%d",)),
    (re.compile(r"\b(\d{1,2}/\d{1,2}/\d{2,4})\b"), ("%m/%d/%Y", "%m/%d/%y")),
    (re.compile(r"\b(\d{1,2}-\d{1,2}-\d{2,4})\b"), ("%m-%d-%Y", "%m-%d-%y")),
)
DEFAULT_TAX_RATE = 0.08


@dataclass(frozen=True)
class ExtractedReceipt:
    merchant: str
    total: float
    tax: float
    subtotal: float
    date: Optional[datetime]
    text: str
    items: list[LineItem] = field(default_factory=list)

    def payload(self) -> dict[str, object]:
        return {
            "merchant": self.merchant,
            "total": self.total,
            "tax": self.tax,
            "subtotal": self.subtotal,
            "date": self.date.isoformat() if self.date else None,
            "items": [item.model_dump() for item in self.items],
        }


class ExtractionProvider(Protocol):
    def extract(self, filename: str, content: bytes) -> ExtractedReceipt: ...


def extract_merchant(lines: list[str]) -> str:
    for line in lines[:5]:
        for pattern in KNOWN_MERCHANTS:
            if re.search(pattern, line, re.I):
                return line
    return lines[0] if lines else "Unknown Merchant"


def extract_total(text: str) -> float:
    for pattern in _TOTAL_PATTERNS:
        match = pattern.search(text)
        if match:
            return float(match.group(1))
    prices = [float(p) for p in _ANY_PRICE.findall(text)]
    return max(prices) if prices else 0.0


def extract_date(text: str) -> Optional[datetime]:
    for pattern, formats in _DATE_FORMATS:
        match = pattern.search(text)
        if not match:
            continue
        for fmt in formats:
            try:
                return datetime.strptime(match.group(1), fmt)
            except ValueError:
                continue
    return None


def extract_items(lines: list[str]) -> list[LineItem]:
    items = []
    for line in lines:
        match = _ITEM.match(line.strip())
        if not match:
            continue
        name = match.group(1).strip()
        price = float(match.group(2))
        lowered = name.lower()
        if any(word in lowered for word in _NON_ITEM_WORDS):
            continue
        if len(name) > 2 and price > 0:
            items.append(LineItem(name=name, price=price))
    return items


class TextPatternExtractor:
    """Reads the upload as plain receipt text and applies pattern heuristics."""

    def extract(self, filename: str, content: bytes) -> ExtractedReceipt:
        text = content.decode("utf-8", errors="ignore")
        lines = [line.strip() for line in text.splitlines() if line.strip()]
        total = extract_total(text)
        items = extract_items(lines)

        tax_match = _TAX.search(text)
        if tax_match:
            tax = float(tax_match.group(1))
        else:
            tax = round(total * DEFAULT_TAX_RATE, 2) if items else 0.0
        subtotal_match = _SUBTOTAL.search(text)
        subtotal = float(subtotal_match.group(1)) if subtotal_match else total - tax

        return ExtractedReceipt(
            merchant=extract_merchant(lines),
            total=total,
            tax=tax,
            subtotal=round(subtotal, 2),
            date=extract_date(text),
            text=text,
            items=items,
        )
