from typing import Optional

from models import Receipt, Transaction, User
from services import AnalyticsOverview, ImportResult, TransactionListing


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


def present_user(user: User) -> dict[str, object]:
    return {
        "id": user.id,
        "firstName": user.first_name,
        "lastName": user.last_name,
        "email": user.email,
        "currency": user.currency,
        "timezone": user.timezone,
        "preferences": user.preferences,
        "createdAt": _iso(user.created_at),
    }


def present_transaction(txn: Transaction) -> dict[str, object]:
    return {
        "id": txn.id,
        "userId": txn.user_id,
        "type": txn.type.value,
        "category": txn.category,
        "amount": txn.amount,
        "description": txn.description,
        "date": _iso(txn.date),
        "merchant": txn.merchant,
        "location": txn.location,
        "notes": txn.notes,
        "receipt": txn.receipt,
        "status": txn.status.value,
        "createdAt": _iso(txn.created_at),
        "updatedAt": _iso(txn.updated_at),
    }


def present_listing(listing: TransactionListing) -> dict[str, object]:
    page = listing.page
    return {
        "transactions": [present_transaction(txn) for txn in page.items],
        "pagination": {
            "page": page.page,
            "limit": page.limit,
            "total": page.total,
            "pages": page.pages,
        },
        "summary": {
            "income": listing.totals.income,
            "expenses": listing.totals.expenses,
            "net": listing.totals.net,
            "categoryStats": [
                {"category": c.category, "total": c.total, "count": c.count}
                for c in listing.categories
            ],
        },
        "partial": listing.partial,
    }


def present_analytics(overview: AnalyticsOverview) -> dict[str, object]:
    return {
        "summary": {
            "totalIncome": overview.totals.income,
            "totalExpenses": overview.totals.expenses,
            "netSavings": overview.totals.net,
            "transactionCount": overview.transaction_count,
        },
        "categoryData": [
            {"name": c.category, "value": c.total, "count": c.count}
            for c in overview.categories
        ],
        "monthlyData": [
            {"month": m.month, "income": m.income, "expenses": m.expenses}
            for m in overview.monthly
        ],
        "dailyData": [
            {"date": d.date.isoformat(), "amount": d.amount} for d in overview.daily
        ],
        "topMerchants": [
            {"name": d.description, "amount": d.total, "count": d.count}
            for d in overview.top_descriptions
        ],
        "partial": overview.partial,
    }


def present_receipt(receipt: Receipt) -> dict[str, object]:
    data = receipt.extracted_data or {}
    return {
        "id": receipt.id,
        "filename": receipt.filename,
        "merchant": data.get("merchant") or "Unknown",
        "amount": data.get("total") or 0,
        "date": data.get("date") or _iso(receipt.created_at),
        "items": data.get("items") or [],
        "status": receipt.status.value,
        "extractedData": data,
        "transactionId": receipt.transaction_id,
        "createdAt": _iso(receipt.created_at),
    }


def present_import(result: ImportResult) -> dict[str, object]:
    return {
        "message": "Transaction import processed",
        "summary": {
            "totalRows": result.total_rows,
            "successful": result.successful,
            "failed": result.failed,
            "filename": result.filename,
        },
        "transactions": [
            {
                "id": t.id,
                "type": t.type.value,
                "category": t.category,
                "amount": t.amount,
                "description": t.description,
                "date": _iso(t.date),
            }
            for t in result.transactions
        ],
        "errors": result.errors,
    }
