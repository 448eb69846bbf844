from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping, Optional

from rapidfuzz.distance import Levenshtein
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from aggregation import (
    CategoryTotal,
    DailyBucket,
    DescriptionTotal,
    MonthlyBucket,
    Page,
    Totals,
    category_breakdown_from_groups,
    clamp_pagination,
    daily_series_from_groups,
    daily_window,
    monthly_series_from_groups,
    top_descriptions_from_groups,
    totals_from_groups,
    year_frame,
)
from auth import check_password, hash_password
from csv_utils import export_transactions, parse_csv
from database import session_scope
from errors import (
    AuthorizationError,
    DuplicateUserError,
    MalformedInputError,
    StoreError,
    ValidationError,
)
from extraction import ExtractionProvider, TextPatternExtractor
from models import (
    CATEGORIES_BY_TYPE,
    Receipt,
    ReceiptStatus,
    Transaction,
    TransactionType,
    User,
)
from periods import DEFAULT_RANGE, resolve_start_date
from schemas import LoginIn, RegisterIn
from store import TransactionFilter, TransactionStore
from validation import validate_transaction

logger = logging.getLogger(__name__)

RECEIPT_CATEGORY = "Shopping"
IMPORT_DEFAULT_CATEGORY = "Other"
# bcrypt only accepts this many bytes of input
MAX_PASSWORD_BYTES = 72
TEST_RECEIPT_MARKERS = ("test-receipt", "whatsapp", "dummy", "mock")
MOCK_MERCHANTS = (
    "Shell Gas",
    "Walmart",
    "Target",
    "Starbucks",
    "McDonald's",
    "Kroger",
    "CVS Pharmacy",
)


@dataclass
class TransactionQuery:
    time_range: str = DEFAULT_RANGE
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    page: Optional[int] = None
    limit: Optional[int] = None

    def to_filter(self, user_id: int, now: datetime) -> TransactionFilter:
        return TransactionFilter(
            user_id=user_id,
            type=self.type,
            category=self.category,
            start=resolve_start_date(self.time_range, now),
        )


@dataclass
class TransactionListing:
    page: Page
    totals: Totals
    categories: list[CategoryTotal]
    partial: bool = False


@dataclass
class AnalyticsOverview:
    totals: Totals
    categories: list[CategoryTotal]
    monthly: list[MonthlyBucket]
    daily: list[DailyBucket]
    top_descriptions: list[DescriptionTotal]
    partial: bool = False
    failed: list[str] = field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        return sum(c.count for c in self.categories)


@dataclass
class ImportResult:
    filename: str
    total_rows: int
    transactions: list[Transaction] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def successful(self) -> int:
        return len(self.transactions)

    @property
    def failed(self) -> int:
        return len(self.errors)


class AggregationFanOut:
    """Runs independent store queries concurrently, one session per query.

    Failed or unfinished queries are reported by name instead of raised so the
    caller can decide which of them are fatal.
    """

    def __init__(
        self,
        session_factory: sessionmaker,
        timeout: Optional[float] = None,
        max_workers: int = 5,
    ) -> None:
        self.session_factory = session_factory
        self.timeout = timeout
        self.max_workers = max_workers

    def _run_task(self, task: Callable[[TransactionStore], Any]) -> Any:
        with session_scope(self.session_factory) as session:
            return task(TransactionStore(session))

    def run(
        self, tasks: Mapping[str, Callable[[TransactionStore], Any]]
    ) -> tuple[dict[str, Any], dict[str, str]]:
        results: dict[str, Any] = {}
        failures: dict[str, str] = {}
        if not tasks:
            return results, failures
        executor = ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(tasks))))
        try:
            futures = {
                executor.submit(self._run_task, task): name for name, task in tasks.items()
            }
            done, pending = wait(futures, timeout=self.timeout)
            for future in done:
                name = futures[future]
                try:
                    results[name] = future.result()
                except StoreError as exc:
                    failures[name] = str(exc)
                except Exception as exc:
                    logger.exception(f"aggregation_task_failed: task={name}")
                    failures[name] = f"{type(exc).__name__}: {exc}"
            for future in pending:
                future.cancel()
                failures[futures[future]] = "timed out"
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return results, failures


def _require_primary(failures: dict[str, str], name: str, message: str) -> None:
    if name in failures:
        raise StoreError(message)


class UserService:
    def __init__(self, session: Session, bcrypt_rounds: int = 12) -> None:
        self.session = session
        self.bcrypt_rounds = bcrypt_rounds

    def register(self, data: RegisterIn) -> User:
        first = data.first_name.strip()
        last = data.last_name.strip()
        email = data.email.strip().lower()
        if not first or not last or not email or not data.password:
            raise ValidationError("All fields are required")
        if len(data.password) < 6:
            raise ValidationError("Password must be at least 6 characters long")
        if len(data.password.encode("utf-8")) > MAX_PASSWORD_BYTES:
            raise ValidationError(
                f"Password must be at most {MAX_PASSWORD_BYTES} bytes long"
            )
        existing = self.session.scalar(select(User).where(User.email == email))
        if existing:
            raise DuplicateUserError("User with this email already exists")

        user = User(
            first_name=first,
            last_name=last,
            email=email,
            password_hash=hash_password(data.password, self.bcrypt_rounds),
        )
        self.session.add(user)
        try:
            self.session.commit()
        except IntegrityError as exc:
            self.session.rollback()
            raise DuplicateUserError("User with this email already exists") from exc
        self.session.refresh(user)
        logger.info(f"user_registered: user_id={user.id}")
        return user

    def authenticate(self, data: LoginIn) -> User:
        email = data.email.strip().lower()
        if not email or not data.password:
            raise ValidationError("Email and password are required")
        user = self.session.scalar(select(User).where(User.email == email))
        if not user or not check_password(data.password, user.password_hash):
            logger.info("login_rejected: reason=bad_credentials")
            raise AuthorizationError("Invalid email or password")
        return user

    def get(self, user_id: int) -> User:
        user = self.session.get(User, user_id)
        if not user:
            raise ValueError("User not found")
        return user


class TransactionService:
    def __init__(self, session: Session, user_id: int, timezone: str = "UTC") -> None:
        self.session = session
        self.user_id = user_id
        self.timezone = timezone
        self.store = TransactionStore(session)

    def create(self, payload: Mapping[str, Any]) -> Transaction:
        result = validate_transaction(payload, self.timezone)
        if not result.ok:
            raise ValidationError(result.reason)
        data = result.transaction
        txn = Transaction(
            user_id=self.user_id,
            type=data.type,
            category=data.category,
            amount=data.amount,
            description=data.description,
            date=data.date,
            merchant=data.merchant,
            location=data.location,
            notes=data.notes,
            status=data.status,
            receipt=data.receipt.model_dump() if data.receipt else None,
        )
        return self.store.insert(txn)

    def export(self, query: TransactionQuery, now: datetime) -> str:
        records = self.store.find(query.to_filter(self.user_id, now), sort="-date")
        return export_transactions(records)


class MetricsService:
    def __init__(
        self,
        session_factory: sessionmaker,
        user_id: int,
        *,
        timeout: Optional[float] = None,
        max_workers: int = 5,
    ) -> None:
        self.session_factory = session_factory
        self.user_id = user_id
        self.fan_out = AggregationFanOut(session_factory, timeout, max_workers)

    def _report_partial(self, view: str, failures: dict[str, str]) -> None:
        if failures:
            names = ",".join(sorted(failures))
            logger.warning(
                f"{view}_partial: user_id={self.user_id} failed={names}"
            )

    def transaction_listing(
        self, query: TransactionQuery, now: datetime
    ) -> TransactionListing:
        page, limit = clamp_pagination(query.page, query.limit)
        flt = query.to_filter(self.user_id, now)
        with session_scope(self.session_factory) as session:
            store = TransactionStore(session)
            items = store.find(flt, sort="-date", skip=(page - 1) * limit, limit=limit)
            total = store.count(flt)

        tasks: dict[str, Callable[[TransactionStore], Any]] = {
            "totals": lambda s: s.group_sum(flt, "type"),
        }
        if flt.type in (None, TransactionType.expense):
            expenses = flt.with_type(TransactionType.expense)
            tasks["categories"] = lambda s: s.group_sum(expenses, "category")

        results, failures = self.fan_out.run(tasks)
        _require_primary(failures, "totals", "Failed to summarize transactions")
        self._report_partial("listing", failures)
        return TransactionListing(
            page=Page(items=items, page=page, limit=limit, total=total),
            totals=totals_from_groups(results["totals"]),
            categories=category_breakdown_from_groups(results.get("categories", [])),
            partial=bool(failures),
        )

    def analytics(self, time_range: Optional[str], now: datetime) -> AnalyticsOverview:
        flt = TransactionFilter(
            user_id=self.user_id, start=resolve_start_date(time_range, now)
        )
        expenses = flt.with_type(TransactionType.expense)
        year_start, next_year = year_frame(now)
        day_start, day_end = daily_window(now)
        monthly_filter = TransactionFilter(
            user_id=self.user_id, start=year_start, before=next_year
        )
        daily_filter = TransactionFilter(
            user_id=self.user_id,
            type=TransactionType.expense,
            start=day_start,
            before=day_end,
        )

        results, failures = self.fan_out.run(
            {
                "totals": lambda s: s.group_sum(flt, "type"),
                "categories": lambda s: s.group_sum(expenses, "category"),
                "monthly": lambda s: s.group_sum(monthly_filter, ("month", "type")),
                "daily": lambda s: s.group_sum(daily_filter, "day"),
                "top": lambda s: s.group_sum(expenses, "description"),
            }
        )
        _require_primary(failures, "totals", "Failed to summarize transactions")
        self._report_partial("analytics", failures)
        return AnalyticsOverview(
            totals=totals_from_groups(results["totals"]),
            categories=category_breakdown_from_groups(results.get("categories", [])),
            monthly=monthly_series_from_groups(results.get("monthly", [])),
            daily=daily_series_from_groups(results.get("daily", [])),
            top_descriptions=top_descriptions_from_groups(results.get("top", [])),
            partial=bool(failures),
            failed=sorted(failures),
        )


class ImportCategoryAmbiguous(ValidationError):
    pass


def match_category(name: str, txn_type: TransactionType) -> str:
    """Map a free-form category name onto the fixed set for ``txn_type``.

    Exact (case-insensitive) matches win, then a unique match within one edit.
    Unknown names are returned unchanged for the validator to reject.
    """
    allowed = CATEGORIES_BY_TYPE[txn_type]
    input_lower = name.strip().lower()
    for category in allowed:
        if category.lower() == input_lower:
            return category

    best_distance: Optional[int] = None
    best: list[str] = []
    for category in allowed:
        dist = int(Levenshtein.distance(input_lower, category.lower()))
        if best_distance is None or dist < best_distance:
            best_distance = dist
            best = [category]
        elif dist == best_distance:
            best.append(category)

    if best_distance is not None and best_distance <= 1:
        if len(best) > 1:
            options = ", ".join(sorted(best))
            raise ImportCategoryAmbiguous(
                f"Category '{name}' is ambiguous; matches: {options}"
            )
        return best[0]
    return name


class ImportService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def import_csv(self, filename: str, content: bytes) -> ImportResult:
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise MalformedInputError("File must be a UTF-8 encoded CSV") from exc

        rows, parse_errors = parse_csv(text)
        result = ImportResult(
            filename=filename,
            total_rows=len(rows) + len(parse_errors),
            errors=list(parse_errors),
        )
        transactions = TransactionService(self.session, self.user_id)
        for row in rows:
            idx = row.pop("row")
            candidate = dict(row)
            candidate["type"] = candidate.get("type") or TransactionType.expense.value
            if isinstance(candidate.get("amount"), float):
                candidate["amount"] = abs(candidate["amount"])
            if candidate["type"] in {t.value for t in TransactionType}:
                category = candidate.get("category") or IMPORT_DEFAULT_CATEGORY
                try:
                    candidate["category"] = match_category(
                        category, TransactionType(candidate["type"])
                    )
                except ImportCategoryAmbiguous as exc:
                    result.errors.append(f"Row {idx}: {exc}")
                    continue
            try:
                result.transactions.append(transactions.create(candidate))
            except ValidationError as exc:
                result.errors.append(f"Row {idx}: {exc}")

        logger.info(
            f"import_done: user_id={self.user_id} file={filename} "
            f"created={result.successful} failed={result.failed}"
        )
        return result


class ReceiptService:
    def __init__(
        self,
        session: Session,
        user_id: int,
        provider: Optional[ExtractionProvider] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id
        self.provider = provider or TextPatternExtractor()

    def _commit(self) -> None:
        try:
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"receipt_save_failed: user_id={self.user_id}")
            raise StoreError("Failed to save receipt") from exc

    def process(
        self, filename: str, content: bytes, now: datetime
    ) -> tuple[Receipt, Transaction]:
        logger.info(f"receipt_processing: user_id={self.user_id} file={filename}")
        extracted = self.provider.extract(filename, content)
        receipt = Receipt(
            user_id=self.user_id,
            filename=filename,
            original_text=extracted.text,
            extracted_data=extracted.payload(),
            status=ReceiptStatus.processing,
        )
        self.session.add(receipt)
        self._commit()

        merchant = extracted.merchant[:150]
        candidate = {
            "type": TransactionType.expense.value,
            "category": RECEIPT_CATEGORY,
            "amount": extracted.total,
            "description": f"Receipt from {merchant}",
            "date": extracted.date or now,
            "merchant": merchant,
            "receipt": {
                "merchant": merchant,
                "total": extracted.total,
                "tax": extracted.tax,
                "subtotal": extracted.subtotal,
                "items": [item.model_dump() for item in extracted.items],
            },
        }
        try:
            txn = TransactionService(self.session, self.user_id).create(candidate)
        except ValidationError:
            receipt.status = ReceiptStatus.failed
            self._commit()
            logger.warning(f"receipt_failed: user_id={self.user_id} file={filename}")
            raise

        receipt.transaction_id = txn.id
        receipt.status = ReceiptStatus.completed
        self._commit()
        return receipt, txn

    def list(self, limit: int = 50) -> list[Receipt]:
        stmt = (
            select(Receipt)
            .where(Receipt.user_id == self.user_id)
            .order_by(Receipt.created_at.desc(), Receipt.id.desc())
            .limit(limit)
        )
        return list(self.session.scalars(stmt).all())


class CleanupService:
    def __init__(self, session: Session, user_id: int) -> None:
        self.session = session
        self.user_id = user_id

    def purge_test_data(self) -> dict[str, int]:
        receipts = self.session.scalars(
            select(Receipt).where(
                Receipt.user_id == self.user_id,
                or_(
                    *[
                        func.lower(Receipt.filename).contains(marker)
                        for marker in TEST_RECEIPT_MARKERS
                    ]
                ),
            )
        ).all()
        receipt_ids = [r.id for r in receipts]
        txn_ids = {r.transaction_id for r in receipts if r.transaction_id}
        txn_ids.update(
            self.session.scalars(
                select(Transaction.id).where(
                    Transaction.user_id == self.user_id,
                    or_(
                        Transaction.merchant.in_(MOCK_MERCHANTS),
                        func.lower(Transaction.description).contains("receipt from"),
                    ),
                )
            ).all()
        )

        if receipt_ids:
            self.session.execute(delete(Receipt).where(Receipt.id.in_(receipt_ids)))
        if txn_ids:
            self.session.execute(
                update(Receipt)
                .where(
                    Receipt.user_id == self.user_id,
                    Receipt.transaction_id.in_(txn_ids),
                )
                .values(transaction_id=None)
            )
            self.session.execute(
                delete(Transaction).where(
                    Transaction.user_id == self.user_id,
                    Transaction.id.in_(txn_ids),
                )
            )
        self.session.commit()
        logger.info(
            f"cleanup_done: user_id={self.user_id} receipts={len(receipt_ids)} "
            f"transactions={len(txn_ids)}"
        )
        return {"receipts": len(receipt_ids), "transactions": len(txn_ids)}
