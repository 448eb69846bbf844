from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Union

from sqlalchemy import Integer, cast, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from aggregation import GroupTotal
from errors import StoreError
from models import Transaction, TransactionType

logger = logging.getLogger(__name__)

GroupKey = Union[str, Sequence[str]]


@dataclass(frozen=True)
class TransactionFilter:
    user_id: int
    type: Optional[TransactionType] = None
    category: Optional[str] = None
    start: Optional[datetime] = None
    before: Optional[datetime] = None

    def __post_init__(self) -> None:
        if self.user_id is None:
            raise ValueError("Transaction queries must be scoped to a user")

    def with_type(self, txn_type: TransactionType) -> "TransactionFilter":
        return TransactionFilter(
            user_id=self.user_id,
            type=txn_type,
            category=self.category,
            start=self.start,
            before=self.before,
        )


_SORT_COLUMNS = {
    "date": Transaction.date,
    "amount": Transaction.amount,
    "created_at": Transaction.created_at,
    "id": Transaction.id,
}


def _group_column(name: str):
    if name == "category":
        return Transaction.category
    if name == "description":
        return Transaction.description
    if name == "type":
        return Transaction.type
    if name == "month":
        return cast(func.strftime("%m", Transaction.date), Integer)
    if name == "day":
        return func.strftime("%Y-%m-%d", Transaction.date)
    raise ValueError(f"Unsupported group key: {name}")


class TransactionStore:
    """Owner-scoped access to transaction records.

    Every operation takes a ``TransactionFilter``; its ``user_id`` is always
    applied, so nothing here can read across users.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @staticmethod
    def _where(stmt, flt: TransactionFilter):
        stmt = stmt.where(Transaction.user_id == flt.user_id)
        if flt.type is not None:
            stmt = stmt.where(Transaction.type == flt.type)
        if flt.category is not None:
            stmt = stmt.where(Transaction.category == flt.category)
        if flt.start is not None:
            stmt = stmt.where(Transaction.date >= flt.start)
        if flt.before is not None:
            stmt = stmt.where(Transaction.date < flt.before)
        return stmt

    def find(
        self,
        flt: TransactionFilter,
        sort: str = "-date",
        skip: int = 0,
        limit: Optional[int] = None,
    ) -> list[Transaction]:
        descending = sort.startswith("-")
        column = _SORT_COLUMNS.get(sort.lstrip("-"))
        if column is None:
            raise ValueError(f"Unsupported sort field: {sort}")
        order = column.desc() if descending else column.asc()
        tiebreak = Transaction.id.desc() if descending else Transaction.id.asc()
        stmt = self._where(select(Transaction), flt).order_by(order, tiebreak)
        if skip:
            stmt = stmt.offset(skip)
        if limit is not None:
            stmt = stmt.limit(limit)
        try:
            return list(self.session.scalars(stmt).all())
        except SQLAlchemyError as exc:
            logger.exception(f"store_find_failed: user_id={flt.user_id}")
            raise StoreError("Failed to fetch transactions") from exc

    def count(self, flt: TransactionFilter) -> int:
        stmt = self._where(select(func.count(Transaction.id)), flt)
        try:
            return int(self.session.execute(stmt).scalar_one() or 0)
        except SQLAlchemyError as exc:
            logger.exception(f"store_count_failed: user_id={flt.user_id}")
            raise StoreError("Failed to count transactions") from exc

    def group_sum(self, flt: TransactionFilter, group_key: GroupKey) -> list[GroupTotal]:
        names = [group_key] if isinstance(group_key, str) else list(group_key)
        columns = [_group_column(name).label(f"k{i}") for i, name in enumerate(names)]
        stmt = self._where(
            select(
                *columns,
                func.coalesce(func.sum(Transaction.amount), 0).label("total"),
                func.count(Transaction.id).label("count"),
            ),
            flt,
        ).group_by(*columns)
        try:
            rows = self.session.execute(stmt).all()
        except SQLAlchemyError as exc:
            logger.exception(
                f"store_group_failed: user_id={flt.user_id} key={','.join(names)}"
            )
            raise StoreError("Failed to aggregate transactions") from exc

        out = []
        for row in rows:
            values = tuple(row[: len(names)])
            key = values[0] if isinstance(group_key, str) else values
            out.append(GroupTotal(key=key, total=float(row.total), count=int(row.count)))
        return out

    def insert(self, record: Transaction) -> Transaction:
        if record.user_id is None:
            raise ValueError("Transactions must belong to a user")
        try:
            self.session.add(record)
            self.session.commit()
            self.session.refresh(record)
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception(f"store_insert_failed: user_id={record.user_id}")
            raise StoreError("Failed to save transaction") from exc
        return record
