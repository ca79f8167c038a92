"""Tabular ledger store.

The pipeline only ever talks to the ledger through three operations:

* ``read_range(sheet_id, range) -> rows``  (cells stringified, "" for empty)
* ``append(sheet_id, row)``
* ``update_range(sheet_id, range, rows)``

Ranges are A1 notation. Row 1 of every sheet is the header row, so data
lives from row 2 on and readers ask for ``A2:H``-style ranges. The store
has no transactions across calls, no secondary indexes and no uniqueness
constraints; all type coercion is the caller's responsibility.

``SqlLedgerStore`` is the reference implementation on top of SQLAlchemy.
"""
from __future__ import annotations

import time
from decimal import Decimal
from typing import Any, List, Protocol, Sequence

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from attribution.errors import StorageError
from attribution.models.db.ledger_rows import LedgerRow
from attribution.utils import get_logger, log_performance
from attribution.utils.a1_range import parse_a1_range

logger = get_logger(__name__)

Scalar = str | int | float | bool | Decimal | None

FIRST_DATA_ROW = 2


class LedgerStore(Protocol):
    def read_range(self, sheet_id: str, range_: str) -> List[List[str]]: ...

    def append(self, sheet_id: str, row: Sequence[Scalar]) -> None: ...

    def update_range(self, sheet_id: str, range_: str, rows: Sequence[Sequence[Scalar]]) -> None: ...


def _cell_to_json(value: Scalar) -> Any:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return str(value)
    return value


def _cell_to_str(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    return str(value)


class SqlLedgerStore:
    """Ledger backed by the ``ledger_rows`` table, one row per sheet line."""

    def __init__(self, session: Session):
        self.session = session

    def read_range(self, sheet_id: str, range_: str) -> List[List[str]]:
        rng = parse_a1_range(range_)
        start = time.time()
        try:
            query = (
                self.session.query(LedgerRow)
                .filter(LedgerRow.sheet_id == sheet_id, LedgerRow.row_number >= rng.start_row)
            )
            if rng.end_row is not None:
                query = query.filter(LedgerRow.row_number <= rng.end_row)
            records = query.order_by(LedgerRow.row_number.asc(), LedgerRow.id.asc()).all()
        except SQLAlchemyError as e:
            logger.error("Ledger read failed", sheet_id=sheet_id, range=range_, error=str(e))
            raise StorageError(f"Failed to read {sheet_id}!{range_}") from e

        rows: List[List[str]] = []
        for record in records:
            cells = list(record.cells or [])
            window = cells[rng.start_col:rng.end_col + 1]
            window.extend([""] * (rng.width - len(window)))
            rows.append([_cell_to_str(c) for c in window])

        log_performance(
            "ledger.read_range",
            (time.time() - start) * 1000,
            {"sheet_id": sheet_id, "range": range_, "rows": len(rows)},
        )
        return rows

    def append(self, sheet_id: str, row: Sequence[Scalar]) -> None:
        try:
            last = (
                self.session.query(func.max(LedgerRow.row_number))
                .filter(LedgerRow.sheet_id == sheet_id)
                .scalar()
            )
            row_number = (last or FIRST_DATA_ROW - 1) + 1
            self.session.add(LedgerRow(
                sheet_id=sheet_id,
                row_number=row_number,
                cells=[_cell_to_json(v) for v in row],
            ))
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Ledger append failed", sheet_id=sheet_id, error=str(e))
            raise StorageError(f"Failed to append to {sheet_id}") from e

        logger.debug("Ledger row appended", sheet_id=sheet_id, row_number=row_number)

    def update_range(self, sheet_id: str, range_: str, rows: Sequence[Sequence[Scalar]]) -> None:
        rng = parse_a1_range(range_)
        if rng.end_row is not None and len(rows) > rng.end_row - rng.start_row + 1:
            raise ValueError(f"{len(rows)} rows do not fit in range {range_}")
        if any(len(values) > rng.width for values in rows):
            raise ValueError(f"Row wider than range {range_}")
        try:
            for offset, values in enumerate(rows):
                row_number = rng.start_row + offset
                record = (
                    self.session.query(LedgerRow)
                    .filter(LedgerRow.sheet_id == sheet_id, LedgerRow.row_number == row_number)
                    .order_by(LedgerRow.id.asc())
                    .first()
                )
                if record is None:
                    record = LedgerRow(sheet_id=sheet_id, row_number=row_number, cells=[])
                    self.session.add(record)
                cells = list(record.cells or [])
                needed = rng.start_col + len(values)
                cells.extend([""] * (needed - len(cells)))
                for i, value in enumerate(values):
                    cells[rng.start_col + i] = _cell_to_json(value)
                # reassign so the JSON column is flagged dirty
                record.cells = cells
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            logger.error("Ledger update failed", sheet_id=sheet_id, range=range_, error=str(e))
            raise StorageError(f"Failed to update {sheet_id}!{range_}") from e


__all__ = ["LedgerStore", "SqlLedgerStore", "FIRST_DATA_ROW", "Scalar"]
