"""
SQLAlchemy model backing the tabular ledger.

Every sheet (raw conversions, click log, deal catalog) is a sequence of rows
of untyped cells. There is deliberately no uniqueness constraint on cell
content: duplicate suppression is the ingestion layer's job.
"""
from sqlalchemy import Column, Integer, String, DateTime, JSON, Index
from sqlalchemy.sql import func
from attribution.database import Base

class LedgerRow(Base):
    __tablename__ = "ledger_rows"

    id = Column(Integer, primary_key=True, index=True)
    sheet_id = Column(String(100), nullable=False)
    # 1-based like a spreadsheet; row 1 is the header, data starts at 2.
    row_number = Column(Integer, nullable=False)
    cells = Column(JSON, nullable=False, default=list)
    appended_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("ix_ledger_rows_sheet_row", "sheet_id", "row_number"),
    )

    def __repr__(self) -> str:
        return f"<LedgerRow(sheet_id='{self.sheet_id}', row_number={self.row_number})>"
