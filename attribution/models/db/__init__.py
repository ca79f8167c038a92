from .ledger_rows import LedgerRow
from .enums import ConversionStatus, ConfidenceTier, IngestOutcome, PayloadKind

__all__ = [
    "LedgerRow",
    "ConversionStatus",
    "ConfidenceTier",
    "IngestOutcome",
    "PayloadKind",
]
