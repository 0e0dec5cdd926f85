from .claim import Claim, ClaimStatus, Channel
from .audit_event import ClaimAuditEvent
from .ledger_entry import LedgerEntry, EntryType

__all__ = [
    "Claim",
    "ClaimStatus",
    "Channel",
    "ClaimAuditEvent",
    "LedgerEntry",
    "EntryType",
]
