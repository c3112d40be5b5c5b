"""Domain errors raised by the ledger services.

Routers translate every ``LedgerError`` into an HTTP response using the
``status_code`` and ``code`` carried by the exception.
"""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional


class LedgerError(Exception):
    status_code = 400
    code = "ledger_error"

    def __init__(self, message: str, *, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_detail(self) -> dict:
        return {"code": self.code, "message": self.message}


class ReferencedItemNotFound(LedgerError):
    status_code = 404
    code = "referenced_item_not_found"

    def __init__(self, kind: str, name: str) -> None:
        super().__init__(f"No active {kind} named {name!r}.")
        self.kind = kind
        self.name = name


class ExpiryDateRequired(LedgerError):
    code = "expiry_date_required"

    def __init__(self, activity: str) -> None:
        super().__init__(f"Expiry date is required for activity {activity!r}.")
        self.activity = activity


class ExpiryBeforeTransactionDate(LedgerError):
    code = "expiry_before_transaction_date"

    def __init__(self) -> None:
        super().__init__("Expiry date cannot be earlier than the transaction date.")


class BatchRequired(LedgerError):
    code = "batch_required"

    def __init__(self, activity: str) -> None:
        super().__init__(f"A batch is required for activity {activity!r}.")
        self.activity = activity


class InvalidBatchFormat(LedgerError):
    code = "invalid_batch_format"

    def __init__(self, batch: str, item_code: str) -> None:
        super().__init__(f"Batch {batch!r} must start with {item_code + '-'!r} followed by a suffix.")
        self.batch = batch
        self.item_code = item_code


class BatchNotAvailableForActivity(LedgerError):
    code = "batch_not_available_for_activity"

    def __init__(self, batch: str, activity: str) -> None:
        super().__init__(f"Batch {batch!r} is not available for activity {activity!r}.")
        self.batch = batch
        self.activity = activity


class InsufficientBatchQuantity(LedgerError):
    status_code = 409
    code = "insufficient_batch_quantity"

    def __init__(self, batch: str, available: Decimal, requested: Decimal) -> None:
        super().__init__(
            f"Batch {batch!r} has {available} available for this activity, {requested} requested."
        )
        self.batch = batch
        self.available = available
        self.requested = requested


class InsufficientStock(LedgerError):
    status_code = 409
    code = "insufficient_stock"

    def __init__(self, batch: str, available: Decimal, requested: Decimal) -> None:
        super().__init__(f"Insufficient stock in batch {batch!r}: available {available}, requested {requested}.")
        self.batch = batch
        self.available = available
        self.requested = requested


class FutureTransactionDate(LedgerError):
    code = "future_transaction_date"

    def __init__(self) -> None:
        super().__init__("Transaction date cannot be in the future.")


class DocumentNumberRequired(LedgerError):
    code = "document_number_required"

    def __init__(self) -> None:
        super().__init__("A document number is required.")


class PriceRequired(LedgerError):
    code = "price_required"

    def __init__(self, activity: str) -> None:
        super().__init__(f"A price is required for activity {activity!r}.")
        self.activity = activity


class UnknownActivity(LedgerError):
    code = "unknown_activity"

    def __init__(self, ledger: str, activity: str) -> None:
        super().__init__(f"Activity {activity!r} is not defined for ledger {ledger!r}.")
        self.ledger = ledger
        self.activity = activity


class UnknownLedger(LedgerError):
    status_code = 404
    code = "unknown_ledger"

    def __init__(self, ledger: str) -> None:
        super().__init__(f"Ledger {ledger!r} does not exist.")
        self.ledger = ledger


class DuplicateEntry(LedgerError):
    status_code = 409
    code = "duplicate_entry"


class RecordNotFound(LedgerError):
    status_code = 404
    code = "record_not_found"

    def __init__(self, ledger: str, record_id: int) -> None:
        super().__init__(f"Record {record_id} not found in ledger {ledger!r}.")
        self.ledger = ledger
        self.record_id = record_id


class BulkRecordsRejected(LedgerError):
    """One or more records of a bulk create failed; nothing was written."""

    code = "bulk_records_rejected"

    def __init__(self, failures: List[dict]) -> None:
        super().__init__(f"{len(failures)} record(s) failed validation; no records were saved.")
        self.failures = failures
        if len({failure["status_code"] for failure in failures}) == 1:
            self.status_code = failures[0]["status_code"]

    def to_detail(self) -> dict:
        detail = super().to_detail()
        detail["errors"] = [
            {"index": failure["index"], "code": failure["code"], "message": failure["message"]}
            for failure in self.failures
        ]
        return detail
