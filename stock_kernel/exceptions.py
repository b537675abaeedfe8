"""
Typed Exception Hierarchy for the Stock Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

A scan terminal has to tell an operator precisely why a scan did not move
stock. "Already done", "invalid item" and "insufficient stock" call for
different reactions on the warehouse floor, so callers must never decide
behavior by matching substrings of a human-readable message.

Every error therefore has:
  1. A TYPED exception class (catch by type, not message)
  2. A CODE attribute (machine-readable, API-safe)
  3. Structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        engine.submit_adjustment(...)
    except Exception as e:
        if "Insufficient" in str(e):  # FRAGILE - message might change
            show_shortfall()

Example - RIGHT way (what this module enables):
    try:
        engine.submit_adjustment(...)
    except InsufficientStockError as e:
        show_shortfall(e.available, e.required, e.shortfall)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    StockKernelError (base)
    |
    +-- StockRejection              (business rejection, carries RejectionKind)
    |   +-- UnknownBarcodeError
    |   +-- AlreadyStockedInError
    |   +-- NeverStockedInError
    |   +-- DuplicateOperationError
    |   +-- ImmediateRepeatError
    |   +-- InsufficientStockError
    |   +-- InvalidEntryError
    |   +-- UnknownProductError
    |
    +-- IntegrityError
    |   +-- ImmutabilityViolationError
    |   +-- CarrierReferencedError
    |   +-- DuplicateCarrierCodeError
    |
    +-- StorageUnavailableError     (infrastructure, retryable)

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Rejection       | UNKNOWN_BARCODE             | Scanned code was never issued
                | ALREADY_STOCKED_IN          | IN scan of a carrier already in stock
                | NEVER_STOCKED_IN            | OUT scan of a carrier not in stock
                | DUPLICATE_OPERATION         | Same carrier+direction within cooldown
                | IMMEDIATE_REPEAT            | Same code as the previous accepted scan
                | INSUFFICIENT_STOCK          | OUT larger than aggregate stock
                | INVALID_ENTRY               | Quantity <= 0 or unknown direction
                | UNKNOWN_PRODUCT             | Product id does not exist
----------------|-----------------------------|-----------------------------------------
Integrity       | IMMUTABILITY_VIOLATION      | UPDATE/DELETE of a ledger entry
                | CARRIER_REFERENCED          | Deleting a carrier used by the ledger
                | DUPLICATE_CARRIER_CODE      | Issuing a code that already exists
----------------|-----------------------------|-----------------------------------------
Infrastructure  | STORAGE_UNAVAILABLE         | Datastore failure, nothing committed

===============================================================================
PROPAGATION
===============================================================================

Rejections and infrastructure failures propagate to the immediate caller
unchanged. Drift between cached views and derived truth is not an
exception at all: the reconciler logs and repairs it, and it is never
surfaced on the request path of the scan that happened to detect it.
"""

from enum import Enum


class RejectionKind(str, Enum):
    """Closed enumeration of the reasons a movement can be refused."""

    UNKNOWN_BARCODE = "UNKNOWN_BARCODE"
    ALREADY_STOCKED_IN = "ALREADY_STOCKED_IN"
    NEVER_STOCKED_IN = "NEVER_STOCKED_IN"
    DUPLICATE_OPERATION = "DUPLICATE_OPERATION"
    IMMEDIATE_REPEAT = "IMMEDIATE_REPEAT"
    INSUFFICIENT_STOCK = "INSUFFICIENT_STOCK"
    INVALID_ENTRY = "INVALID_ENTRY"
    UNKNOWN_PRODUCT = "UNKNOWN_PRODUCT"

    def message(self) -> str:
        """Operator-facing text for this kind."""
        return _REJECTION_MESSAGES[self]


_REJECTION_MESSAGES: dict[RejectionKind, str] = {
    RejectionKind.UNKNOWN_BARCODE: (
        "Barcode not found - only system-issued barcodes can be scanned"
    ),
    RejectionKind.ALREADY_STOCKED_IN: "Barcode is already stocked in",
    RejectionKind.NEVER_STOCKED_IN: (
        "Barcode is not stocked in - cannot stock it out"
    ),
    RejectionKind.DUPLICATE_OPERATION: (
        "Duplicate operation - same transaction type already performed recently"
    ),
    RejectionKind.IMMEDIATE_REPEAT: (
        "Same barcode scanned twice in a row - scan the next item"
    ),
    RejectionKind.INSUFFICIENT_STOCK: "Insufficient stock for this stock out",
    RejectionKind.INVALID_ENTRY: "Invalid stock movement",
    RejectionKind.UNKNOWN_PRODUCT: "Product not found",
}


class StockKernelError(Exception):
    """Base exception for all stock kernel errors."""

    code: str = "STOCK_KERNEL_ERROR"


# Rejections


class StockRejection(StockKernelError):
    """Base class for business rejections of a scan or adjustment."""

    code: str = "STOCK_REJECTION"
    kind: RejectionKind


class UnknownBarcodeError(StockRejection):
    """The scanned code does not belong to any issued carrier."""

    code: str = "UNKNOWN_BARCODE"
    kind = RejectionKind.UNKNOWN_BARCODE

    def __init__(self, scan_code: str):
        self.scan_code = scan_code
        super().__init__(f"{self.kind.message()}: {scan_code}")


class AlreadyStockedInError(StockRejection):
    """IN scan of a carrier that is currently stocked in."""

    code: str = "ALREADY_STOCKED_IN"
    kind = RejectionKind.ALREADY_STOCKED_IN

    def __init__(self, scan_code: str):
        self.scan_code = scan_code
        super().__init__(f"{self.kind.message()}: {scan_code}")


class NeverStockedInError(StockRejection):
    """
    OUT scan of a carrier that is not currently stocked in.

    ``previously_stocked_in`` distinguishes a label that was never stocked
    in from one that was already stocked out. The effect is identical; only
    the message differs.
    """

    code: str = "NEVER_STOCKED_IN"
    kind = RejectionKind.NEVER_STOCKED_IN

    def __init__(self, scan_code: str, previously_stocked_in: bool = False):
        self.scan_code = scan_code
        self.previously_stocked_in = previously_stocked_in
        if previously_stocked_in:
            detail = "Barcode is no longer stocked in (already stocked out)"
        else:
            detail = "Barcode was never stocked IN"
        super().__init__(f"{detail}: {scan_code}")


class DuplicateOperationError(StockRejection):
    """Same carrier and direction accepted within the cooldown window."""

    code: str = "DUPLICATE_OPERATION"
    kind = RejectionKind.DUPLICATE_OPERATION

    def __init__(
        self,
        scan_code: str,
        direction: str,
        last_accepted_at: str,
        cooldown_seconds: float,
    ):
        self.scan_code = scan_code
        self.direction = direction
        self.last_accepted_at = last_accepted_at
        self.cooldown_seconds = cooldown_seconds
        super().__init__(
            f"{self.kind.message()}: {direction} of {scan_code} "
            f"at {last_accepted_at} (cooldown {cooldown_seconds}s)"
        )


class ImmediateRepeatError(StockRejection):
    """The same code as the immediately preceding accepted scan."""

    code: str = "IMMEDIATE_REPEAT"
    kind = RejectionKind.IMMEDIATE_REPEAT

    def __init__(self, scan_code: str):
        self.scan_code = scan_code
        super().__init__(f"{self.kind.message()}: {scan_code}")


class InsufficientStockError(StockRejection):
    """OUT movement larger than the product's aggregate stock."""

    code: str = "INSUFFICIENT_STOCK"
    kind = RejectionKind.INSUFFICIENT_STOCK

    def __init__(self, product_id: str, available: int, required: int):
        self.product_id = product_id
        self.available = available
        self.required = required
        self.shortfall = required - available
        super().__init__(
            f"{self.kind.message()}: product {product_id} has {available}, "
            f"requires {required} (short by {self.shortfall})"
        )


class InvalidEntryError(StockRejection):
    """A movement that can never be valid (e.g. non-positive quantity)."""

    code: str = "INVALID_ENTRY"
    kind = RejectionKind.INVALID_ENTRY

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"{self.kind.message()}: {reason}")


class UnknownProductError(StockRejection):
    """Product id does not exist."""

    code: str = "UNKNOWN_PRODUCT"
    kind = RejectionKind.UNKNOWN_PRODUCT

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"{self.kind.message()}: {product_id}")


# Integrity exceptions


class IntegrityError(StockKernelError):
    """Base exception for data integrity protections."""

    code: str = "INTEGRITY_ERROR"


class ImmutabilityViolationError(IntegrityError):
    """
    Attempted to modify or delete an immutable record.

    Ledger entries are immutable once written.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class CarrierReferencedError(IntegrityError):
    """Cannot delete a carrier that ledger entries reference."""

    code: str = "CARRIER_REFERENCED"

    def __init__(self, carrier_id: str, scan_code: str):
        self.carrier_id = carrier_id
        self.scan_code = scan_code
        super().__init__(
            f"Carrier {scan_code} ({carrier_id}) is referenced by ledger "
            "entries and cannot be deleted"
        )


class DuplicateCarrierCodeError(IntegrityError):
    """Issuing a carrier with a code that is already taken."""

    code: str = "DUPLICATE_CARRIER_CODE"

    def __init__(self, scan_code: str):
        self.scan_code = scan_code
        super().__init__(f"Carrier code already issued: {scan_code}")


# Infrastructure


class StorageUnavailableError(StockKernelError):
    """
    Datastore failure. The unit of work was rolled back and nothing was
    committed, so the caller may retry.
    """

    code: str = "STORAGE_UNAVAILABLE"

    def __init__(self, operation: str, detail: str, retryable: bool = True):
        self.operation = operation
        self.detail = detail
        self.retryable = retryable
        super().__init__(f"Storage unavailable during {operation}: {detail}")
