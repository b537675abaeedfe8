"""
CarrierRegistry -- unit carrier identity and stock-contribution state.

Responsibility:
    Issues carriers (barcode labels) for a product, looks them up by code,
    and applies the scan_in / scan_out transitions and the zero-unit repair
    to carrier rows.  Transition rules live in domain/carrier_state.py;
    this service loads, locks and mutates the rows.

Architecture position:
    Kernel > Services -- imperative shell.  Called by ScanGate (lookup),
    StockTransactionProcessor (transitions) and ConsistencyReconciler
    (repair).

Invariants enforced:
    - A carrier contributes units at most once (scan_in only from
      UNASSIGNED or STOCKED_OUT).
    - A stocked-in carrier never holds zero units: scan_in records the
      defaulted count, normalize_units repairs legacy rows.
    - Carrier codes are unique; generated codes are 13-digit numeric.

Failure modes:
    - AlreadyStockedInError / NeverStockedInError on invalid transitions.
    - DuplicateCarrierCodeError on issuing an existing code.
    - UnknownProductError / InvalidEntryError on bad issuance input.
"""

import secrets
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError as SAIntegrityError
from sqlalchemy.orm import Session

from stock_kernel.domain.carrier_state import (
    check_scan_in,
    check_scan_out,
    derive_state,
    needs_unit_repair,
)
from stock_kernel.domain.dtos import CarrierInfo, CarrierState
from stock_kernel.exceptions import (
    DuplicateCarrierCodeError,
    InvalidEntryError,
    UnknownProductError,
)
from stock_kernel.logging_config import get_logger
from stock_kernel.models.carrier import UnitCarrier
from stock_kernel.models.product import Product
from stock_kernel.services.base import BaseService

logger = get_logger("services.carrier_registry")

CODE_LENGTH = 13
_MAX_CODE_ATTEMPTS = 10


def generate_code() -> str:
    """A random 13-digit numeric code with no leading zero."""
    first = secrets.randbelow(9) + 1
    rest = secrets.randbelow(10 ** (CODE_LENGTH - 1))
    return f"{first}{rest:0{CODE_LENGTH - 1}d}"


def carrier_state(carrier: UnitCarrier) -> CarrierState:
    return derive_state(carrier.stocked_in, carrier.ever_stocked_in)


class CarrierRegistry(BaseService[UnitCarrier]):
    """
    Owns carrier rows.

    Contract:
        Mutating methods flush but never commit.  Transition methods expect
        the carrier row to be locked by the caller (``lock_by_code``).
    """

    def __init__(self, session: Session, default_unit_count: int = 1):
        super().__init__(session)
        if default_unit_count < 1:
            raise ValueError("default_unit_count must be at least 1")
        self.default_unit_count = default_unit_count

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue(
        self,
        product_id: UUID,
        units_assigned: int,
        code: str | None = None,
        actor: str | None = None,
    ) -> CarrierInfo:
        """
        Issue one carrier for ``product_id``.

        A supplied ``code`` must not exist yet; otherwise a fresh 13-digit
        code is generated.
        """
        if isinstance(units_assigned, bool) or not isinstance(units_assigned, int):
            raise InvalidEntryError(
                f"units_assigned must be an integer, got {units_assigned!r}"
            )
        if units_assigned < 0:
            raise InvalidEntryError(
                f"units_assigned must not be negative, got {units_assigned}"
            )
        if self.session.get(Product, product_id) is None:
            raise UnknownProductError(str(product_id))

        if code is not None:
            code = code.strip()
            if not code:
                raise InvalidEntryError("carrier code must not be blank")
            if self.get_by_code(code) is not None:
                raise DuplicateCarrierCodeError(code)
        else:
            code = self._unused_code()

        carrier = UnitCarrier(
            product_id=product_id,
            code=code,
            units_assigned=units_assigned,
            stocked_in=False,
            ever_stocked_in=False,
            created_by=actor,
        )

        savepoint = self.session.begin_nested()
        try:
            self.session.add(carrier)
            self.session.flush()
            savepoint.commit()
        except SAIntegrityError:
            # Lost a race with a concurrent issuance of the same code
            savepoint.rollback()
            raise DuplicateCarrierCodeError(code) from None

        logger.info(
            "carrier_issued",
            extra={
                "carrier_id": str(carrier.id),
                "scan_code": code,
                "product_id": str(product_id),
                "units_assigned": units_assigned,
            },
        )
        return CarrierInfo.from_model(carrier)

    def issue_batch(
        self,
        product_id: UUID,
        count: int,
        units_each: int,
        actor: str | None = None,
    ) -> list[CarrierInfo]:
        """Issue ``count`` carriers with generated codes."""
        if count < 1:
            raise InvalidEntryError(f"count must be at least 1, got {count}")
        return [
            self.issue(product_id, units_each, actor=actor) for _ in range(count)
        ]

    def _unused_code(self) -> str:
        for _ in range(_MAX_CODE_ATTEMPTS):
            candidate = generate_code()
            if self.get_by_code(candidate) is None:
                return candidate
        raise DuplicateCarrierCodeError(candidate)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_by_code(self, code: str) -> UnitCarrier | None:
        return self.session.execute(
            select(UnitCarrier).where(UnitCarrier.code == code)
        ).scalar_one_or_none()

    def lock_by_code(self, code: str) -> UnitCarrier | None:
        """Load the carrier with a row lock, refreshing any cached copy."""
        return self.session.execute(
            select(UnitCarrier)
            .where(UnitCarrier.code == code)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_for_product(self, product_id: UUID) -> list[UnitCarrier]:
        """Lock every carrier of a product, in a stable order."""
        return list(
            self.session.execute(
                select(UnitCarrier)
                .where(UnitCarrier.product_id == product_id)
                .order_by(UnitCarrier.code)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def scan_in(self, carrier: UnitCarrier, units: int, moved_at: datetime) -> None:
        """
        UNASSIGNED / STOCKED_OUT -> STOCKED_IN.

        ``units`` is what the movement carries; a zero-unit carrier takes
        it as its unit count.
        """
        check_scan_in(carrier.code, carrier_state(carrier))

        if carrier.units_assigned == 0:
            carrier.units_assigned = units
            logger.warning(
                "carrier_units_defaulted",
                extra={
                    "carrier_id": str(carrier.id),
                    "scan_code": carrier.code,
                    "units_assigned": units,
                },
            )

        carrier.stocked_in = True
        carrier.ever_stocked_in = True
        carrier.last_moved_at = moved_at
        self.session.flush()

        logger.info(
            "carrier_scanned_in",
            extra={
                "carrier_id": str(carrier.id),
                "scan_code": carrier.code,
                "units_assigned": carrier.units_assigned,
            },
        )

    def scan_out(self, carrier: UnitCarrier, moved_at: datetime) -> None:
        """STOCKED_IN -> STOCKED_OUT."""
        check_scan_out(carrier.code, carrier_state(carrier))

        carrier.stocked_in = False
        carrier.last_moved_at = moved_at
        self.session.flush()

        logger.info(
            "carrier_scanned_out",
            extra={
                "carrier_id": str(carrier.id),
                "scan_code": carrier.code,
                "units_assigned": carrier.units_assigned,
            },
        )

    def normalize_units(self, carrier: UnitCarrier) -> bool:
        """
        Repair a stocked-in carrier with zero units.

        Returns True if the carrier was changed.
        """
        if not needs_unit_repair(carrier_state(carrier), carrier.units_assigned):
            return False

        carrier.units_assigned = self.default_unit_count
        self.session.flush()

        logger.warning(
            "carrier_units_normalized",
            extra={
                "carrier_id": str(carrier.id),
                "scan_code": carrier.code,
                "product_id": str(carrier.product_id),
                "units_assigned": self.default_unit_count,
            },
        )
        return True
