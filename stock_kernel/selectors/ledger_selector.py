"""
Module: stock_kernel.selectors.ledger_selector
Responsibility: Read-only queries over the movement ledger: paginated
    history (newest first), per-product entry listings and signed totals.
Architecture position: Kernel > Selectors.

Failure modes:
    - Returns empty pages and zero totals when no entries match.
    - ValueError for a page or limit below 1.
"""

from uuid import UUID

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from stock_kernel.domain.dtos import Direction, LedgerEntryRecord, MovementPage
from stock_kernel.models.ledger import LedgerEntry
from stock_kernel.selectors.base import BaseSelector

MAX_PAGE_LIMIT = 500


class LedgerSelector(BaseSelector[LedgerEntry]):
    """Read-only access to ledger entries."""

    def __init__(self, session: Session):
        super().__init__(session)

    def history(
        self,
        product_id: UUID | None = None,
        direction: Direction | str | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> MovementPage:
        """
        One page of ledger history, newest first.

        Args:
            product_id: Restrict to one product.
            direction: Restrict to IN or OUT.
            page: 1-based page number.
            limit: Page size, capped at MAX_PAGE_LIMIT.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")
        limit = min(limit, MAX_PAGE_LIMIT)

        filters = []
        if product_id is not None:
            filters.append(LedgerEntry.product_id == product_id)
        if direction is not None:
            filters.append(LedgerEntry.direction == Direction(direction).value)

        total = self.session.execute(
            select(func.count(LedgerEntry.id)).where(*filters)
        ).scalar_one()

        rows = self.session.execute(
            select(LedgerEntry)
            .where(*filters)
            .order_by(LedgerEntry.seq.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        ).scalars().all()

        return MovementPage(
            items=tuple(LedgerEntryRecord.from_model(row) for row in rows),
            page=page,
            limit=limit,
            total=int(total),
        )

    def entries_for_product(self, product_id: UUID) -> list[LedgerEntryRecord]:
        """All entries for a product in ledger (seq) order."""
        rows = self.session.execute(
            select(LedgerEntry)
            .where(LedgerEntry.product_id == product_id)
            .order_by(LedgerEntry.seq)
        ).scalars().all()
        return [LedgerEntryRecord.from_model(row) for row in rows]

    def signed_total(self, product_id: UUID) -> int:
        """Signed sum of every entry for a product since inception."""
        signed = case(
            (LedgerEntry.direction == Direction.IN.value, LedgerEntry.quantity),
            else_=-LedgerEntry.quantity,
        )
        total = self.session.execute(
            select(func.coalesce(func.sum(signed), 0)).where(
                LedgerEntry.product_id == product_id
            )
        ).scalar_one()
        return int(total)

    def count(self, product_id: UUID | None = None) -> int:
        stmt = select(func.count(LedgerEntry.id))
        if product_id is not None:
            stmt = stmt.where(LedgerEntry.product_id == product_id)
        return int(self.session.execute(stmt).scalar_one())
