"""
ORM-Level Immutability Enforcement (Layer 1 of 2).

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement ledger is the source of truth for stock.  Aggregates, carrier
states and every repair are derived from it, so a ledger row that changes
after the fact silently rewrites history.  Corrections are new movements,
never edits.

This module is the FIRST layer of "defense in depth" for the ledger:

  Layer 1: THIS FILE (ORM event listeners)
    - Catches modifications through Python/SQLAlchemy code
    - Fires BEFORE the SQL is sent to the database

  Layer 2: db/triggers.py (PostgreSQL / SQLite triggers)
    - Catches raw SQL and bulk UPDATE/DELETE statements
    - Fires AT the database level, independent of application code

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity          | When Immutable                    | Enforcement
----------------|-----------------------------------|---------------------------
LedgerEntry     | ALWAYS (from creation)            | before_update / before_delete
UnitCarrier     | Deletion, once referenced         | before_flush

===============================================================================
USAGE
===============================================================================

    from stock_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup

Tests that must write defects directly into storage:

    from stock_kernel.db.immutability import unregister_immutability_listeners
    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, exists, select
from sqlalchemy.orm import Session

from stock_kernel.exceptions import CarrierReferencedError, ImmutabilityViolationError
from stock_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_carrier_deletion_before_flush(session, flush_context, instances):
    """
    Refuse to delete a carrier that ledger entries reference.

    Runs in SessionEvents.before_flush, before the flush plan is finalized;
    mapper-level delete events fire too late to stop the plan.
    """
    from stock_kernel.models.carrier import UnitCarrier
    from stock_kernel.models.ledger import LedgerEntry

    for obj in list(session.deleted):
        if not isinstance(obj, UnitCarrier):
            continue

        with session.no_autoflush:
            referenced = session.execute(
                select(exists().where(LedgerEntry.carrier_id == obj.id))
            ).scalar()

        if referenced:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "entity_type": "UnitCarrier",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                    "reason": "carrier_has_ledger_references",
                },
            )
            raise CarrierReferencedError(carrier_id=str(obj.id), scan_code=obj.code)


def _check_ledger_entry_immutability(mapper, connection, target):
    """Prevent any updates to LedgerEntry records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerEntry",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries are immutable and cannot be modified",
    )


def _check_ledger_entry_delete(mapper, connection, target):
    """Prevent deletion of LedgerEntry records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "LedgerEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="LedgerEntry",
        entity_id=str(target.id),
        reason="Ledger entries cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are not added twice.
    """
    from stock_kernel.models.ledger import LedgerEntry

    _safe_add_listener(Session, "before_flush", _check_carrier_deletion_before_flush)
    _safe_add_listener(LedgerEntry, "before_update", _check_ledger_entry_immutability)
    _safe_add_listener(LedgerEntry, "before_delete", _check_ledger_entry_delete)


def _safe_add_listener(target, event_name, listener_fn):
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests where you need to intentionally
    violate immutability rules to verify detection.
    """
    from stock_kernel.models.ledger import LedgerEntry

    _safe_remove_listener(Session, "before_flush", _check_carrier_deletion_before_flush)
    _safe_remove_listener(LedgerEntry, "before_update", _check_ledger_entry_immutability)
    _safe_remove_listener(LedgerEntry, "before_delete", _check_ledger_entry_delete)
