"""
Module: stock_kernel.db.triggers
Responsibility: Installing, removing and verifying the database-level
    immutability triggers on ledger_entries (Layer 2 of 2).  This is the
    database complement to the ORM listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only.  MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - ledger_entries rows: no UPDATE, no DELETE, ever.
    - Carrier deletion while referenced is refused by the ledger_entries
      foreign key (ON DELETE RESTRICT), so no trigger is needed for it.

Failure modes:
    - PostgreSQL RAISE EXCEPTION / SQLite RAISE(ABORT) on any violation
      (surfaced by SQLAlchemy as a DBAPIError subclass).
    - OperationalError on deadlock during installation (caller retries).

Both dialects are supported: PostgreSQL through a plpgsql function, SQLite
through per-statement BEFORE triggers.
"""

from sqlalchemy import text
from sqlalchemy.engine import Engine

ALL_TRIGGER_NAMES = [
    "trg_ledger_entry_immutability_update",
    "trg_ledger_entry_immutability_delete",
]

_POSTGRES_INSTALL = """
CREATE OR REPLACE FUNCTION prevent_ledger_entry_mutation()
RETURNS TRIGGER AS $$
BEGIN
    RAISE EXCEPTION 'Ledger entry % is immutable: % is not allowed',
        OLD.id, TG_OP;
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_ledger_entry_immutability_update ON ledger_entries;
CREATE TRIGGER trg_ledger_entry_immutability_update
    BEFORE UPDATE ON ledger_entries
    FOR EACH ROW EXECUTE FUNCTION prevent_ledger_entry_mutation();

DROP TRIGGER IF EXISTS trg_ledger_entry_immutability_delete ON ledger_entries;
CREATE TRIGGER trg_ledger_entry_immutability_delete
    BEFORE DELETE ON ledger_entries
    FOR EACH ROW EXECUTE FUNCTION prevent_ledger_entry_mutation();
"""

_POSTGRES_DROP = """
DROP TRIGGER IF EXISTS trg_ledger_entry_immutability_update ON ledger_entries;
DROP TRIGGER IF EXISTS trg_ledger_entry_immutability_delete ON ledger_entries;
DROP FUNCTION IF EXISTS prevent_ledger_entry_mutation();
"""

# pysqlite executes one statement per call
_SQLITE_INSTALL = [
    """
    CREATE TRIGGER IF NOT EXISTS trg_ledger_entry_immutability_update
    BEFORE UPDATE ON ledger_entries
    BEGIN
        SELECT RAISE(ABORT, 'Ledger entries are immutable: UPDATE is not allowed');
    END
    """,
    """
    CREATE TRIGGER IF NOT EXISTS trg_ledger_entry_immutability_delete
    BEFORE DELETE ON ledger_entries
    BEGIN
        SELECT RAISE(ABORT, 'Ledger entries are immutable: DELETE is not allowed');
    END
    """,
]

_SQLITE_DROP = [
    "DROP TRIGGER IF EXISTS trg_ledger_entry_immutability_update",
    "DROP TRIGGER IF EXISTS trg_ledger_entry_immutability_delete",
]


def _is_sqlite(engine: Engine) -> bool:
    return engine.dialect.name == "sqlite"


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install database-level ledger immutability triggers.

    Preconditions: Tables must exist (call after create_all()).
    Postconditions: All triggers in ALL_TRIGGER_NAMES are installed.
        Installation is idempotent.
    """
    with engine.connect() as conn:
        if _is_sqlite(engine):
            for statement in _SQLITE_INSTALL:
                conn.execute(text(statement))
        else:
            conn.execute(text(_POSTGRES_INSTALL))
        conn.commit()


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove database-level immutability triggers.

    WARNING: Only for tests and schema teardown.  Re-install immediately
    afterwards if the tables are kept.
    """
    with engine.connect() as conn:
        if _is_sqlite(engine):
            for statement in _SQLITE_DROP:
                conn.execute(text(statement))
        else:
            conn.execute(text(_POSTGRES_DROP))
        conn.commit()


def get_installed_triggers(engine: Engine) -> list[str]:
    """Names of the ledger immutability triggers currently installed."""
    if _is_sqlite(engine):
        query = text(
            "SELECT name FROM sqlite_master "
            "WHERE type = 'trigger' AND name IN (:update_name, :delete_name) "
            "ORDER BY name"
        )
    else:
        query = text(
            "SELECT tgname FROM pg_trigger "
            "WHERE tgname IN (:update_name, :delete_name) "
            "ORDER BY tgname"
        )

    with engine.connect() as conn:
        result = conn.execute(
            query,
            {
                "update_name": ALL_TRIGGER_NAMES[0],
                "delete_name": ALL_TRIGGER_NAMES[1],
            },
        )
        return [row[0] for row in result]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES is installed."""
    return len(get_installed_triggers(engine)) == len(ALL_TRIGGER_NAMES)
