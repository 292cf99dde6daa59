from sqlalchemy import inspect, text

AUDIT_TABLE = "time_entry_edits"

INSTALL_DDL = """
CREATE OR REPLACE FUNCTION time_entry_edits_block_mutation()
RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'time_entry_edits is append-only';
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS trg_time_entry_edits_block_update ON time_entry_edits;
CREATE TRIGGER trg_time_entry_edits_block_update
BEFORE UPDATE ON time_entry_edits
FOR EACH ROW
EXECUTE FUNCTION time_entry_edits_block_mutation();

DROP TRIGGER IF EXISTS trg_time_entry_edits_block_delete ON time_entry_edits;
CREATE TRIGGER trg_time_entry_edits_block_delete
BEFORE DELETE ON time_entry_edits
FOR EACH ROW
EXECUTE FUNCTION time_entry_edits_block_mutation();
"""

DROP_DDL = """
DROP TRIGGER IF EXISTS trg_time_entry_edits_block_update ON time_entry_edits;
DROP TRIGGER IF EXISTS trg_time_entry_edits_block_delete ON time_entry_edits;
DROP FUNCTION IF EXISTS time_entry_edits_block_mutation();
"""


def table_exists(engine, table_name: str) -> bool:
    if engine is None:
        return False
    return inspect(engine).has_table(table_name)


def install_time_entry_edit_immutability(engine) -> bool:
    """
    Postgres-only: install triggers that block UPDATE/DELETE on the audit table.
    Safe to run multiple times. Other backends rely on the ORM listeners in
    app.models.time_entry_edit. Returns True when triggers were (re)installed.
    """
    if engine is None:
        return False

    dialect = getattr(engine, "dialect", None)
    if dialect is None or getattr(dialect, "name", "") != "postgresql":
        return False

    if not table_exists(engine, AUDIT_TABLE):
        return False

    with engine.begin() as conn:
        conn.execute(text(INSTALL_DDL))
    return True
