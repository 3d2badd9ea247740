import logging

from enclave.db.conn import get_conn

logger = logging.getLogger("enclave.migrate")

_SCHEMA = """
CREATE TABLE IF NOT EXISTS conversation_history (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    phone         TEXT NOT NULL,
    user_message  TEXT NOT NULL,
    bot_response  TEXT NOT NULL DEFAULT '',
    created_at    TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_history_phone
    ON conversation_history(phone, created_at);

CREATE TABLE IF NOT EXISTS draft (
    id            TEXT PRIMARY KEY,
    phone         TEXT NOT NULL,
    kind          TEXT NOT NULL CHECK (kind IN ('announcement', 'poll')),
    status        TEXT NOT NULL DEFAULT 'draft'
                  CHECK (status IN ('draft', 'scheduled', 'sent')),
    payload_json  TEXT NOT NULL,
    workspace_id  TEXT,
    last_edit_ts  TEXT NOT NULL
);
CREATE UNIQUE INDEX IF NOT EXISTS ux_draft_active
    ON draft(phone, kind) WHERE status != 'sent';

CREATE TABLE IF NOT EXISTS action (
    id            TEXT PRIMARY KEY,
    kind          TEXT NOT NULL,
    created_by    TEXT NOT NULL DEFAULT '',
    payload_json  TEXT NOT NULL DEFAULT '{}',
    ts            TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_action_ts ON action(ts);

CREATE TABLE IF NOT EXISTS poll_response (
    poll_id       TEXT NOT NULL,
    phone         TEXT NOT NULL,
    option        TEXT NOT NULL,
    created_at    TEXT NOT NULL,
    PRIMARY KEY (poll_id, phone)
);

CREATE TABLE IF NOT EXISTS sms_optin (
    phone         TEXT PRIMARY KEY,
    name          TEXT,
    opted_in      INTEGER NOT NULL DEFAULT 1,
    updated_at    TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS session_state (
    phone         TEXT PRIMARY KEY,
    mode          TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);
"""


def run_migration(db_path: str | None = None) -> None:
    """Create every table and index if missing. Safe to run on each startup."""
    conn = get_conn(db_path)
    try:
        conn.executescript(_SCHEMA)
        conn.commit()
        tables = [
            r[0]
            for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'"
            ).fetchall()
        ]
        logger.info("Migration complete (%d tables)", len(tables))
    finally:
        conn.close()
