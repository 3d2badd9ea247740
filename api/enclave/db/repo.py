"""SQLite-backed stores for history, drafts, actions, polls, opt-ins and session mode.

All methods are synchronous; async callers go through :func:`call_store`,
which runs them in a worker thread under a timeout and converts every
failure into :class:`PersistenceFailure`.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from pydantic import TypeAdapter

from enclave.core.config import ENCLAVE_STORE_TIMEOUT_S
from enclave.core.errors import PersistenceFailure
from enclave.db.conn import get_conn
from enclave.orchestrator.models import (
    Action,
    Draft,
    DraftKind,
    DraftStatus,
    HistoryTurn,
    Mode,
    PollState,
)

logger = logging.getLogger("enclave.db.repo")

_draft_adapter: TypeAdapter = TypeAdapter(Draft)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _parse_ts(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        ts = datetime.fromisoformat(value)
    except ValueError:
        return None
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


async def call_store(
    fn: Callable[..., Any],
    *args: Any,
    timeout: float = ENCLAVE_STORE_TIMEOUT_S,
    **kwargs: Any,
) -> Any:
    """Run a blocking store method off the event loop.

    Raises PersistenceFailure on any error or timeout.
    """
    name = getattr(fn, "__name__", "store_call")
    try:
        return await asyncio.wait_for(
            asyncio.to_thread(fn, *args, **kwargs), timeout=timeout
        )
    except asyncio.TimeoutError as exc:
        raise PersistenceFailure(f"{name} timed out after {timeout:.1f}s") from exc
    except PersistenceFailure:
        raise
    except Exception as exc:
        raise PersistenceFailure(f"{name}: {type(exc).__name__}: {exc}") from exc


class SqliteStore:
    """Draft, action, poll, history, opt-in and session store."""

    def __init__(self, db_path: str | None = None) -> None:
        self.db_path = db_path

    def _conn(self):
        return get_conn(self.db_path)

    # ── conversation history ──────────────────────────────

    def append_turn(
        self,
        phone: str,
        user_message: str,
        bot_response: str,
        ts: datetime | None = None,
    ) -> None:
        conn = self._conn()
        try:
            conn.execute(
                """INSERT INTO conversation_history
                   (phone, user_message, bot_response, created_at)
                   VALUES (?, ?, ?, ?)""",
                (phone, user_message, bot_response, (ts.isoformat() if ts else _now_iso())),
            )
            conn.commit()
        finally:
            conn.close()

    def recent_turns(self, phone: str, limit: int = 5) -> list[HistoryTurn]:
        """Return the last *limit* turns for *phone*, oldest first."""
        conn = self._conn()
        try:
            rows = conn.execute(
                """SELECT user_message, bot_response, created_at
                   FROM conversation_history
                   WHERE phone = ?
                   ORDER BY created_at DESC, id DESC
                   LIMIT ?""",
                (phone, limit),
            ).fetchall()
        finally:
            conn.close()
        return [
            HistoryTurn(
                user_message=r["user_message"],
                bot_response=r["bot_response"],
                ts=_parse_ts(r["created_at"]),
            )
            for r in reversed(rows)
        ]

    # ── drafts ────────────────────────────────────────────

    def get_active_draft(self, phone: str, kind: DraftKind) -> Draft | None:
        conn = self._conn()
        try:
            row = conn.execute(
                """SELECT id, payload_json, status FROM draft
                   WHERE phone = ? AND kind = ? AND status != 'sent'
                   ORDER BY last_edit_ts DESC LIMIT 1""",
                (phone, kind),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        draft = _draft_adapter.validate_json(row["payload_json"])
        return draft.model_copy(update={"id": row["id"], "status": DraftStatus(row["status"])})

    def save_draft(self, phone: str, draft: Draft) -> str:
        """Upsert the single non-terminal draft for ``(phone, draft.kind)``.

        An existing active row is overwritten in place (its id is kept);
        otherwise a new row is inserted.  Returns the row id.
        """
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT id FROM draft WHERE phone = ? AND kind = ? AND status != 'sent'",
                (phone, draft.kind),
            ).fetchone()
            draft_id = row["id"] if row else (draft.id or uuid.uuid4().hex)
            stored = draft.model_copy(update={"id": draft_id, "created_by": draft.created_by or phone})
            params = (
                stored.status.value,
                stored.model_dump_json(),
                stored.workspace_id,
                stored.last_edit_ts.isoformat(),
            )
            if row:
                conn.execute(
                    """UPDATE draft SET status = ?, payload_json = ?, workspace_id = ?,
                       last_edit_ts = ? WHERE id = ?""",
                    (*params, draft_id),
                )
            else:
                conn.execute(
                    """INSERT INTO draft
                       (status, payload_json, workspace_id, last_edit_ts, id, phone, kind)
                       VALUES (?, ?, ?, ?, ?, ?, ?)""",
                    (*params, draft_id, phone, draft.kind),
                )
            conn.commit()
            return draft_id
        finally:
            conn.close()

    def discard_draft(self, phone: str, kind: DraftKind | None = None) -> int:
        """Delete active drafts for *phone* (one kind or all). Returns rows removed."""
        conn = self._conn()
        try:
            if kind is None:
                cur = conn.execute(
                    "DELETE FROM draft WHERE phone = ? AND status != 'sent'", (phone,)
                )
            else:
                cur = conn.execute(
                    "DELETE FROM draft WHERE phone = ? AND kind = ? AND status != 'sent'",
                    (phone, kind),
                )
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    def mark_sent(self, draft_id: str) -> None:
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT payload_json FROM draft WHERE id = ?", (draft_id,)
            ).fetchone()
            if row is None:
                raise PersistenceFailure(f"draft {draft_id} not found")
            payload = json.loads(row["payload_json"])
            payload["status"] = DraftStatus.sent.value
            conn.execute(
                "UPDATE draft SET status = 'sent', payload_json = ?, last_edit_ts = ? WHERE id = ?",
                (json.dumps(payload), _now_iso(), draft_id),
            )
            conn.commit()
        finally:
            conn.close()

    # ── actions & polls ───────────────────────────────────

    def record_action(self, action: Action, created_by: str = "") -> None:
        conn = self._conn()
        try:
            conn.execute(
                "INSERT INTO action (id, kind, created_by, payload_json, ts) VALUES (?, ?, ?, ?, ?)",
                (action.id, action.kind, created_by, json.dumps(action.payload), action.ts.isoformat()),
            )
            conn.commit()
        finally:
            conn.close()

    def recent_actions(self, limit: int = 5) -> list[Action]:
        conn = self._conn()
        try:
            rows = conn.execute(
                "SELECT id, kind, payload_json, ts FROM action ORDER BY ts DESC LIMIT ?",
                (limit,),
            ).fetchall()
        finally:
            conn.close()
        return [
            Action(
                id=r["id"],
                kind=r["kind"],
                ts=_parse_ts(r["ts"]),
                payload=json.loads(r["payload_json"] or "{}"),
            )
            for r in rows
        ]

    def pending_poll(self) -> PollState | None:
        """Most recently sent poll, with its current response count."""
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT id, payload_json, ts FROM action WHERE kind = 'poll_sent' ORDER BY ts DESC LIMIT 1"
            ).fetchone()
            if row is None:
                return None
            payload = json.loads(row["payload_json"] or "{}")
            poll_id = payload.get("poll_id") or row["id"]
            count = conn.execute(
                "SELECT COUNT(*) FROM poll_response WHERE poll_id = ?", (poll_id,)
            ).fetchone()[0]
        finally:
            conn.close()
        return PollState(
            id=poll_id,
            question=payload.get("question", ""),
            options=payload.get("options", []),
            code=payload.get("code", ""),
            sent_at=_parse_ts(row["ts"]),
            response_count=count,
        )

    def record_poll_response(self, poll_id: str, phone: str, option: str) -> None:
        """Store one answer per ``(poll, phone)``; a later answer replaces the earlier one."""
        conn = self._conn()
        try:
            conn.execute(
                """INSERT INTO poll_response (poll_id, phone, option, created_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(poll_id, phone) DO UPDATE SET
                     option = excluded.option, created_at = excluded.created_at""",
                (poll_id, phone, option, _now_iso()),
            )
            conn.commit()
        finally:
            conn.close()

    def count_poll_responses(self, poll_id: str) -> dict[str, int]:
        conn = self._conn()
        try:
            rows = conn.execute(
                "SELECT option, COUNT(*) AS n FROM poll_response WHERE poll_id = ? GROUP BY option",
                (poll_id,),
            ).fetchall()
        finally:
            conn.close()
        return {r["option"]: r["n"] for r in rows}

    # ── opt-ins ───────────────────────────────────────────

    def set_optin(self, phone: str, opted_in: bool = True, name: str | None = None) -> None:
        conn = self._conn()
        try:
            conn.execute(
                """INSERT INTO sms_optin (phone, name, opted_in, updated_at)
                   VALUES (?, ?, ?, ?)
                   ON CONFLICT(phone) DO UPDATE SET
                     name = COALESCE(excluded.name, sms_optin.name),
                     opted_in = excluded.opted_in,
                     updated_at = excluded.updated_at""",
                (phone, name, 1 if opted_in else 0, _now_iso()),
            )
            conn.commit()
        finally:
            conn.close()

    def get_optin(self, phone: str) -> bool | None:
        """True/False for a known number, None when it has never texted in."""
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT opted_in FROM sms_optin WHERE phone = ?", (phone,)
            ).fetchone()
        finally:
            conn.close()
        return None if row is None else bool(row["opted_in"])

    def opted_in_phones(self) -> list[str]:
        conn = self._conn()
        try:
            rows = conn.execute(
                "SELECT phone FROM sms_optin WHERE opted_in = 1 ORDER BY phone"
            ).fetchall()
        finally:
            conn.close()
        return [r["phone"] for r in rows]

    # ── session mode ──────────────────────────────────────

    def get_session_mode(self, phone: str) -> Mode | None:
        conn = self._conn()
        try:
            row = conn.execute(
                "SELECT mode FROM session_state WHERE phone = ?", (phone,)
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None
        try:
            return Mode(row["mode"])
        except ValueError:
            logger.warning("Unknown session mode %r for %s", row["mode"], phone)
            return None

    def set_session_mode(self, phone: str, mode: Mode) -> None:
        conn = self._conn()
        try:
            conn.execute(
                """INSERT INTO session_state (phone, mode, updated_at) VALUES (?, ?, ?)
                   ON CONFLICT(phone) DO UPDATE SET
                     mode = excluded.mode, updated_at = excluded.updated_at""",
                (phone, mode.value, _now_iso()),
            )
            conn.commit()
        finally:
            conn.close()
