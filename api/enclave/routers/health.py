from fastapi import APIRouter

from enclave.db.conn import get_conn
from enclave.llm.ollama_client import OllamaGenerator

router = APIRouter()


@router.get("/healthz")
async def healthz():
    # ── SQLite check ──
    sqlite_status = "ok"
    try:
        conn = get_conn()
        try:
            conn.execute("SELECT 1")
        finally:
            conn.close()
    except Exception:
        sqlite_status = "error"

    # ── Generation service check (optional; replies fall back without it) ──
    generation_status = "ok" if await OllamaGenerator().ping() else "unreachable"

    return {"ok": sqlite_status == "ok", "sqlite": sqlite_status, "generation": generation_status}
