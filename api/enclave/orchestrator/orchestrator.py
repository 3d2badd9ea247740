"""Turn orchestrator: deterministic, traceable handling of one SMS.

    frame -> plan -> envelope -> execute -> persist

Every phase is guarded; a turn always ends in a :class:`TurnResult` with
at least one message and never raises to the transport.
"""

from __future__ import annotations

import logging
import time
import uuid

from enclave.core.cache import TTLCache
from enclave.core.config import (
    ENCLAVE_CACHE_MAX_ITEMS,
    ENCLAVE_CACHE_TTL_S,
    ENCLAVE_WORKSPACE_IDS,
)
from enclave.core.errors import EnclaveError, PersistenceFailure
from enclave.db.repo import SqliteStore, call_store
from enclave.llm.ollama_client import OllamaGenerator
from enclave.orchestrator.envelope import EnvelopeBuilder
from enclave.orchestrator.execute import ExecuteDeps, execute
from enclave.orchestrator.frame import build_turn_frame
from enclave.orchestrator.models import (
    ContextEnvelope,
    ExecuteResult,
    HistoryTurn,
    Intent,
    ResponseMode,
    SystemState,
    TurnFrame,
    TurnResult,
)
from enclave.orchestrator.plan import plan
from enclave.retrieval.retrievers import ProductReference
from enclave.retrieval.service import HttpResourceSearch, ResourceRetriever
from enclave.sms.sender import TwilioSender

logger = logging.getLogger("enclave.orchestrator")

ERROR_REPLY = "I encountered an error processing your request. Please try again."
EMPTY_REPLY = "I couldn't process that request. Please try again."

# Maximum inbound length considered; longer bodies are truncated.
_MAX_INPUT_LEN = 5_000


def _new_id() -> str:
    return uuid.uuid4().hex


def _ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def _empty_envelope(frame: TurnFrame) -> ContextEnvelope:
    return ContextEnvelope(
        intent=Intent.small_talk,
        system_state=SystemState(pending_draft=frame.state.pending),
    )


class Orchestrator:
    """Runs one turn end to end against injected collaborators."""

    def __init__(self, store, envelope_builder: EnvelopeBuilder, deps: ExecuteDeps) -> None:
        self.store = store
        self.envelope_builder = envelope_builder
        self.deps = deps

    async def handle_turn(
        self,
        phone: str,
        text: str,
        user_id: str | None = None,
        prefetched_history: list[HistoryTurn] | None = None,
    ) -> TurnResult:
        trace_id = _new_id()
        text = (text or "")[:_MAX_INPUT_LEN]
        started = time.perf_counter()

        # ── Frame ─────────────────────────────────────────
        try:
            frame = await build_turn_frame(
                self.store, phone, text,
                user_id=user_id, prefetched_history=prefetched_history,
            )
        except Exception:
            logger.exception("[ORCH]   trace=%s — frame build failed", trace_id[:12])
            return TurnResult(trace_id=trace_id, messages=[ERROR_REPLY], status="error")

        # ── Plan ──────────────────────────────────────────
        response_mode = plan(frame)
        logger.info(
            "[ORCH]   trace=%s — %s mode=%s plan=%s",
            trace_id[:12], frame.user.phone, frame.state.mode.value, response_mode.value,
        )

        # ── Envelope ──────────────────────────────────────
        envelope = await self._envelope(trace_id, frame, response_mode)

        # ── Execute ───────────────────────────────────────
        try:
            result = await execute(response_mode, frame, envelope, self.deps)
        except Exception:
            logger.exception(
                "[ORCH]   trace=%s — execute %s failed", trace_id[:12], response_mode.value
            )
            return TurnResult(
                trace_id=trace_id,
                messages=[ERROR_REPLY],
                response_mode=response_mode,
                status="error",
            )

        messages = [m for m in result.messages if m and m.strip()] or [EMPTY_REPLY]

        # ── Persist ───────────────────────────────────────
        await self._persist(trace_id, frame, result, messages)

        logger.info(
            "[ORCH]   trace=%s — done plan=%s new_mode=%s in %dms",
            trace_id[:12], response_mode.value,
            result.new_mode.value if result.new_mode else None, _ms(started),
        )
        return TurnResult(
            trace_id=trace_id,
            messages=messages,
            new_mode=result.new_mode,
            response_mode=response_mode,
        )

    async def _envelope(
        self, trace_id: str, frame: TurnFrame, response_mode: ResponseMode
    ) -> ContextEnvelope:
        started = time.perf_counter()
        try:
            envelope = await self.envelope_builder.build(frame, response_mode)
        except EnclaveError as exc:
            logger.warning(
                "[ORCH]   trace=%s — envelope failed, continuing without evidence: %s",
                trace_id[:12], exc,
            )
            return _empty_envelope(frame)
        except Exception:
            logger.exception(
                "[ORCH]   trace=%s — envelope crashed, continuing without evidence", trace_id[:12]
            )
            return _empty_envelope(frame)
        logger.info(
            "[ORCH]   trace=%s — envelope intent=%s evidence=%d in %dms",
            trace_id[:12], envelope.intent.value, len(envelope.evidence), _ms(started),
        )
        return envelope

    async def _persist(
        self, trace_id: str, frame: TurnFrame, result: ExecuteResult, messages: list[str]
    ) -> None:
        phone = frame.user.phone
        try:
            await call_store(self.store.append_turn, phone, frame.text, "\n\n".join(messages))
        except PersistenceFailure as exc:
            logger.warning("[ORCH]   trace=%s — history write failed: %s", trace_id[:12], exc)

        if result.new_mode is None:
            return
        try:
            await call_store(self.store.set_session_mode, phone, result.new_mode)
        except PersistenceFailure as exc:
            logger.warning("[ORCH]   trace=%s — session mode write failed: %s", trace_id[:12], exc)


def build_default_orchestrator(db_path: str | None = None) -> Orchestrator:
    """Wire the production collaborators from configuration."""
    store = SqliteStore(db_path)
    resources = ResourceRetriever(
        HttpResourceSearch(),
        cache=TTLCache(max_items=ENCLAVE_CACHE_MAX_ITEMS, ttl_s=ENCLAVE_CACHE_TTL_S),
    )
    builder = EnvelopeBuilder(store, resources=resources, product=ProductReference())
    deps = ExecuteDeps(
        store=store,
        sender=TwilioSender(),
        generator=OllamaGenerator(),
        workspace_id=ENCLAVE_WORKSPACE_IDS[0] if ENCLAVE_WORKSPACE_IDS else None,
    )
    return Orchestrator(store, builder, deps)
