"""Router: SMS — Twilio webhook (TwiML out) and a JSON turn endpoint."""

from __future__ import annotations

from functools import lru_cache
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, Request, Response
from pydantic import BaseModel, Field

from enclave.orchestrator.models import Mode, ResponseMode
from enclave.orchestrator.orchestrator import Orchestrator, build_default_orchestrator
from enclave.sms.inbound import InboundScreen
from enclave.sms.twiml import to_twiml

router = APIRouter(prefix="/api", tags=["sms"])


@lru_cache(maxsize=1)
def get_orchestrator() -> Orchestrator:
    return build_default_orchestrator()


# ── Request / Response models ─────────────────────────────

class TurnRequest(BaseModel):
    phone: str = Field(..., min_length=1, description="Sender phone number")
    text: str = Field(default="", description="Inbound message body")
    user_id: str | None = None


class TurnResponse(BaseModel):
    trace_id: str
    messages: list[str]
    new_mode: Mode | None = None
    response_mode: ResponseMode | None = None
    status: str = "ok"


# ── Endpoints ─────────────────────────────────────────────

@router.post("/sms/webhook")
async def sms_webhook(request: Request, orch: Orchestrator = Depends(get_orchestrator)):
    """Twilio inbound-message webhook; replies are returned inline as TwiML.

    Carrier keywords, opt-in and poll answers are screened first; anything
    else runs as a conversation turn.
    """
    form = parse_qs((await request.body()).decode("utf-8", errors="replace"))
    phone = form.get("From", [""])[0]
    body = form.get("Body", [""])[0]
    if not phone:
        return Response(content=to_twiml([]), media_type="application/xml")

    screen = await InboundScreen(orch.store).screen(phone, body)
    if screen.reply is not None:
        return Response(content=to_twiml(screen.reply), media_type="application/xml")

    result = await orch.handle_turn(phone, body)
    messages = screen.greeting + result.messages
    return Response(content=to_twiml(messages), media_type="application/xml")


@router.post("/turn", response_model=TurnResponse)
async def turn(req: TurnRequest, orch: Orchestrator = Depends(get_orchestrator)):
    """Run one conversation turn directly, without SMS keyword screening."""
    result = await orch.handle_turn(req.phone, req.text, user_id=req.user_id)
    return TurnResponse(**result.model_dump())
