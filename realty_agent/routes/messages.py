from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from realty_agent.logging.flight_recorder import FlightRecorder
from realty_agent.services.agent import AgentOrchestrator
from realty_agent.services.reasoning import ReasoningError
from realty_agent.services.store import StoreError
from realty_agent.services.tool_dispatcher import ToolDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()

APOLOGY_REPLY = (
    "Desculpe, estamos com instabilidade no momento. "
    "Por favor, tente novamente em alguns minutos."
)


class InboundMessage(BaseModel):
    phone: str = Field(..., min_length=1)
    text: str
    session_id: Optional[str] = None


class AgentReplyOut(BaseModel):
    reply: str
    degraded: bool = False


def _orchestrator(request: Request) -> AgentOrchestrator:
    state = request.app.state
    settings = state.settings
    recorder: Optional[FlightRecorder] = getattr(request.state, "flight_recorder", None)
    dispatcher = ToolDispatcher(
        state.store,
        recorder,
        include_scheduling=settings.enable_visit_scheduling,
    )
    return AgentOrchestrator(
        state.store,
        state.reasoning,
        dispatcher,
        recorder,
        max_tool_rounds=settings.max_tool_rounds,
        history_limit=settings.history_limit,
        tool_timeout_sec=settings.tool_timeout_sec,
    )


@router.post("/inbound", response_model=AgentReplyOut)
async def inbound_message(body: InboundMessage, request: Request) -> AgentReplyOut:
    orchestrator = _orchestrator(request)
    try:
        reply = await orchestrator.respond(body.phone, body.text, body.session_id)
    except ReasoningError as exc:
        logger.warning("messages.reasoning_failed %s", exc)
        return AgentReplyOut(reply=APOLOGY_REPLY, degraded=True)
    except StoreError as exc:
        logger.exception("messages.store_failed")
        raise HTTPException(status_code=503, detail="Conversation store unavailable") from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return AgentReplyOut(reply=reply.text, degraded=reply.degraded)
