"""Agent Orchestrator: one inbound message in, one reply out.

Resolves the lead, assembles the conversation context, runs the
reasoning/tool loop and persists the user/assistant pair.
"""

from __future__ import annotations

import asyncio
import json
import logging
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, List, Optional

from realty_agent.logging.flight_recorder import FlightRecorder
from realty_agent.models.crm import TurnRole
from realty_agent.models.reasoning import ChatMessage, ReasoningRequest, ToolCall
from realty_agent.services.context import build_system_prompt, history_to_messages
from realty_agent.services.reasoning import ReasoningPort
from realty_agent.services.store import ConversationStore
from realty_agent.services.tool_dispatcher import ToolDispatcher
from realty_agent.utils.phone import normalize_phone, redact_phone

logger = logging.getLogger(__name__)

ONBOARDING_PROMPT = (
    "Olá! Sou o assistente virtual da imobiliária. Para que eu possa te ajudar melhor, qual é o seu nome "
    "e o que você está procurando (comprar, alugar, tipo de imóvel, localização)?"
)
DEGRADED_REPLY = (
    "Desculpe, não consegui concluir sua solicitação agora. "
    "Um de nossos corretores vai continuar o atendimento em breve."
)
UNKNOWN_TOOL_TEMPLATE = "Erro: Ferramenta desconhecida: {name}"
INVALID_ARGUMENTS_TEMPLATE = "Erro: argumentos inválidos para {name}: esperado um objeto JSON."
TOOL_TIMEOUT_TEMPLATE = "Erro: a ferramenta {name} demorou demais para responder. Tente novamente."


@dataclass
class AgentReply:
    text: str
    degraded: bool = False
    onboarding: bool = False
    tool_rounds: int = 0


class AgentOrchestrator:
    def __init__(
        self,
        store: ConversationStore,
        reasoning: ReasoningPort,
        dispatcher: ToolDispatcher,
        recorder: Optional[FlightRecorder] = None,
        *,
        max_tool_rounds: int = 6,
        history_limit: int = 50,
        tool_timeout_sec: float = 15.0,
    ) -> None:
        self.store = store
        self.reasoning = reasoning
        self.dispatcher = dispatcher
        self.recorder = recorder
        self.max_tool_rounds = max_tool_rounds
        self.history_limit = history_limit
        self.tool_timeout_sec = tool_timeout_sec

    def _stage(self, stage: str, **metadata: Any):
        if self.recorder is None:
            return nullcontext()
        return self.recorder.stage(stage, **metadata)

    async def handle_message(self, phone: str, text: str, session_id: Optional[str] = None) -> str:
        reply = await self.respond(phone, text, session_id)
        return reply.text

    async def respond(self, phone: str, text: str, session_id: Optional[str] = None) -> AgentReply:
        normalized = normalize_phone(phone)
        if not normalized:
            raise ValueError("phone must contain digits")
        session_id = session_id or normalized

        lead = await self.store.get_lead_by_phone(normalized)
        if lead is None:
            logger.info("agent.onboarding phone=%s", redact_phone(normalized))
            if self.recorder:
                self.recorder.log("CONTEXT", "unknown_lead_onboarding")
            return AgentReply(text=ONBOARDING_PROMPT, onboarding=True)

        with self._stage("CONTEXT", lead_id=lead.id):
            history = await self.store.get_context_by_session(session_id, limit=self.history_limit)
            messages: List[ChatMessage] = [
                ChatMessage(role="system", content=build_system_prompt(lead, self.dispatcher.tool_names)),
                *history_to_messages(history),
                ChatMessage(role="user", content=text),
            ]
        logger.info("agent.context lead_id=%s session_turns=%d", lead.id, len(history))

        reply = await self._run_loop(messages)

        with self._stage("PERSIST", lead_id=lead.id):
            await self.store.save_context(session_id, normalized, text, TurnRole.USER)
            await self.store.save_context(session_id, normalized, reply.text, TurnRole.ASSISTANT)
        return reply

    async def _run_loop(self, messages: List[ChatMessage]) -> AgentReply:
        tools = self.dispatcher.get_tool_schemas()
        rounds = 0
        while True:
            with self._stage("LLM", round=rounds):
                response = await self.reasoning.invoke(
                    ReasoningRequest(messages=messages, tools=tools, tool_choice="auto")
                )

            if not response.wants_tools:
                content = (response.content or "").strip()
                if not content:
                    logger.warning("agent.empty_reply rounds=%d", rounds)
                    return AgentReply(text=DEGRADED_REPLY, degraded=True, tool_rounds=rounds)
                return AgentReply(text=content, tool_rounds=rounds)

            if rounds >= self.max_tool_rounds:
                logger.warning("agent.round_limit rounds=%d", rounds)
                if self.recorder:
                    self.recorder.log("LLM", "tool_round_limit", rounds=rounds)
                return AgentReply(text=DEGRADED_REPLY, degraded=True, tool_rounds=rounds)

            rounds += 1
            calls = response.tool_calls
            logger.info("agent.round round=%d tools=%s", rounds, [call.function.name for call in calls])
            messages.append(ChatMessage(role="assistant", content="", tool_calls=calls))
            with self._stage("TOOL", round=rounds, calls=len(calls)):
                results = await asyncio.gather(*(self._execute(call) for call in calls))
            for call, result in zip(calls, results):
                messages.append(ChatMessage(role="tool", tool_call_id=call.id, content=result))

    async def _execute(self, call: ToolCall) -> str:
        name = call.function.name
        if not self.dispatcher.has_tool(name):
            logger.warning("agent.unknown_tool tool=%s", name)
            return UNKNOWN_TOOL_TEMPLATE.format(name=name)
        try:
            arguments = json.loads(call.function.arguments or "{}")
        except json.JSONDecodeError:
            arguments = None
        if not isinstance(arguments, dict):
            logger.warning("agent.invalid_tool_arguments tool=%s", name)
            return INVALID_ARGUMENTS_TEMPLATE.format(name=name)
        try:
            return await asyncio.wait_for(self.dispatcher.dispatch(name, arguments), timeout=self.tool_timeout_sec)
        except asyncio.TimeoutError:
            logger.warning("agent.tool_timeout tool=%s timeout_sec=%s", name, self.tool_timeout_sec)
            return TOOL_TIMEOUT_TEMPLATE.format(name=name)
