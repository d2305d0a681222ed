"""Reasoning Port: the single boundary to the language model."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx
from openai import AsyncOpenAI, OpenAIError

from realty_agent.config import Settings
from realty_agent.models.reasoning import ReasoningRequest, ReasoningResponse, ToolCall, ToolFunction

logger = logging.getLogger(__name__)


class ReasoningError(RuntimeError):
    """The model could not be reached or answered with something unusable."""


class ReasoningPort(ABC):
    @abstractmethod
    async def invoke(self, request: ReasoningRequest) -> ReasoningResponse: ...


class OpenAIReasoningPort(ReasoningPort):
    """Chat-completions backend; works with OpenAI and compatible hosts such as Groq."""

    def __init__(
        self,
        api_key: Optional[str],
        model: str = "gpt-4o-mini",
        base_url: Optional[str] = None,
        temperature: float = 0.3,
        timeout_sec: float = 30.0,
    ) -> None:
        self.model = model
        self.temperature = temperature
        self.timeout_sec = timeout_sec
        self._client: Optional[AsyncOpenAI] = None
        if api_key:
            self._client = AsyncOpenAI(
                api_key=api_key,
                base_url=base_url,
                timeout=httpx.Timeout(timeout_sec, connect=5.0),
                max_retries=1,
            )
        else:
            logger.warning("reasoning.missing_api_key model=%s", model)

    def _payload(self, request: ReasoningRequest) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": [message.to_payload() for message in request.messages],
            "temperature": self.temperature,
        }
        if request.tools:
            payload["tools"] = request.tools
            payload["tool_choice"] = request.tool_choice or "auto"
        if request.output_schema:
            payload["response_format"] = {"type": "json_schema", "json_schema": request.output_schema}
        return payload

    async def invoke(self, request: ReasoningRequest) -> ReasoningResponse:
        if self._client is None:
            raise ReasoningError("LLM API key is not configured")
        try:
            response = await asyncio.wait_for(
                self._client.chat.completions.create(**self._payload(request)),
                timeout=self.timeout_sec,
            )
        except asyncio.TimeoutError as exc:
            logger.warning("reasoning.timeout model=%s timeout_sec=%s", self.model, self.timeout_sec)
            raise ReasoningError(f"LLM call timed out after {self.timeout_sec}s") from exc
        except OpenAIError as exc:
            logger.warning("reasoning.llm_error %s", exc)
            raise ReasoningError(str(exc)) from exc

        if not response.choices:
            raise ReasoningError("LLM returned no choices")

        message = response.choices[0].message
        tool_calls: List[ToolCall] = []
        for call in message.tool_calls or []:
            function = getattr(call, "function", None)
            if function is None:
                continue
            tool_calls.append(
                ToolCall(
                    id=call.id,
                    function=ToolFunction(name=function.name, arguments=function.arguments or "{}"),
                )
            )
        usage = getattr(response, "usage", None)
        logger.info(
            "reasoning.response model=%s tool_calls=%d total_tokens=%s",
            self.model,
            len(tool_calls),
            getattr(usage, "total_tokens", None),
        )
        return ReasoningResponse(content=message.content, tool_calls=tool_calls)


def build_reasoning_port(settings: Settings) -> ReasoningPort:
    return OpenAIReasoningPort(
        api_key=settings.llm_api_key,
        model=settings.llm_model,
        base_url=settings.llm_base_url,
        temperature=settings.llm_temperature,
        timeout_sec=settings.reasoning_timeout_sec,
    )
