from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError

from realty_agent.logging.flight_recorder import FlightRecorder
from realty_agent.models.tooling import PropertySearchArgs, ScheduleVisitArgs
from realty_agent.services import tools
from realty_agent.services.store import ConversationStore

logger = logging.getLogger(__name__)

Executor = Callable[[Dict[str, Any]], Awaitable[str]]

SEARCH_PROPERTIES = "searchProperties"
SCHEDULE_VISIT = "scheduleVisit"


class UnknownToolError(ValueError):
    pass


@dataclass(frozen=True)
class ToolSpec:
    definition: Dict[str, Any]
    executor: Executor

    @property
    def name(self) -> str:
        return self.definition["function"]["name"]


class ToolDispatcher:
    """Name -> (schema, async executor). Executors always answer with a string."""

    def __init__(
        self,
        store: ConversationStore,
        recorder: Optional[FlightRecorder] = None,
        include_scheduling: bool = False,
    ) -> None:
        self.store = store
        self.recorder = recorder
        self.registry: Dict[str, ToolSpec] = {
            SEARCH_PROPERTIES: ToolSpec(_SEARCH_PROPERTIES_SCHEMA, self._wrap(SEARCH_PROPERTIES, self._search_properties)),
        }
        if include_scheduling:
            self.registry[SCHEDULE_VISIT] = ToolSpec(
                _SCHEDULE_VISIT_SCHEMA, self._wrap(SCHEDULE_VISIT, self._schedule_visit)
            )

    def _wrap(self, name: str, func: Executor) -> Executor:
        async def wrapped(args: Dict[str, Any]) -> str:
            logger.info("tool.call tool=%s", name)
            try:
                return await func(args)
            except ValidationError as exc:
                logger.info("tool.invalid_arguments tool=%s errors=%d", name, exc.error_count())
                return f"Erro: argumentos inválidos para {name}: {_describe(exc)}"
            except Exception:  # noqa: BLE001
                logger.exception("tool.execution_error tool=%s", name)
                return f"Erro: falha inesperada ao executar {name}."

        return wrapped

    def has_tool(self, tool_name: str) -> bool:
        return tool_name in self.registry

    @property
    def tool_names(self) -> List[str]:
        return list(self.registry)

    async def dispatch(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        if tool_name not in self.registry:
            raise UnknownToolError(f"Unknown tool: {tool_name}")
        return await self.registry[tool_name].executor(arguments)

    def get_tool_schemas(self) -> List[Dict[str, Any]]:
        return [spec.definition for spec in self.registry.values()]

    async def _search_properties(self, args: Dict[str, Any]) -> str:
        query = PropertySearchArgs.model_validate(args)
        with _stage(self.recorder, "SEARCH"):
            return await tools.search_properties(self.store, query, self.recorder)

    async def _schedule_visit(self, args: Dict[str, Any]) -> str:
        request = ScheduleVisitArgs.model_validate(args)
        with _stage(self.recorder, "SCHEDULE", property_id=request.property_id):
            return await tools.schedule_visit(self.store, request, self.recorder)


def _describe(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ())) or "args"
        parts.append(f"{location}: {error.get('msg')}")
    return "; ".join(parts)


def _stage(recorder: Optional[FlightRecorder], stage: str, **metadata: Any):
    if recorder is None:
        return nullcontext()
    return recorder.stage(stage, **metadata)


_SEARCH_PROPERTIES_SCHEMA: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SEARCH_PROPERTIES,
        "description": (
            "Busca imóveis disponíveis no banco de dados com base nos critérios do cliente "
            "(orçamento, tipo, localização, etc.). Use esta ferramenta para responder a perguntas "
            "sobre imóveis específicos ou para sugerir opções."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "transactionType": {
                    "type": "string",
                    "description": "Tipo de transação: 'venda', 'locacao' ou 'ambos'.",
                    "enum": ["venda", "locacao", "ambos"],
                },
                "propertyType": {
                    "type": "string",
                    "description": "Tipo de imóvel: 'casa', 'apartamento', 'cobertura', 'terreno', 'comercial', 'rural', 'lancamento'.",
                },
                "neighborhood": {"type": "string", "description": "Bairro ou região de interesse."},
                "minPrice": {"type": "number", "description": "Preço mínimo (em Reais)."},
                "maxPrice": {"type": "number", "description": "Preço máximo (em Reais)."},
                "bedrooms": {"type": "number", "description": "Número mínimo de quartos."},
            },
            "required": ["transactionType"],
        },
    },
}

_SCHEDULE_VISIT_SCHEMA: Dict[str, Any] = {
    "type": "function",
    "function": {
        "name": SCHEDULE_VISIT,
        "description": (
            "Agenda uma visita a um imóvel para um lead. Use esta função quando o cliente "
            "solicitar explicitamente agendar uma visita."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                "propertyId": {
                    "type": "number",
                    "description": "O ID do imóvel que o cliente deseja visitar. Deve ser obtido de uma busca anterior (searchProperties).",
                },
                "date": {
                    "type": "string",
                    "description": "A data e hora sugerida para a visita no formato 'YYYY-MM-DD HH:MM'.",
                },
                "leadPhone": {
                    "type": "string",
                    "description": "O número de telefone do lead (cliente) que está solicitando o agendamento.",
                },
            },
            "required": ["propertyId", "date", "leadPhone"],
        },
    },
}
