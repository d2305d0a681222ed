from __future__ import annotations

import logging
from typing import Iterable, List, Sequence

from realty_agent.models.crm import ConversationTurn, Lead, TurnRole
from realty_agent.models.reasoning import ChatMessage
from realty_agent.services.tool_dispatcher import SCHEDULE_VISIT, SEARCH_PROPERTIES
from realty_agent.utils.money import format_brl

logger = logging.getLogger(__name__)

NOT_INFORMED = "Não informado"


def _budget(cents: int) -> str:
    return format_brl(cents) if cents else NOT_INFORMED


def format_lead_profile(lead: Lead) -> str:
    lines = [
        f"O lead atual é {lead.name}.",
        f"Telefone: {lead.phone}.",
        f"Qualificação: {lead.qualification.value} (Perfil: {lead.buyer_profile.value}, "
        f"Urgência: {lead.urgency_level.value}).",
        f"Interesse: {lead.transaction_interest.value}.",
        f"Orçamento: {_budget(lead.budget_min)} a {_budget(lead.budget_max)}.",
        f"Bairros Preferidos: {lead.preferred_neighborhoods or NOT_INFORMED}.",
        f"Tipos Preferidos: {lead.preferred_property_types or NOT_INFORMED}.",
        f"Notas: {lead.notes or 'Sem notas adicionais'}.",
        "Use estas informações para personalizar a resposta.",
    ]
    return "\n".join(lines)


def build_system_prompt(lead: Lead, tool_names: Sequence[str]) -> str:
    rules = [
        "Mantenha a conversa natural e em português.",
        f"Use a ferramenta '{SEARCH_PROPERTIES}' sempre que o lead perguntar sobre imóveis, preços, tipos ou localização.",
        "Use as informações do perfil do lead (abaixo) para personalizar a resposta.",
        "Se a ferramenta retornar resultados, apresente-os de forma clara, incluindo o código de referência e o link (URL).",
        "Se a ferramenta não retornar resultados, sugira ajustar os filtros.",
    ]
    if SCHEDULE_VISIT in tool_names:
        rules.append(
            f"Quando o lead pedir para visitar um imóvel, use '{SCHEDULE_VISIT}' com o ID retornado pela busca "
            f"e o telefone do lead ({lead.phone})."
        )
    numbered = "\n".join(f"{index}. {rule}" for index, rule in enumerate(rules, start=1))
    return (
        "Você é um Agente de Atendimento Imobiliário (Corretor de IA) amigável e profissional.\n"
        "Seu objetivo é qualificar o lead, responder às suas perguntas e sugerir imóveis relevantes.\n"
        "Siga as regras:\n"
        f"{numbered}\n\n"
        "Perfil do Lead:\n"
        f"{format_lead_profile(lead)}"
    )


def history_to_messages(turns: Iterable[ConversationTurn]) -> List[ChatMessage]:
    """Replay stored turns; tool turns carry no call id and cannot be replayed."""
    messages: List[ChatMessage] = []
    for turn in turns:
        if turn.role == TurnRole.TOOL:
            logger.debug("context.skip_tool_turn turn_id=%s", turn.id)
            continue
        messages.append(ChatMessage(role=turn.role.value, content=turn.message))
    return messages
