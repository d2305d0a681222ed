"""One-shot lead qualification through the Reasoning Port."""

from __future__ import annotations

import json
import logging
from typing import Optional

from pydantic import ValidationError

from realty_agent.logging.flight_recorder import FlightRecorder
from realty_agent.models.crm import LeadSource
from realty_agent.models.qualification import QUALIFICATION_SCHEMA, QualificationExtraction, QualificationResult
from realty_agent.models.reasoning import ChatMessage, ReasoningRequest
from realty_agent.services.reasoning import ReasoningError, ReasoningPort

logger = logging.getLogger(__name__)

QUALIFICATION_SYSTEM_PROMPT = (
    "Você é um Analista de CRM Imobiliário de elite. Sua tarefa é analisar a mensagem inicial de um novo lead "
    "e extrair o máximo de informações possível para qualificar o cliente.\n\n"
    "Com base na mensagem, preencha o JSON de saída com as seguintes regras:\n"
    "1. qualification: Avalie o quão pronto para a compra/aluguel o lead está.\n"
    "2. buyerProfile: Identifique o perfil principal do cliente.\n"
    "3. urgencyLevel: Estime a urgência do negócio.\n"
    "4. transactionInterest: Identifique se o interesse é em 'venda', 'locacao' ou 'ambos'.\n"
    "5. budgetMin/budgetMax: Estime o orçamento em Reais. Se a mensagem indicar valores em milhares "
    "(ex: 'R$ 500 mil'), converta para o valor total (ex: 500000). Se não houver informação, use 0.\n"
    "6. preferredNeighborhoods/preferredPropertyTypes: Extraia os bairros e tipos de imóveis mencionados.\n"
    "7. notes: Crie um resumo conciso da intenção do lead.\n\n"
    "Aja com precisão e use apenas os valores permitidos no schema."
)


def _user_message(message: str, source: LeadSource, interested_property_id: Optional[int]) -> str:
    text = f'Mensagem do Lead (Fonte: {source.value}): "{message}"'
    if interested_property_id:
        text += f"\nO lead demonstrou interesse inicial no imóvel ID: {interested_property_id}."
    return text


async def qualify_lead(
    reasoning: ReasoningPort,
    message: str,
    source: LeadSource = LeadSource.WHATSAPP,
    interested_property_id: Optional[int] = None,
    recorder: Optional[FlightRecorder] = None,
) -> QualificationResult:
    request = ReasoningRequest(
        messages=[
            ChatMessage(role="system", content=QUALIFICATION_SYSTEM_PROMPT),
            ChatMessage(role="user", content=_user_message(message, source, interested_property_id)),
        ],
        output_schema=QUALIFICATION_SCHEMA,
    )
    try:
        response = await reasoning.invoke(request)
        payload = json.loads(response.content or "")
        if not isinstance(payload, dict):
            raise ValueError("qualification output is not a JSON object")
        result = QualificationResult.from_extraction(QualificationExtraction.model_validate(payload))
    except (ReasoningError, ValueError, ArithmeticError, ValidationError) as exc:
        # json.JSONDecodeError is a ValueError, decimal.InvalidOperation an ArithmeticError
        logger.warning("qualification.failed %s", exc)
        if recorder:
            recorder.log("QUALIFY", "qualification_fallback", error=type(exc).__name__)
        return QualificationResult.fallback(message)

    if recorder:
        recorder.log(
            "QUALIFY",
            "lead_qualified",
            qualification=result.qualification.value,
            buyer_profile=result.buyer_profile.value,
            urgency_level=result.urgency_level.value,
        )
    return result
