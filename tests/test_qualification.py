import json

import pytest

from realty_agent.models.crm import (
    BuyerProfile,
    LeadSource,
    Qualification,
    TransactionInterest,
    UrgencyLevel,
)
from realty_agent.models.qualification import QualificationExtraction, QualificationResult
from realty_agent.services.qualification import qualify_lead
from realty_agent.services.reasoning import ReasoningError
from tests.conftest import ScriptedReasoning, text_reply


def _qualification_json(**overrides):
    payload = {
        "qualification": "quente",
        "buyerProfile": "primeira_casa",
        "urgencyLevel": "alta",
        "transactionInterest": "venda",
        "budgetMin": 400000,
        "budgetMax": "500 mil",
        "preferredNeighborhoods": "Asa Sul, Asa Norte",
        "preferredPropertyTypes": "apartamento",
        "notes": "Quer comprar o primeiro apartamento na Asa Sul.",
    }
    payload.update(overrides)
    return json.dumps(payload)


@pytest.mark.asyncio
async def test_qualification_success():
    reasoning = ScriptedReasoning(text_reply(_qualification_json()))

    result = await qualify_lead(reasoning, "Quero um apê de até 500 mil na Asa Sul", LeadSource.SITE, 12)

    assert result.automatic is True
    assert result.qualification == Qualification.HOT
    assert result.buyer_profile == BuyerProfile.FIRST_HOME
    assert result.urgency_level == UrgencyLevel.HIGH
    assert result.budget_min == 40_000_000
    assert result.budget_max == 50_000_000
    assert result.preferred_neighborhoods == "Asa Sul, Asa Norte"

    [request] = reasoning.requests
    assert request.output_schema["name"] == "LeadQualification"
    assert request.output_schema["strict"] is True
    assert request.tools is None
    user = request.messages[1].content
    assert "(Fonte: site)" in user
    assert "imóvel ID: 12" in user


@pytest.mark.asyncio
async def test_out_of_range_values_fall_back_to_defaults():
    reasoning = ScriptedReasoning(
        text_reply(
            _qualification_json(
                qualification="fervendo",
                buyerProfile=None,
                urgencyLevel="ALTA",
                transactionInterest="permuta",
                budgetMin=-10,
                budgetMax="não sei",
            )
        )
    )

    result = await qualify_lead(reasoning, "oi")

    assert result.qualification == Qualification.UNQUALIFIED
    assert result.buyer_profile == BuyerProfile.CURIOUS
    assert result.urgency_level == UrgencyLevel.HIGH
    assert result.transaction_interest == TransactionInterest.SALE
    assert result.budget_min == 0
    assert result.budget_max == 0


@pytest.mark.parametrize(
    "response",
    [
        text_reply("isso não é JSON"),
        text_reply("[1, 2, 3]"),
        text_reply(None),
        ReasoningError("provider down"),
    ],
)
@pytest.mark.asyncio
async def test_failures_yield_default_record(response):
    reasoning = ScriptedReasoning(response)

    result = await qualify_lead(reasoning, "Procuro casa no Lago Sul")

    assert result.automatic is False
    assert result.qualification == Qualification.UNQUALIFIED
    assert result.buyer_profile == BuyerProfile.CURIOUS
    assert result.urgency_level == UrgencyLevel.LOW
    assert result.transaction_interest == TransactionInterest.SALE
    assert result.budget_min == result.budget_max == 0
    assert result.notes == "Falha na qualificação automática. Mensagem original: Procuro casa no Lago Sul"


def test_inverted_budget_is_swapped():
    extraction = QualificationExtraction.model_validate({"budgetMin": "900 mil", "budgetMax": 600000})
    result = QualificationResult.from_extraction(extraction)
    assert (result.budget_min, result.budget_max) == (60_000_000, 90_000_000)


def test_list_values_are_joined():
    extraction = QualificationExtraction.model_validate({"preferredNeighborhoods": ["Asa Sul", " Sudoeste "]})
    assert extraction.preferred_neighborhoods == "Asa Sul, Sudoeste"


@pytest.mark.parametrize("budget", [float("nan"), float("inf")])
@pytest.mark.asyncio
async def test_non_finite_budget_is_read_as_unknown(budget):
    reasoning = ScriptedReasoning(text_reply(_qualification_json(budgetMax=budget)))

    result = await qualify_lead(reasoning, "oi")

    assert result.automatic is True
    assert result.qualification == Qualification.HOT
    assert result.budget_min == 40_000_000
    assert result.budget_max == 0
