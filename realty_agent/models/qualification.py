from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Dict, Type, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from realty_agent.models.crm import BuyerProfile, Qualification, TransactionInterest, UrgencyLevel
from realty_agent.utils.money import parse_major_amount, to_minor_units

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=Enum)

DEFAULT_QUALIFICATION = Qualification.UNQUALIFIED
DEFAULT_BUYER_PROFILE = BuyerProfile.CURIOUS
DEFAULT_URGENCY = UrgencyLevel.LOW
DEFAULT_TRANSACTION_INTEREST = TransactionInterest.SALE


def coerce_enum(enum_cls: Type[E], value: Any, default: E) -> E:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        candidate = value.strip().lower()
        for member in enum_cls:
            if member.value == candidate:
                return member
    logger.info("qualification.enum_default field=%s value=%r default=%s", enum_cls.__name__, value, default.value)
    return default


class QualificationExtraction(BaseModel):
    """The LLM's JSON answer, parsed defensively.

    Values outside the closed enum sets fall back to the documented defaults
    and budgets that cannot be read become zero.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    qualification: Qualification = DEFAULT_QUALIFICATION
    buyer_profile: BuyerProfile = DEFAULT_BUYER_PROFILE
    urgency_level: UrgencyLevel = DEFAULT_URGENCY
    transaction_interest: TransactionInterest = DEFAULT_TRANSACTION_INTEREST
    budget_min: float = 0
    budget_max: float = 0
    preferred_neighborhoods: str = ""
    preferred_property_types: str = ""
    notes: str = ""

    @field_validator("qualification", mode="before")
    @classmethod
    def _qualification(cls, value: Any) -> Qualification:
        return coerce_enum(Qualification, value, DEFAULT_QUALIFICATION)

    @field_validator("buyer_profile", mode="before")
    @classmethod
    def _buyer_profile(cls, value: Any) -> BuyerProfile:
        return coerce_enum(BuyerProfile, value, DEFAULT_BUYER_PROFILE)

    @field_validator("urgency_level", mode="before")
    @classmethod
    def _urgency(cls, value: Any) -> UrgencyLevel:
        return coerce_enum(UrgencyLevel, value, DEFAULT_URGENCY)

    @field_validator("transaction_interest", mode="before")
    @classmethod
    def _transaction(cls, value: Any) -> TransactionInterest:
        return coerce_enum(TransactionInterest, value, DEFAULT_TRANSACTION_INTEREST)

    @field_validator("budget_min", "budget_max", mode="before")
    @classmethod
    def _budget(cls, value: Any) -> float:
        amount = parse_major_amount(value)
        if amount is None or amount < 0:
            return 0
        return float(amount)

    @field_validator("preferred_neighborhoods", "preferred_property_types", "notes", mode="before")
    @classmethod
    def _text(cls, value: Any) -> str:
        if value is None:
            return ""
        if isinstance(value, (list, tuple)):
            return ", ".join(str(item).strip() for item in value if str(item).strip())
        return str(value).strip()


class QualificationResult(BaseModel):
    """Qualification ready for storage: budgets in centavos."""

    qualification: Qualification
    buyer_profile: BuyerProfile
    urgency_level: UrgencyLevel
    transaction_interest: TransactionInterest
    budget_min: int
    budget_max: int
    preferred_neighborhoods: str
    preferred_property_types: str
    notes: str
    automatic: bool = True

    @classmethod
    def from_extraction(cls, extraction: QualificationExtraction) -> "QualificationResult":
        budget_min = to_minor_units(extraction.budget_min) or 0
        budget_max = to_minor_units(extraction.budget_max) or 0
        if budget_max and budget_min > budget_max:
            budget_min, budget_max = budget_max, budget_min
        return cls(
            qualification=extraction.qualification,
            buyer_profile=extraction.buyer_profile,
            urgency_level=extraction.urgency_level,
            transaction_interest=extraction.transaction_interest,
            budget_min=budget_min,
            budget_max=budget_max,
            preferred_neighborhoods=extraction.preferred_neighborhoods,
            preferred_property_types=extraction.preferred_property_types,
            notes=extraction.notes,
        )

    @classmethod
    def fallback(cls, message: str) -> "QualificationResult":
        return cls(
            qualification=DEFAULT_QUALIFICATION,
            buyer_profile=DEFAULT_BUYER_PROFILE,
            urgency_level=DEFAULT_URGENCY,
            transaction_interest=DEFAULT_TRANSACTION_INTEREST,
            budget_min=0,
            budget_max=0,
            preferred_neighborhoods="",
            preferred_property_types="",
            notes=f"Falha na qualificação automática. Mensagem original: {message}",
            automatic=False,
        )

    def lead_fields(self) -> Dict[str, Any]:
        return self.model_dump(exclude={"automatic"})


QUALIFICATION_SCHEMA: Dict[str, Any] = {
    "name": "LeadQualification",
    "strict": True,
    "schema": {
        "type": "object",
        "additionalProperties": False,
        "properties": {
            "qualification": {
                "type": "string",
                "description": "Classificação do lead: 'quente' (pronto para comprar/alugar), 'morno' (interessado, mas não urgente), 'frio' (apenas pesquisando) ou 'nao_qualificado'.",
                "enum": [item.value for item in Qualification],
            },
            "buyerProfile": {
                "type": "string",
                "description": "Perfil do comprador.",
                "enum": [item.value for item in BuyerProfile],
            },
            "urgencyLevel": {
                "type": "string",
                "description": "Nível de urgência.",
                "enum": [item.value for item in UrgencyLevel],
            },
            "transactionInterest": {
                "type": "string",
                "description": "Tipo de transação de interesse.",
                "enum": [item.value for item in TransactionInterest],
            },
            "budgetMin": {
                "type": "number",
                "description": "Orçamento mínimo estimado (em reais). Se não for possível estimar, use 0.",
            },
            "budgetMax": {
                "type": "number",
                "description": "Orçamento máximo estimado (em reais). Se não for possível estimar, use 0.",
            },
            "preferredNeighborhoods": {
                "type": "string",
                "description": "Bairros preferidos, separados por vírgula. Se não houver, use string vazia.",
            },
            "preferredPropertyTypes": {
                "type": "string",
                "description": "Tipos de imóveis preferidos (ex: 'casa', 'apartamento'), separados por vírgula. Se não houver, use string vazia.",
            },
            "notes": {
                "type": "string",
                "description": "Resumo da intenção do lead em uma frase.",
            },
        },
        "required": [
            "qualification",
            "buyerProfile",
            "urgencyLevel",
            "transactionInterest",
            "budgetMin",
            "budgetMax",
            "preferredNeighborhoods",
            "preferredPropertyTypes",
            "notes",
        ],
    },
}

