from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from realty_agent.utils.phone import normalize_phone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadSource(str, Enum):
    SITE = "site"
    WHATSAPP = "whatsapp"
    INSTAGRAM = "instagram"
    FACEBOOK = "facebook"
    REFERRAL = "indicacao"
    FINANCING_SIMULATOR = "simulador_financiamento"
    VALUATION_CALCULATOR = "calculadora_avaliacao"
    OTHER = "outro"


class LeadStage(str, Enum):
    NEW = "novo"
    FIRST_CONTACT = "contato_inicial"
    QUALIFIED = "qualificado"
    VISIT_SCHEDULED = "visita_agendada"
    PROPOSAL = "proposta"
    NEGOTIATION = "negociacao"
    WON = "fechado_ganho"
    LOST = "fechado_perdido"


class Qualification(str, Enum):
    HOT = "quente"
    WARM = "morno"
    COLD = "frio"
    UNQUALIFIED = "nao_qualificado"


class BuyerProfile(str, Enum):
    INVESTOR = "investidor"
    FIRST_HOME = "primeira_casa"
    UPGRADE = "upgrade"
    CURIOUS = "curioso"
    UNDECIDED = "indeciso"
    OWNER = "proprietario"


class UrgencyLevel(str, Enum):
    LOW = "baixa"
    MEDIUM = "media"
    HIGH = "alta"
    URGENT = "urgente"


class TransactionInterest(str, Enum):
    SALE = "venda"
    RENTAL = "locacao"
    BOTH = "ambos"


class PropertyStatus(str, Enum):
    AVAILABLE = "disponivel"
    RESERVED = "reservado"
    SOLD = "vendido"
    RENTED = "alugado"
    INACTIVE = "inativo"


class InteractionType(str, Enum):
    VISIT_SCHEDULED = "visita_agendada"
    NOTE = "nota"
    MESSAGE = "mensagem"


class TurnRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class Lead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    phone: str
    name: str = "Lead WhatsApp"
    email: Optional[str] = None
    source: LeadSource = LeadSource.WHATSAPP
    stage: LeadStage = LeadStage.NEW
    qualification: Qualification = Qualification.UNQUALIFIED
    buyer_profile: BuyerProfile = BuyerProfile.CURIOUS
    urgency_level: UrgencyLevel = UrgencyLevel.LOW
    transaction_interest: TransactionInterest = TransactionInterest.SALE
    budget_min: int = 0
    budget_max: int = 0
    preferred_neighborhoods: Optional[str] = None
    preferred_property_types: Optional[str] = None
    notes: Optional[str] = None
    version: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("phone")
    @classmethod
    def _normalize_phone(cls, value: str) -> str:
        normalized = normalize_phone(value)
        if not normalized:
            raise ValueError("phone must contain digits")
        return normalized


# Fields the CRM may change through update_lead; identity and bookkeeping are excluded.
LEAD_MUTABLE_FIELDS = frozenset(
    {
        "name",
        "email",
        "source",
        "stage",
        "qualification",
        "buyer_profile",
        "urgency_level",
        "transaction_interest",
        "budget_min",
        "budget_max",
        "preferred_neighborhoods",
        "preferred_property_types",
        "notes",
    }
)


class Property(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    title: str
    slug: Optional[str] = None
    reference_code: str
    property_type: str
    transaction_type: TransactionInterest
    status: PropertyStatus = PropertyStatus.AVAILABLE
    neighborhood: str
    city: str = "Brasília"
    sale_price: Optional[int] = None
    rent_price: Optional[int] = None
    bedrooms: int = 0
    created_at: datetime = Field(default_factory=utcnow)

    def listing_price(self, transaction_type: TransactionInterest) -> Optional[int]:
        if transaction_type == TransactionInterest.SALE:
            return self.sale_price
        if transaction_type == TransactionInterest.RENTAL:
            return self.rent_price
        return self.sale_price if self.sale_price is not None else self.rent_price


class PropertyFilters(BaseModel):
    """Storage-level query. Prices are in centavos."""

    transaction_type: Optional[TransactionInterest] = None
    property_type: Optional[str] = None
    neighborhood: Optional[str] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    min_bedrooms: Optional[int] = None
    status: Optional[PropertyStatus] = None


def property_matches(prop: Property, filters: PropertyFilters) -> bool:
    if filters.status and prop.status != filters.status:
        return False
    if filters.transaction_type and not transaction_types_match(prop.transaction_type, filters.transaction_type):
        return False
    if filters.property_type and prop.property_type.lower() != filters.property_type.lower():
        return False
    if filters.neighborhood and filters.neighborhood.lower() not in prop.neighborhood.lower():
        return False
    if filters.min_bedrooms is not None and prop.bedrooms < filters.min_bedrooms:
        return False
    return price_in_range(prop, filters)


def transaction_types_match(offered: TransactionInterest, wanted: TransactionInterest) -> bool:
    if TransactionInterest.BOTH in (offered, wanted):
        return True
    return offered == wanted


def price_in_range(prop: Property, filters: PropertyFilters) -> bool:
    if filters.min_price is None and filters.max_price is None:
        return True
    price = prop.listing_price(filters.transaction_type or TransactionInterest.BOTH)
    if price is None:
        return False
    if filters.min_price is not None and price < filters.min_price:
        return False
    if filters.max_price is not None and price > filters.max_price:
        return False
    return True


class Interaction(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    lead_id: int
    type: InteractionType
    subject: str
    description: str
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class ConversationTurn(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: Optional[int] = None
    session_id: str
    phone: str
    role: TurnRole
    message: str
    created_at: datetime = Field(default_factory=utcnow)
