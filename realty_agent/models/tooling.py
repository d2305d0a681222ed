from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from realty_agent.models.crm import TransactionInterest


class PropertySearchArgs(BaseModel):
    """Arguments of ``searchProperties`` as the LLM sends them (prices in reais)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    transaction_type: TransactionInterest
    property_type: Optional[str] = None
    neighborhood: Optional[str] = None
    min_price: Optional[float] = Field(default=None, ge=0)
    max_price: Optional[float] = Field(default=None, ge=0)
    bedrooms: Optional[int] = Field(default=None, ge=0)


class PropertyHit(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: int
    title: str
    reference_code: str
    property_type: str
    transaction_type: TransactionInterest
    neighborhood: str
    city: str
    price: str
    bedrooms: int
    url: str


class PropertySearchResult(BaseModel):
    count: int
    results: List[PropertyHit]
    message: str


class ScheduleVisitArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    property_id: int
    date: str = Field(..., min_length=1)
    lead_phone: str = Field(..., min_length=1)
