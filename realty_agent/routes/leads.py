from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from realty_agent.models.crm import (
    BuyerProfile,
    LeadSource,
    LeadStage,
    Qualification,
    TransactionInterest,
    UrgencyLevel,
)
from realty_agent.services.intake import LeadIntake
from realty_agent.services.store import StoreError

logger = logging.getLogger(__name__)

router = APIRouter()


class InboundLead(BaseModel):
    phone: str = Field(..., min_length=1)
    message: str = ""
    name: Optional[str] = None
    email: Optional[str] = None
    source: LeadSource = LeadSource.WHATSAPP
    interested_property_id: Optional[int] = None


class LeadSummary(BaseModel):
    id: int
    name: str
    source: LeadSource
    stage: LeadStage
    qualification: Qualification
    buyer_profile: BuyerProfile
    urgency_level: UrgencyLevel
    transaction_interest: TransactionInterest
    budget_min: int
    budget_max: int
    preferred_neighborhoods: Optional[str] = None
    preferred_property_types: Optional[str] = None
    notes: Optional[str] = None
    version: int


@router.post("/inbound", response_model=LeadSummary)
async def inbound_lead(body: InboundLead, request: Request) -> LeadSummary:
    state = request.app.state
    intake = LeadIntake(state.store, state.reasoning, getattr(request.state, "flight_recorder", None))
    try:
        lead = await intake.register_inbound(
            body.phone,
            body.message,
            name=body.name,
            email=body.email,
            source=body.source,
            interested_property_id=body.interested_property_id,
        )
    except StoreError as exc:
        logger.exception("leads.intake_failed")
        raise HTTPException(status_code=503, detail="Could not register lead") from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return LeadSummary.model_validate(lead.model_dump())
