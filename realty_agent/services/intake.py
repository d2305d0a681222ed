from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from realty_agent.logging.flight_recorder import FlightRecorder
from realty_agent.models.crm import Lead, LeadSource, LeadStage
from realty_agent.models.qualification import QualificationResult
from realty_agent.services.qualification import qualify_lead
from realty_agent.services.reasoning import ReasoningPort
from realty_agent.services.store import ConversationStore, DuplicateLeadError, StaleLeadError
from realty_agent.utils.phone import normalize_phone

logger = logging.getLogger(__name__)

_QUALIFICATION_FIELDS = (
    "qualification",
    "buyer_profile",
    "urgency_level",
    "transaction_interest",
    "budget_min",
    "budget_max",
    "preferred_neighborhoods",
    "preferred_property_types",
    "notes",
)


class LeadIntake:
    """Creates or enriches a lead from an inbound message (WhatsApp, site forms, calculators)."""

    def __init__(
        self,
        store: ConversationStore,
        reasoning: ReasoningPort,
        recorder: Optional[FlightRecorder] = None,
        max_attempts: int = 3,
    ) -> None:
        self.store = store
        self.reasoning = reasoning
        self.recorder = recorder
        self.max_attempts = max_attempts

    async def register_inbound(
        self,
        phone: str,
        message: str,
        name: Optional[str] = None,
        email: Optional[str] = None,
        source: LeadSource = LeadSource.WHATSAPP,
        interested_property_id: Optional[int] = None,
    ) -> Lead:
        if not normalize_phone(phone):
            raise ValueError("phone must contain digits")

        if self.recorder:
            with self.recorder.stage("QUALIFY", source=source.value):
                result = await qualify_lead(self.reasoning, message, source, interested_property_id, self.recorder)
        else:
            result = await qualify_lead(self.reasoning, message, source, interested_property_id)

        provided: Dict[str, Any] = {"name": name, "email": email}
        if result.automatic:
            provided.update({key: value for key, value in result.lead_fields().items() if key in _QUALIFICATION_FIELDS})

        attempt = 0
        while True:
            attempt += 1
            existing = await self.store.get_lead_by_phone(phone)
            if existing is None:
                try:
                    return await self._create(phone, message, source, provided, result)
                except DuplicateLeadError:
                    # a concurrent message created the lead first; merge into it
                    logger.info("intake.duplicate_lead attempt=%d", attempt)
                    if attempt >= self.max_attempts:
                        raise
                    continue
            changes = _merge(existing, provided)
            if not changes:
                logger.info("intake.lead_unchanged lead_id=%s", existing.id)
                return existing
            try:
                updated = await self.store.update_lead(existing.id, changes, expected_version=existing.version)
            except StaleLeadError as exc:
                logger.info(
                    "intake.stale_lead lead_id=%s attempt=%d actual_version=%s",
                    existing.id,
                    attempt,
                    exc.actual_version,
                )
                if attempt >= self.max_attempts:
                    raise
                continue
            if self.recorder:
                self.recorder.log("INTAKE", "lead_merged", lead_id=updated.id, fields=sorted(changes))
            return updated

    async def _create(
        self,
        phone: str,
        message: str,
        source: LeadSource,
        provided: Dict[str, Any],
        result: QualificationResult,
    ) -> Lead:
        fields = {key: value for key, value in provided.items() if value not in (None, "")}
        fields.setdefault("notes", result.notes or message)
        lead = Lead(phone=phone, source=source, stage=LeadStage.NEW, **fields)
        created = await self.store.create_lead(lead)
        if self.recorder:
            self.recorder.log("INTAKE", "lead_created", lead_id=created.id, source=source.value)
        return created


def _merge(existing: Lead, provided: Dict[str, Any]) -> Dict[str, Any]:
    """Non-empty provided values replace stored ones; empty values keep them."""
    changes: Dict[str, Any] = {}
    for key, value in provided.items():
        if value in (None, "", 0):
            continue
        if getattr(existing, key) != value:
            changes[key] = value
    return changes
