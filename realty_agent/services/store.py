"""Conversation Store: leads, properties, interactions and turn history.

``ConversationStore`` is the contract the agent consumes. Implementations are
constructed explicitly and driven through ``open()``/``health_check()``/
``close()`` by the application lifespan.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from realty_agent.models.crm import (
    LEAD_MUTABLE_FIELDS,
    ConversationTurn,
    Interaction,
    Lead,
    Property,
    PropertyFilters,
    TurnRole,
    property_matches,
    utcnow,
)
from realty_agent.utils.phone import normalize_phone, redact_phone

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """Storage backend failure."""


class LeadNotFoundError(StoreError):
    pass


class DuplicateLeadError(StoreError):
    """A lead with the same phone already exists."""


class StaleLeadError(StoreError):
    """The lead changed since it was read (compare-and-set failed)."""

    def __init__(self, lead_id: int, expected_version: int, actual_version: Optional[int]) -> None:
        super().__init__(
            f"Lead {lead_id} is at version {actual_version}, expected {expected_version}"
        )
        self.lead_id = lead_id
        self.expected_version = expected_version
        self.actual_version = actual_version


def clean_lead_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    unknown = set(fields) - LEAD_MUTABLE_FIELDS
    if unknown:
        raise ValueError(f"Lead fields cannot be updated: {sorted(unknown)}")
    return dict(fields)


class ConversationStore(ABC):
    async def open(self) -> None:
        return None

    async def close(self) -> None:
        return None

    @abstractmethod
    async def health_check(self) -> bool: ...

    # Leads ---------------------------------------------------------------
    @abstractmethod
    async def get_lead_by_phone(self, phone: str) -> Optional[Lead]: ...

    @abstractmethod
    async def get_lead_by_id(self, lead_id: int) -> Optional[Lead]: ...

    @abstractmethod
    async def create_lead(self, lead: Lead) -> Lead: ...

    @abstractmethod
    async def update_lead(
        self,
        lead_id: int,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Lead:
        """Apply ``fields`` and bump the version.

        With ``expected_version`` the write only happens if the stored version
        still matches, otherwise ``StaleLeadError`` is raised.
        """

    # Interactions ----------------------------------------------------------
    @abstractmethod
    async def create_interaction(self, interaction: Interaction) -> Interaction: ...

    @abstractmethod
    async def list_interactions(self, lead_id: int) -> List[Interaction]: ...

    # Conversation context --------------------------------------------------
    @abstractmethod
    async def get_context_by_session(self, session_id: str, limit: int = 50) -> List[ConversationTurn]:
        """Last ``limit`` turns of the session, oldest first."""

    @abstractmethod
    async def save_context(self, session_id: str, phone: str, message: str, role: TurnRole) -> ConversationTurn: ...

    # Properties ----------------------------------------------------------
    @abstractmethod
    async def get_property_by_id(self, property_id: int) -> Optional[Property]: ...

    @abstractmethod
    async def list_properties(self, filters: PropertyFilters) -> List[Property]:
        """Matching properties, newest first."""

    @abstractmethod
    async def create_property(self, prop: Property) -> Property: ...


class InMemoryConversationStore(ConversationStore):
    """Process-local store used for demos and tests."""

    def __init__(self) -> None:
        self._leads: Dict[int, Lead] = {}
        self._properties: Dict[int, Property] = {}
        self._interactions: List[Interaction] = []
        self._turns: Dict[str, List[ConversationTurn]] = {}
        self._ids = {name: itertools.count(1) for name in ("lead", "property", "interaction", "turn")}
        self._lead_lock = asyncio.Lock()
        self._open = False

    async def open(self) -> None:
        self._open = True

    async def close(self) -> None:
        self._open = False

    async def health_check(self) -> bool:
        return self._open

    async def get_lead_by_phone(self, phone: str) -> Optional[Lead]:
        normalized = normalize_phone(phone)
        if not normalized:
            return None
        for lead in self._leads.values():
            if lead.phone == normalized:
                return lead.model_copy()
        return None

    async def get_lead_by_id(self, lead_id: int) -> Optional[Lead]:
        lead = self._leads.get(lead_id)
        return lead.model_copy() if lead else None

    async def create_lead(self, lead: Lead) -> Lead:
        async with self._lead_lock:
            if any(existing.phone == lead.phone for existing in self._leads.values()):
                raise DuplicateLeadError(f"Lead with phone {redact_phone(lead.phone)} already exists")
            stored = lead.model_copy(update={"id": next(self._ids["lead"]), "version": 0})
            self._leads[stored.id] = stored
        logger.info("store.lead_created lead_id=%s", stored.id)
        return stored.model_copy()

    async def update_lead(
        self,
        lead_id: int,
        fields: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> Lead:
        changes = clean_lead_fields(fields)
        async with self._lead_lock:
            current = self._leads.get(lead_id)
            if current is None:
                raise LeadNotFoundError(f"Lead {lead_id} not found")
            if expected_version is not None and current.version != expected_version:
                raise StaleLeadError(lead_id, expected_version, current.version)
            # model_validate re-runs field validation on the merged record
            merged = Lead.model_validate(
                {**current.model_dump(), **changes, "version": current.version + 1, "updated_at": utcnow()}
            )
            self._leads[lead_id] = merged
        logger.info("store.lead_updated lead_id=%s fields=%s version=%s", lead_id, sorted(changes), merged.version)
        return merged.model_copy()

    async def create_interaction(self, interaction: Interaction) -> Interaction:
        stored = interaction.model_copy(update={"id": next(self._ids["interaction"])})
        self._interactions.append(stored)
        return stored.model_copy()

    async def list_interactions(self, lead_id: int) -> List[Interaction]:
        matches = [item for item in self._interactions if item.lead_id == lead_id]
        return [item.model_copy() for item in reversed(matches)]

    async def get_context_by_session(self, session_id: str, limit: int = 50) -> List[ConversationTurn]:
        if limit <= 0:
            return []
        turns = self._turns.get(session_id, [])
        return [turn.model_copy() for turn in turns[-limit:]]

    async def save_context(self, session_id: str, phone: str, message: str, role: TurnRole) -> ConversationTurn:
        turn = ConversationTurn(
            id=next(self._ids["turn"]),
            session_id=session_id,
            phone=normalize_phone(phone),
            role=TurnRole(role),
            message=message,
        )
        self._turns.setdefault(session_id, []).append(turn)
        return turn.model_copy()

    async def get_property_by_id(self, property_id: int) -> Optional[Property]:
        prop = self._properties.get(property_id)
        return prop.model_copy() if prop else None

    async def list_properties(self, filters: PropertyFilters) -> List[Property]:
        matches = [prop for prop in self._properties.values() if property_matches(prop, filters)]
        matches.sort(key=lambda prop: (prop.created_at, prop.id or 0), reverse=True)
        return [prop.model_copy() for prop in matches]

    async def create_property(self, prop: Property) -> Property:
        stored = prop.model_copy(update={"id": next(self._ids["property"])})
        self._properties[stored.id] = stored
        return stored.model_copy()
