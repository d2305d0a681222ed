"""Shared test fixtures and helpers."""

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from realty_agent.models.crm import Lead, Property, PropertyFilters, PropertyStatus, TransactionInterest
from realty_agent.models.reasoning import ReasoningRequest, ReasoningResponse, ToolCall, ToolFunction
from realty_agent.services.reasoning import ReasoningPort
from realty_agent.services.store import InMemoryConversationStore

Scripted = Union[ReasoningResponse, Exception, Callable[[ReasoningRequest], ReasoningResponse]]


class ScriptedReasoning(ReasoningPort):
    """Reasoning Port that replays canned responses and records every request."""

    def __init__(self, *responses: Scripted) -> None:
        self.responses: List[Scripted] = list(responses)
        self.requests: List[ReasoningRequest] = []

    async def invoke(self, request: ReasoningRequest) -> ReasoningResponse:
        self.requests.append(request.model_copy(deep=True))
        if not self.responses:
            raise AssertionError("ScriptedReasoning ran out of responses")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(request)
        return item


class EndlessToolReasoning(ReasoningPort):
    """Asks for a tool on every call."""

    def __init__(self, tool_name: str = "searchProperties") -> None:
        self.tool_name = tool_name
        self.calls = 0

    async def invoke(self, request: ReasoningRequest) -> ReasoningResponse:
        self.calls += 1
        return ReasoningResponse(
            tool_calls=[tool_call(self.tool_name, {"transactionType": "venda"}, call_id=f"call_{self.calls}")]
        )


def tool_call(name: str, arguments: Union[Dict[str, Any], str], call_id: str = "call_1") -> ToolCall:
    raw = arguments if isinstance(arguments, str) else json.dumps(arguments)
    return ToolCall(id=call_id, function=ToolFunction(name=name, arguments=raw))


def text_reply(content: Optional[str]) -> ReasoningResponse:
    return ReasoningResponse(content=content)


def tools_reply(*calls: ToolCall) -> ReasoningResponse:
    return ReasoningResponse(tool_calls=list(calls))


_BASE_TIME = datetime(2025, 9, 1, 12, 0, tzinfo=timezone.utc)


def make_property(
    index: int,
    neighborhood: str = "Asa Sul",
    transaction_type: TransactionInterest = TransactionInterest.SALE,
    sale_price: Optional[int] = 70_000_000,
    rent_price: Optional[int] = None,
    bedrooms: int = 3,
    status: PropertyStatus = PropertyStatus.AVAILABLE,
    slug: Optional[str] = "auto",
    property_type: str = "apartamento",
) -> Property:
    return Property(
        title=f"Imóvel {index}",
        slug=f"imovel-{index}" if slug == "auto" else slug,
        reference_code=f"REF-{index:03d}",
        property_type=property_type,
        transaction_type=transaction_type,
        status=status,
        neighborhood=neighborhood,
        sale_price=sale_price,
        rent_price=rent_price,
        bedrooms=bedrooms,
        created_at=_BASE_TIME + timedelta(days=index),
    )


class RecordingStore(InMemoryConversationStore):
    """Keeps every property query it receives."""

    def __init__(self) -> None:
        super().__init__()
        self.filters: List[PropertyFilters] = []

    async def list_properties(self, filters: PropertyFilters) -> List[Property]:
        self.filters.append(filters)
        return await super().list_properties(filters)


@pytest.fixture
def store():
    return InMemoryConversationStore()


@pytest.fixture
def lead_phone():
    return "(61) 99999-0000"


async def add_lead(store, phone: str = "61999990000", **fields: Any) -> Lead:
    return await store.create_lead(Lead(phone=phone, **fields))
