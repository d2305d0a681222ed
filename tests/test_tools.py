import json

import pytest

from realty_agent.logging.flight_recorder import FlightRecorder
from realty_agent.models.crm import InteractionType, LeadStage, PropertyStatus, TransactionInterest
from realty_agent.models.tooling import PropertySearchArgs, ScheduleVisitArgs
from realty_agent.services import tools
from realty_agent.services.store import InMemoryConversationStore, StoreError
from tests.conftest import RecordingStore, add_lead, make_property


class BrokenStore(InMemoryConversationStore):
    async def list_properties(self, filters):
        raise StoreError("database is down")

    async def get_lead_by_phone(self, phone):
        raise StoreError("database is down")


@pytest.mark.asyncio
async def test_search_without_matches(store):
    args = PropertySearchArgs(transaction_type=TransactionInterest.SALE, neighborhood="Asa Sul")
    assert await tools.search_properties(store, args) == tools.NO_RESULTS_MESSAGE


@pytest.mark.asyncio
async def test_search_returns_three_newest(store):
    for index in range(1, 6):
        await store.create_property(make_property(index))
    args = PropertySearchArgs(transaction_type=TransactionInterest.SALE)

    payload = json.loads(await tools.search_properties(store, args))

    assert payload["count"] == 5
    assert [item["referenceCode"] for item in payload["results"]] == ["REF-005", "REF-004", "REF-003"]
    assert payload["message"] == "Encontrados 5 imóveis. Exibindo os 3 primeiros."
    first = payload["results"][0]
    assert first["price"] == "R$ 700.000,00"
    assert first["url"] == "/imovel/imovel-5"
    assert first["transactionType"] == "venda"


@pytest.mark.asyncio
async def test_asa_sul_budget_query_uses_centavos():
    store = RecordingStore()
    await store.create_property(make_property(1, sale_price=75_000_000))
    await store.create_property(make_property(2, sale_price=120_000_000))
    args = PropertySearchArgs.model_validate(
        {"transactionType": "venda", "neighborhood": "Asa Sul", "maxPrice": 800000}
    )

    payload = json.loads(await tools.search_properties(store, args))

    [filters] = store.filters
    assert filters.max_price == 80_000_000
    assert filters.min_price is None
    assert filters.neighborhood == "Asa Sul"
    assert filters.status == PropertyStatus.AVAILABLE
    assert [item["referenceCode"] for item in payload["results"]] == ["REF-001"]


@pytest.mark.asyncio
async def test_zero_price_bounds_are_ignored():
    store = RecordingStore()
    args = PropertySearchArgs.model_validate({"transactionType": "ambos", "minPrice": 0, "maxPrice": 0, "bedrooms": 0})
    await tools.search_properties(store, args)
    [filters] = store.filters
    assert filters.min_price is None and filters.max_price is None and filters.min_bedrooms is None


@pytest.mark.asyncio
async def test_search_storage_failure_is_a_string():
    args = PropertySearchArgs(transaction_type=TransactionInterest.SALE)
    assert await tools.search_properties(BrokenStore(), args) == tools.SEARCH_ERROR_MESSAGE


def test_display_price_variants():
    rent_only = make_property(1, transaction_type=TransactionInterest.RENTAL, sale_price=None, rent_price=350_000)
    both = make_property(2, transaction_type=TransactionInterest.BOTH, sale_price=120_000_000, rent_price=500_000)
    unpriced = make_property(3, sale_price=None)

    assert tools.display_price(rent_only, TransactionInterest.RENTAL) == "R$ 3.500,00/mês"
    assert tools.display_price(both, TransactionInterest.SALE) == "R$ 1.200.000,00"
    assert tools.display_price(both, TransactionInterest.RENTAL) == "R$ 5.000,00/mês"
    assert tools.display_price(unpriced, TransactionInterest.SALE) == "Preço sob consulta"


@pytest.mark.asyncio
async def test_property_url_falls_back_to_id(store):
    prop = await store.create_property(make_property(1, slug=None))
    assert tools.property_url(prop) == f"/imovel/{prop.id}"


@pytest.mark.asyncio
async def test_schedule_visit_without_lead_writes_nothing(store):
    prop = await store.create_property(make_property(1))
    args = ScheduleVisitArgs(property_id=prop.id, date="2025-10-20 14:00", lead_phone="61900000000")

    assert await tools.schedule_visit(store, args) == tools.LEAD_NOT_FOUND_MESSAGE
    assert store._interactions == []


@pytest.mark.asyncio
async def test_schedule_visit_unknown_property(store):
    lead = await add_lead(store)
    args = ScheduleVisitArgs(property_id=42, date="amanhã", lead_phone=lead.phone)

    result = await tools.schedule_visit(store, args)

    assert result == "Erro: Imóvel com ID 42 não encontrado. Por favor, verifique o ID."
    assert await store.list_interactions(lead.id) == []


@pytest.mark.asyncio
async def test_schedule_visit_records_interaction_and_stage(store):
    lead = await add_lead(store)
    prop = await store.create_property(make_property(1))
    recorder = FlightRecorder()
    args = ScheduleVisitArgs.model_validate(
        {"propertyId": prop.id, "date": "2025-10-20 14:00", "leadPhone": "(61) 99999-0000"}
    )

    result = await tools.schedule_visit(store, args, recorder)

    assert result.startswith('Visita agendada com sucesso para o imóvel "Imóvel 1" em 2025-10-20 14:00.')
    [interaction] = await store.list_interactions(lead.id)
    assert interaction.type == InteractionType.VISIT_SCHEDULED
    assert interaction.metadata["propertyId"] == prop.id
    assert interaction.metadata["date"] == "2025-10-20 14:00"
    assert interaction.metadata["scheduledFor"] == "2025-10-20T14:00:00"
    assert (await store.get_lead_by_id(lead.id)).stage == LeadStage.VISIT_SCHEDULED
    assert "visit_scheduled" in recorder.messages("SCHEDULE")


@pytest.mark.asyncio
async def test_schedule_visit_keeps_unparsed_date(store):
    lead = await add_lead(store)
    prop = await store.create_property(make_property(1))
    args = ScheduleVisitArgs(property_id=prop.id, date="sábado de manhã", lead_phone=lead.phone)

    await tools.schedule_visit(store, args)

    [interaction] = await store.list_interactions(lead.id)
    assert interaction.metadata["date"] == "sábado de manhã"
    assert "scheduledFor" not in interaction.metadata


@pytest.mark.asyncio
async def test_schedule_visit_storage_failure_is_a_string():
    args = ScheduleVisitArgs(property_id=1, date="amanhã", lead_phone="61999990000")
    assert await tools.schedule_visit(BrokenStore(), args) == tools.SCHEDULE_ERROR_MESSAGE
