import pytest

from realty_agent.models.crm import (
    Interaction,
    InteractionType,
    LeadStage,
    PropertyFilters,
    PropertyStatus,
    Qualification,
    TransactionInterest,
    TurnRole,
)
from realty_agent.services.sql_store import SqlConversationStore, build_store
from realty_agent.services.store import DuplicateLeadError, InMemoryConversationStore, StaleLeadError, StoreError
from tests.conftest import add_lead, make_property


@pytest.fixture
def sql_store(tmp_path):
    return SqlConversationStore(f"sqlite:///{tmp_path / 'agent.db'}")


def test_build_store_picks_backend(tmp_path):
    assert isinstance(build_store(None), InMemoryConversationStore)
    assert isinstance(build_store(f"sqlite:///{tmp_path / 'x.db'}"), SqlConversationStore)


@pytest.mark.asyncio
async def test_operations_require_open(sql_store):
    assert await sql_store.health_check() is False
    with pytest.raises(StoreError):
        await sql_store.get_lead_by_phone("61999990000")


@pytest.mark.asyncio
async def test_lead_round_trip_and_cas(sql_store):
    await sql_store.open()
    try:
        assert await sql_store.health_check() is True
        lead = await add_lead(sql_store, phone="(61) 98888-7777", qualification=Qualification.WARM)
        assert lead.id is not None and lead.version == 0

        found = await sql_store.get_lead_by_phone("61988887777")
        assert found.qualification == Qualification.WARM
        assert found.name == "Lead WhatsApp"

        updated = await sql_store.update_lead(
            lead.id, {"stage": LeadStage.VISIT_SCHEDULED, "budget_max": 80_000_000}, expected_version=0
        )
        assert updated.stage == LeadStage.VISIT_SCHEDULED
        assert updated.budget_max == 80_000_000
        assert updated.version == 1

        with pytest.raises(StaleLeadError):
            await sql_store.update_lead(lead.id, {"notes": "stale"}, expected_version=0)

        with pytest.raises(DuplicateLeadError):
            await add_lead(sql_store, phone="61988887777")
    finally:
        await sql_store.close()
    assert await sql_store.health_check() is False


@pytest.mark.asyncio
async def test_interactions_and_context(sql_store):
    await sql_store.open()
    try:
        lead = await add_lead(sql_store)
        await sql_store.create_interaction(
            Interaction(
                lead_id=lead.id,
                type=InteractionType.VISIT_SCHEDULED,
                subject="Visita",
                description="Visita agendada",
                metadata={"propertyId": 7, "date": "amanhã às 10h"},
            )
        )
        [interaction] = await sql_store.list_interactions(lead.id)
        assert interaction.type == InteractionType.VISIT_SCHEDULED
        assert interaction.metadata == {"propertyId": 7, "date": "amanhã às 10h"}

        for index in range(4):
            await sql_store.save_context("s1", "61999990000", f"m{index}", TurnRole.USER)
        turns = await sql_store.get_context_by_session("s1", limit=2)
        assert [turn.message for turn in turns] == ["m2", "m3"]
    finally:
        await sql_store.close()


@pytest.mark.asyncio
async def test_property_search(sql_store):
    await sql_store.open()
    try:
        await sql_store.create_property(make_property(1, sale_price=70_000_000))
        await sql_store.create_property(make_property(2, sale_price=95_000_000))
        await sql_store.create_property(
            make_property(3, transaction_type=TransactionInterest.BOTH, sale_price=60_000_000, rent_price=350_000)
        )
        await sql_store.create_property(make_property(4, status=PropertyStatus.SOLD, sale_price=40_000_000))

        matches = await sql_store.list_properties(
            PropertyFilters(
                transaction_type=TransactionInterest.SALE,
                neighborhood="Asa Sul",
                max_price=80_000_000,
                status=PropertyStatus.AVAILABLE,
            )
        )
        assert [prop.reference_code for prop in matches] == ["REF-003", "REF-001"]

        prop = await sql_store.get_property_by_id(matches[0].id)
        assert prop.transaction_type == TransactionInterest.BOTH
        assert prop.rent_price == 350_000
    finally:
        await sql_store.close()
