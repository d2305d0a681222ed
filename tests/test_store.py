import pytest

from realty_agent.models.crm import (
    Interaction,
    InteractionType,
    LeadStage,
    PropertyFilters,
    PropertyStatus,
    TransactionInterest,
    TurnRole,
)
from realty_agent.services.store import DuplicateLeadError, LeadNotFoundError, StaleLeadError
from tests.conftest import add_lead, make_property


@pytest.mark.asyncio
async def test_lifecycle_drives_health(store):
    assert await store.health_check() is False
    await store.open()
    assert await store.health_check() is True
    await store.close()
    assert await store.health_check() is False


@pytest.mark.asyncio
async def test_lead_lookup_normalizes_phone(store):
    created = await add_lead(store, phone="(61) 99999-0000")
    assert created.phone == "61999990000"
    found = await store.get_lead_by_phone("61 99999 0000")
    assert found is not None and found.id == created.id
    assert await store.get_lead_by_phone("") is None


@pytest.mark.asyncio
async def test_duplicate_phone_rejected(store):
    await add_lead(store)
    with pytest.raises(DuplicateLeadError):
        await add_lead(store, phone="61-99999-0000")


@pytest.mark.asyncio
async def test_update_bumps_version_and_checks_expected(store):
    lead = await add_lead(store)
    updated = await store.update_lead(lead.id, {"stage": LeadStage.QUALIFIED}, expected_version=0)
    assert updated.stage == LeadStage.QUALIFIED
    assert updated.version == 1

    with pytest.raises(StaleLeadError) as excinfo:
        await store.update_lead(lead.id, {"notes": "late"}, expected_version=0)
    assert excinfo.value.actual_version == 1
    assert (await store.get_lead_by_id(lead.id)).notes is None


@pytest.mark.asyncio
async def test_update_rejects_unknown_and_missing(store):
    lead = await add_lead(store)
    with pytest.raises(ValueError):
        await store.update_lead(lead.id, {"phone": "123"})
    with pytest.raises(LeadNotFoundError):
        await store.update_lead(999, {"notes": "x"})


@pytest.mark.asyncio
async def test_context_returns_last_turns_oldest_first(store):
    for index in range(5):
        await store.save_context("s1", "61999990000", f"m{index}", TurnRole.USER)
    await store.save_context("other", "61999990000", "elsewhere", TurnRole.USER)

    turns = await store.get_context_by_session("s1", limit=3)
    assert [turn.message for turn in turns] == ["m2", "m3", "m4"]
    assert await store.get_context_by_session("s1", limit=0) == []


@pytest.mark.asyncio
async def test_interactions_listed_newest_first(store):
    lead = await add_lead(store)
    for subject in ("first", "second"):
        await store.create_interaction(
            Interaction(lead_id=lead.id, type=InteractionType.NOTE, subject=subject, description=subject)
        )
    assert [item.subject for item in await store.list_interactions(lead.id)] == ["second", "first"]


@pytest.mark.asyncio
async def test_property_filters(store):
    await store.create_property(make_property(1, sale_price=70_000_000))
    await store.create_property(make_property(2, sale_price=95_000_000))
    await store.create_property(
        make_property(3, transaction_type=TransactionInterest.BOTH, sale_price=60_000_000, rent_price=350_000)
    )
    await store.create_property(make_property(4, neighborhood="Lago Sul", sale_price=50_000_000))
    await store.create_property(make_property(5, status=PropertyStatus.SOLD, sale_price=40_000_000))
    await store.create_property(
        make_property(6, transaction_type=TransactionInterest.RENTAL, sale_price=None, rent_price=300_000)
    )

    sale = await store.list_properties(
        PropertyFilters(
            transaction_type=TransactionInterest.SALE,
            neighborhood="asa sul",
            max_price=80_000_000,
            status=PropertyStatus.AVAILABLE,
        )
    )
    assert [prop.title for prop in sale] == ["Imóvel 3", "Imóvel 1"]

    rental = await store.list_properties(
        PropertyFilters(transaction_type=TransactionInterest.RENTAL, max_price=400_000)
    )
    assert [prop.title for prop in rental] == ["Imóvel 6", "Imóvel 3"]

    assert len(await store.list_properties(PropertyFilters(min_bedrooms=4))) == 0
