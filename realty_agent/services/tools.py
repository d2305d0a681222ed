from __future__ import annotations

import json
import logging
from typing import Optional

from dateutil import parser as dateparser

from realty_agent.logging.flight_recorder import FlightRecorder
from realty_agent.models.crm import (
    Interaction,
    InteractionType,
    LeadStage,
    Property,
    PropertyFilters,
    PropertyStatus,
    TransactionInterest,
)
from realty_agent.models.tooling import PropertyHit, PropertySearchArgs, PropertySearchResult, ScheduleVisitArgs
from realty_agent.services.store import ConversationStore, StoreError
from realty_agent.utils.money import format_brl, to_minor_units

logger = logging.getLogger(__name__)

MAX_SEARCH_RESULTS = 3

NO_RESULTS_MESSAGE = "Nenhum imóvel encontrado com os critérios fornecidos."
SEARCH_ERROR_MESSAGE = "Ocorreu um erro ao buscar os imóveis. Tente novamente mais tarde."
LEAD_NOT_FOUND_MESSAGE = (
    "Erro: Não foi possível encontrar o lead com o telefone fornecido. "
    "Peça ao cliente para confirmar o telefone."
)
PROPERTY_NOT_FOUND_TEMPLATE = "Erro: Imóvel com ID {property_id} não encontrado. Por favor, verifique o ID."
SCHEDULE_ERROR_MESSAGE = "Ocorreu um erro ao agendar a visita. Tente novamente mais tarde."
PRICE_ON_REQUEST = "Preço sob consulta"


def _price_bound(value: Optional[float]) -> Optional[int]:
    # 0 means "no bound", the model often sends it for unknown values
    if not value:
        return None
    return to_minor_units(value)


def display_price(prop: Property, transaction_type: TransactionInterest) -> str:
    """Sale prices are shown plain, rents with a "/mês" suffix."""
    prefer_rent = transaction_type == TransactionInterest.RENTAL
    sale = format_brl(prop.sale_price) if prop.sale_price else None
    rent = f"{format_brl(prop.rent_price)}/mês" if prop.rent_price else None
    if prefer_rent:
        return rent or sale or PRICE_ON_REQUEST
    return sale or rent or PRICE_ON_REQUEST


def property_url(prop: Property) -> str:
    return f"/imovel/{prop.slug or prop.id}"


def build_filters(args: PropertySearchArgs) -> PropertyFilters:
    return PropertyFilters(
        transaction_type=args.transaction_type,
        property_type=args.property_type or None,
        neighborhood=args.neighborhood or None,
        min_price=_price_bound(args.min_price),
        max_price=_price_bound(args.max_price),
        min_bedrooms=args.bedrooms or None,
        status=PropertyStatus.AVAILABLE,
    )


async def search_properties(
    store: ConversationStore,
    args: PropertySearchArgs,
    recorder: Optional[FlightRecorder] = None,
) -> str:
    filters = build_filters(args)
    try:
        matches = await store.list_properties(filters)
    except StoreError:
        logger.exception("tool.search_properties_failed")
        return SEARCH_ERROR_MESSAGE

    if recorder:
        recorder.log(
            "SEARCH",
            "search_results",
            count=len(matches),
            transaction_type=filters.transaction_type.value if filters.transaction_type else None,
            neighborhood=filters.neighborhood,
            max_price=filters.max_price,
        )
    if not matches:
        return NO_RESULTS_MESSAGE

    hits = [
        PropertyHit(
            id=prop.id,
            title=prop.title,
            reference_code=prop.reference_code,
            property_type=prop.property_type,
            transaction_type=prop.transaction_type,
            neighborhood=prop.neighborhood,
            city=prop.city,
            price=display_price(prop, args.transaction_type),
            bedrooms=prop.bedrooms,
            url=property_url(prop),
        )
        for prop in matches[:MAX_SEARCH_RESULTS]
    ]
    result = PropertySearchResult(
        count=len(matches),
        results=hits,
        message=f"Encontrados {len(matches)} imóveis. Exibindo os {len(hits)} primeiros.",
    )
    return json.dumps(result.model_dump(mode="json", by_alias=True), ensure_ascii=False)


def _parse_visit_date(raw: str) -> Optional[str]:
    try:
        return dateparser.parse(raw, dayfirst=True).isoformat()
    except (ValueError, OverflowError):
        logger.info("tool.schedule_visit_unparsed_date date=%r", raw)
        return None


async def schedule_visit(
    store: ConversationStore,
    args: ScheduleVisitArgs,
    recorder: Optional[FlightRecorder] = None,
) -> str:
    try:
        lead = await store.get_lead_by_phone(args.lead_phone)
        if lead is None:
            return LEAD_NOT_FOUND_MESSAGE
        prop = await store.get_property_by_id(args.property_id)
        if prop is None:
            return PROPERTY_NOT_FOUND_TEMPLATE.format(property_id=args.property_id)

        metadata = {"propertyId": prop.id, "date": args.date}
        parsed = _parse_visit_date(args.date)
        if parsed:
            metadata["scheduledFor"] = parsed

        interaction = await store.create_interaction(
            Interaction(
                lead_id=lead.id,
                type=InteractionType.VISIT_SCHEDULED,
                subject=f"Visita Agendada para {prop.title}",
                description=f"Visita agendada para o imóvel {prop.title} ({prop.reference_code}) em {args.date}.",
                metadata=metadata,
            )
        )
        await store.update_lead(lead.id, {"stage": LeadStage.VISIT_SCHEDULED})
    except StoreError:
        logger.exception("tool.schedule_visit_failed property_id=%s", args.property_id)
        return SCHEDULE_ERROR_MESSAGE

    if recorder:
        recorder.log(
            "SCHEDULE",
            "visit_scheduled",
            lead_id=lead.id,
            property_id=prop.id,
            interaction_id=interaction.id,
        )
    return (
        f'Visita agendada com sucesso para o imóvel "{prop.title}" em {args.date}. '
        "O corretor responsável entrará em contato para confirmar os detalhes."
    )
