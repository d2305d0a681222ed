from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List

from realty_agent.models.crm import Property, PropertyFilters
from realty_agent.services.store import ConversationStore
from realty_agent.utils.money import to_minor_units

logger = logging.getLogger(__name__)

_FIXTURE_DIR = Path(__file__).resolve().parent.parent / "fixtures"


def load_json(filename: str) -> List[Dict[str, Any]]:
    file_path = _FIXTURE_DIR / filename
    with file_path.open(encoding="utf-8") as f:
        return json.load(f)


def load_properties() -> List[Property]:
    """Listing fixtures; prices in the file are in reais."""
    properties = []
    for item in load_json("properties.json"):
        data = dict(item)
        data["sale_price"] = to_minor_units(data.pop("sale_price_brl", None))
        data["rent_price"] = to_minor_units(data.pop("rent_price_brl", None))
        properties.append(Property.model_validate(data))
    return properties


async def seed_properties(store: ConversationStore) -> int:
    """Insert the listing fixtures unless the catalog already has properties."""
    existing = await store.list_properties(PropertyFilters())
    if existing:
        logger.info("fixtures.skip_seed existing=%d", len(existing))
        return 0
    properties = load_properties()
    for prop in properties:
        await store.create_property(prop)
    logger.info("fixtures.seeded properties=%d", len(properties))
    return len(properties)
