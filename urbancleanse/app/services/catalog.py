"""
Waste type catalogue seeding.
"""

import logging
from typing import Dict, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from urbancleanse.app.models.scheduling_enums import CollectionType
from urbancleanse.app.models.waste_type import WasteType

logger = logging.getLogger(__name__)

# (base cost, max weight kg, description)
DEFAULT_WASTE_TYPES: Dict[CollectionType, Tuple[float, float, str]] = {
    CollectionType.FOOD: (20.0, 50.0, "Organic and food waste"),
    CollectionType.POLYTHENE: (30.0, 30.0, "Plastic bags and polythene"),
    CollectionType.PAPER: (25.0, 40.0, "Paper and cardboard"),
    CollectionType.HAZARDOUS: (50.0, 20.0, "Chemicals, batteries and other hazardous waste"),
    CollectionType.EWASTE: (45.0, 25.0, "Electronic waste"),
}


async def seed_waste_types(db: AsyncSession) -> int:
    """Insert missing catalogue rows; existing rows are left untouched."""
    result = await db.execute(select(WasteType.name))
    existing = set(result.scalars().all())

    created = 0
    for ctype, (cost, max_weight, description) in DEFAULT_WASTE_TYPES.items():
        if ctype in existing:
            continue
        db.add(WasteType(name=ctype, base_cost=cost, max_weight=max_weight, description=description))
        created += 1

    if created:
        await db.commit()
        logger.info("Seeded %d waste types", created)
    return created
