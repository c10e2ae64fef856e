"""Service catalog persistence for JobLedger.

Items go through the same normalisation as AI-generated catalogs before
they are stored, so saved rows always carry a name, a known category and
unit, and a positive rate.
"""

from typing import Any, List, Optional

import structlog

from config.errors import ValidationError
from models.catalog import CatalogItem
from services.firestore_service import FirestoreService
from validators.proposal_validator import parse_catalog_items

logger = structlog.get_logger()


class CatalogService:
    """Reads and writes a user's service catalog."""

    def __init__(self, firestore_service: Optional[FirestoreService] = None):
        self.firestore = firestore_service or FirestoreService()

    async def list_items(self, user_id: str) -> List[CatalogItem]:
        """Active catalog items grouped by category."""
        rows = await self.firestore.list_catalog_items(user_id)
        items = [CatalogItem.model_validate(row) for row in rows]
        return sorted(items, key=lambda item: (item.category, item.name.lower()))

    async def save_items(self, user_id: str, raw_items: List[Any]) -> List[CatalogItem]:
        """Add items to the catalog and finish onboarding.

        Raises:
            ValidationError: If no row survives normalisation.
        """
        items = parse_catalog_items(list(raw_items or []))
        if not items:
            raise ValidationError(
                message="No valid catalog items to save",
                errors=["each item needs a name and a rate above zero"],
                field="items"
            )

        ids = await self.firestore.save_catalog_items(
            user_id,
            [item.to_firestore_dict() for item in items]
        )
        logger.info("catalog_saved", user_id=user_id, count=len(ids))
        return [item.model_copy(update={"id": item_id}) for item, item_id in zip(items, ids)]

    async def replace_items(self, user_id: str, raw_items: List[Any]) -> List[CatalogItem]:
        """Replace the whole catalog. An empty list clears it."""
        items = parse_catalog_items(list(raw_items or []))
        ids = await self.firestore.replace_catalog_items(
            user_id,
            [item.to_firestore_dict() for item in items]
        )
        logger.info("catalog_replaced", user_id=user_id, count=len(ids))
        return [item.model_copy(update={"id": item_id}) for item, item_id in zip(items, ids)]
