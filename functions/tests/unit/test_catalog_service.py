"""Unit tests for the catalog service."""

import pytest

from config.errors import ValidationError
from services.catalog_service import CatalogService


@pytest.fixture
def catalog_service(mock_document_firestore):
    return CatalogService(firestore_service=mock_document_firestore)


class TestCatalogService:
    """Tests for CatalogService."""

    @pytest.mark.asyncio
    async def test_list_sorted_by_category(self, catalog_service, mock_document_firestore):
        mock_document_firestore.list_catalog_items.return_value = [
            {"id": "c-2", "name": "Tile setting", "category": "tile", "unit": "sqft", "defaultRate": 12},
            {"id": "c-1", "name": "Framing", "category": "framing", "unit": "hour", "defaultRate": 70},
            {"id": "c-3", "name": "Drywall", "category": "framing", "unit": "sqft", "defaultRate": 3},
        ]

        items = await catalog_service.list_items("user-1")

        assert [item.id for item in items] == ["c-3", "c-1", "c-2"]
        mock_document_firestore.list_catalog_items.assert_awaited_once_with("user-1")

    @pytest.mark.asyncio
    async def test_save_normalises_and_persists(self, catalog_service, mock_document_firestore):
        mock_document_firestore.save_catalog_items.return_value = ["c-1"]

        items = await catalog_service.save_items("user-1", [
            {"name": "Carpentry", "category": "woodwork", "unit": "hr", "defaultRate": 85.456},
            {"name": "Free consult", "defaultRate": 0},
            {"defaultRate": 40},
        ])

        assert len(items) == 1
        assert items[0].id == "c-1"
        stored = mock_document_firestore.save_catalog_items.await_args.args[1]
        assert stored == [{
            "name": "Carpentry",
            "category": "other",
            "unit": "each",
            "defaultRate": 85.46,
            "isActive": True,
        }]

    @pytest.mark.asyncio
    async def test_save_with_no_valid_rows_rejected(self, catalog_service, mock_document_firestore):
        with pytest.raises(ValidationError):
            await catalog_service.save_items("user-1", [{"name": "Nothing", "defaultRate": -5}])

        mock_document_firestore.save_catalog_items.assert_not_called()

    @pytest.mark.asyncio
    async def test_replace_with_empty_list_clears(self, catalog_service, mock_document_firestore):
        items = await catalog_service.replace_items("user-1", [])

        assert items == []
        mock_document_firestore.replace_catalog_items.assert_awaited_once_with("user-1", [])
