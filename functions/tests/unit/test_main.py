"""Unit tests for the HTTP entry points."""

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import main
from models.draft import AIProposal
from services.catalog_service import CatalogService
from tests.fixtures.mock_document_data import get_ai_estimate_response


def _request(data, method="POST"):
    req = MagicMock()
    req.method = method
    req.get_json.return_value = data
    return req


def _body(response):
    return json.loads(response.get_data(as_text=True))


@pytest.fixture
def document_service_cls(mock_document_firestore):
    service = MagicMock()
    service.firestore = mock_document_firestore
    service.get_project_context = AsyncMock(return_value="Project: Smith Kitchen")
    service.commit_draft = AsyncMock(return_value={"id": "est-1", "number": 1})
    with patch("main.DocumentService", return_value=service) as cls:
        yield cls


def _ai_returning(proposal):
    ai = MagicMock()
    ai.generate_document_proposal = AsyncMock(return_value=proposal)
    return patch("main.DocumentAIService", return_value=ai)


class TestHandle:
    """Tests for request handling and error mapping."""

    def test_options_preflight(self):
        response = main._handle(_request({}, method="OPTIONS"), "noop", AsyncMock())
        assert response.status_code == 204

    def test_missing_field_is_400(self):
        response = main._handle(
            _request({"userId": "user-1"}),
            "update_estimate_line_items",
            main._update_estimate_line_items_async
        )

        assert response.status_code == 400
        assert _body(response)["error"]["code"] == "VALIDATION_ERROR"

    def test_malformed_line_item_is_400(self, document_service_cls):
        """Bad field types in the request body are a client error, not a server error."""
        response = main._handle(
            _request({
                "userId": "user-1",
                "estimateId": "est-1",
                "lineItems": [{"description": "Demo", "timeHours": "abc"}],
            }),
            "update_estimate_line_items",
            main._update_estimate_line_items_async
        )

        body = _body(response)
        assert response.status_code == 400
        assert body["success"] is False
        assert body["error"]["code"] == "VALIDATION_ERROR"
        assert body["error"]["details"]["errors"][0].startswith("timeHours")

    def test_malformed_draft_state_is_400(self, document_service_cls, mock_document_firestore):
        response = main._handle(
            _request({"projectId": "proj-1", "draftState": {"draft": {"type": "purchase_order"}}}),
            "discard_draft",
            main._discard_draft_async
        )

        assert response.status_code == 400
        assert _body(response)["error"]["code"] == "VALIDATION_ERROR"
        mock_document_firestore.bump_draft_generation.assert_not_called()

    def test_unexpected_error_is_500(self):
        action = AsyncMock(side_effect=RuntimeError("boom"))
        response = main._handle(_request({}), "noop", action)

        assert response.status_code == 500
        assert _body(response)["success"] is False


class TestDraftEndpoints:
    """Draft turns share one generation counter per project."""

    def test_process_message_creates_draft(self, document_service_cls, mock_document_firestore):
        mock_document_firestore.bump_draft_generation.side_effect = [1, 2]
        mock_document_firestore.get_draft_generation.return_value = 1

        with _ai_returning(AIProposal.model_validate(get_ai_estimate_response())):
            response = main._handle(
                _request({"userId": "user-1", "projectId": "proj-1", "message": "bathroom estimate"}),
                "process_message",
                main._process_message_async
            )

        data = _body(response)["data"]
        assert response.status_code == 200
        assert data["decision"] == "new_document"
        assert data["draftState"]["generation"] == 2
        assert data["draftState"]["draft"]["title"] == "Bathroom refresh"
        assert mock_document_firestore.add_message.await_count == 2

    def test_response_dropped_after_discard_in_flight(self, document_service_cls, mock_document_firestore):
        """A discard that landed during the AI call makes the response stale."""
        mock_document_firestore.bump_draft_generation.return_value = 1
        mock_document_firestore.get_draft_generation.return_value = 2

        with _ai_returning(AIProposal.model_validate(get_ai_estimate_response())):
            response = main._handle(
                _request({"userId": "user-1", "projectId": "proj-1", "message": "bathroom estimate"}),
                "process_message",
                main._process_message_async
            )

        data = _body(response)["data"]
        assert data["decision"] == "dropped"
        assert data["draftState"]["draft"] is None
        assert data["draftState"]["generation"] == 2
        mock_document_firestore.bump_draft_generation.assert_awaited_once_with("proj-1")
        mock_document_firestore.add_message.assert_awaited_once_with("proj-1", "user", "bathroom estimate")

    def test_discard_advances_shared_generation(self, document_service_cls, mock_document_firestore):
        mock_document_firestore.bump_draft_generation.return_value = 5

        response = main._handle(
            _request({"projectId": "proj-1", "draftState": {"generation": 3}}),
            "discard_draft",
            main._discard_draft_async
        )

        data = _body(response)["data"]
        assert data["draftState"] == {"draft": None, "generation": 5, "keyCounter": 0}
        mock_document_firestore.bump_draft_generation.assert_awaited_once_with("proj-1")

    def test_discard_requires_project(self, document_service_cls):
        response = main._handle(_request({"draftState": {}}), "discard_draft", main._discard_draft_async)
        assert response.status_code == 400

    def test_approve_advances_shared_generation(self, document_service_cls, mock_document_firestore):
        mock_document_firestore.bump_draft_generation.return_value = 9
        state = {
            "draft": get_ai_estimate_response()["structured"],
            "generation": 4,
            "keyCounter": 2,
        }

        response = main._handle(
            _request({"userId": "user-1", "projectId": "proj-1", "draftState": state}),
            "approve_draft",
            main._approve_draft_async
        )

        data = _body(response)["data"]
        assert data["approved"] is True
        assert data["draftState"]["draft"] is None
        assert data["draftState"]["generation"] == 9

    def test_ignored_approval_keeps_generation(self, document_service_cls, mock_document_firestore):
        response = main._handle(
            _request({"userId": "user-1", "projectId": "proj-1", "draftState": {"generation": 4}}),
            "approve_draft",
            main._approve_draft_async
        )

        data = _body(response)["data"]
        assert data["approved"] is False
        mock_document_firestore.bump_draft_generation.assert_not_called()


class TestCatalogEndpoints:
    """Tests for catalog save, replace and list."""

    @pytest.fixture(autouse=True)
    def catalog_service_cls(self, mock_document_firestore):
        with patch("main.CatalogService", side_effect=lambda *args: CatalogService(mock_document_firestore)):
            yield

    def test_save_catalog(self, mock_document_firestore):
        mock_document_firestore.save_catalog_items.return_value = ["c-1"]

        response = main._handle(
            _request({"userId": "user-1", "items": [{"name": "Carpentry", "unit": "hour", "defaultRate": 85}]}),
            "save_catalog",
            main._save_catalog_async
        )

        data = _body(response)["data"]
        assert response.status_code == 200
        assert data["items"][0]["id"] == "c-1"
        assert data["items"][0]["defaultRate"] == 85.0

    def test_save_catalog_rejects_unusable_rows(self, mock_document_firestore):
        response = main._handle(
            _request({"userId": "user-1", "items": [{"name": "", "defaultRate": 10}]}),
            "save_catalog",
            main._save_catalog_async
        )

        assert response.status_code == 400
        mock_document_firestore.save_catalog_items.assert_not_called()

    def test_replace_catalog_empty_clears(self, mock_document_firestore):
        response = main._handle(
            _request({"userId": "user-1", "items": []}),
            "replace_catalog",
            main._replace_catalog_async
        )

        assert _body(response)["data"] == {"items": []}
        mock_document_firestore.replace_catalog_items.assert_awaited_once_with("user-1", [])

    def test_list_catalog(self, mock_document_firestore):
        mock_document_firestore.list_catalog_items.return_value = [
            {"id": "c-1", "name": "Tile", "category": "tile", "unit": "sqft", "defaultRate": 12},
        ]

        response = main._handle(_request({"userId": "user-1"}), "list_catalog", main._list_catalog_async)

        assert [item["id"] for item in _body(response)["data"]["items"]] == ["c-1"]
