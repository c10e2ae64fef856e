"""Unit tests for AI response parsing."""

import json

from models.draft import AIIntent, DocumentDraft, WorkEntryDraft
from validators.proposal_validator import parse_ai_response, parse_catalog_items, strip_code_fences
from tests.fixtures.mock_document_data import get_ai_estimate_response, get_ai_question_response


class TestParseAIResponse:
    """Tests for parse_ai_response."""

    def test_estimate_proposal(self):
        proposal = parse_ai_response(json.dumps(get_ai_estimate_response()))

        assert proposal.intent == AIIntent.NEW_ESTIMATE
        assert isinstance(proposal.structured, DocumentDraft)
        assert proposal.structured.type == "estimate"
        assert len(proposal.structured.line_items) == 2
        assert proposal.structured.line_items[0].time_cost == 240.0

    def test_code_fenced_json(self):
        raw = "```json\n" + json.dumps(get_ai_question_response()) + "\n```"
        proposal = parse_ai_response(raw)
        assert proposal.intent == AIIntent.QUESTION
        assert proposal.structured is None

    def test_plain_text_is_informational(self):
        proposal = parse_ai_response("Sure, what would you like to add?")
        assert proposal.intent == AIIntent.GENERAL
        assert proposal.message == "Sure, what would you like to add?"
        assert proposal.structured is None

    def test_unknown_intent_downgraded(self):
        proposal = parse_ai_response({"intent": "make_coffee", "message": "Hi"})
        assert proposal.intent == AIIntent.GENERAL

    def test_invalid_structured_payload_dropped(self):
        """An unknown draft type keeps the message but loses the payload."""
        proposal = parse_ai_response({
            "intent": "new_estimate",
            "message": "Here you go",
            "structured": {"type": "purchase_order", "lineItems": []},
        })
        assert proposal.structured is None
        assert proposal.message == "Here you go"

    def test_undescribed_rows_dropped(self):
        data = get_ai_estimate_response()
        data["structured"]["lineItems"].append({"description": "  ", "materialsCost": 5, "total": 5})
        proposal = parse_ai_response(data)
        assert len(proposal.structured.line_items) == 2

    def test_change_order_action_defaults_to_add(self):
        proposal = parse_ai_response({
            "intent": "change_order",
            "message": "Change order drafted",
            "structured": {
                "type": "change_order",
                "estimateId": "est-kitchen",
                "lineItems": [
                    {"description": "Extra outlet", "materialsCost": 80, "total": 80, "action": "bogus"},
                    {"description": "Old fan", "materialsCost": 60, "total": 60, "action": "remove"},
                ],
            },
        })
        actions = [item.action for item in proposal.structured.line_items]
        assert actions == ["add", "remove"]
        assert proposal.structured.estimate_id == "est-kitchen"

    def test_work_entry_proposal(self):
        proposal = parse_ai_response({
            "intent": "work_entry",
            "message": "Logged",
            "structured": {
                "type": "work_entry",
                "workEntries": [{
                    "estimateLineItemId": "li-demo",
                    "description": "Demo crew",
                    "actualMaterialsCost": 100,
                    "actualTotal": 100,
                }],
            },
        })
        assert isinstance(proposal.structured, WorkEntryDraft)
        assert proposal.structured.work_entries[0].estimate_line_item_id == "li-demo"

    def test_empty_structured_treated_as_none(self):
        proposal = parse_ai_response({"intent": "general", "message": "Hello", "structured": {}})
        assert proposal.structured is None

    def test_missing_message_uses_follow_up(self):
        proposal = parse_ai_response({"intent": "question", "followUpQuestion": "Which room?"})
        assert proposal.message == "Which room?"

    def test_none_input(self):
        proposal = parse_ai_response(None)
        assert proposal.intent == AIIntent.GENERAL
        assert proposal.message == ""


class TestParseCatalogItems:
    """Tests for parse_catalog_items."""

    def test_normalises_items(self):
        raw = json.dumps([
            {"name": "Drywall patch", "category": "drywall", "unit": "sqft", "defaultRate": 4.555},
            {"name": "Electrician", "category": "electrical", "unit": "hours", "defaultRate": 95},
        ])
        items = parse_catalog_items(raw)

        assert items[0].category == "other"
        assert items[0].unit == "sqft"
        assert items[0].default_rate == 4.56
        assert items[1].category == "electrical"
        assert items[1].unit == "each"

    def test_skips_unusable_rows(self):
        items = parse_catalog_items([
            {"name": "", "defaultRate": 10},
            {"name": "Free thing", "defaultRate": 0},
            "not a row",
            {"name": "Painter", "category": "painting", "unit": "hour", "defaultRate": 55},
        ])
        assert [item.name for item in items] == ["Painter"]

    def test_wrapped_in_object(self):
        items = parse_catalog_items({"items": [{"name": "Tile setter", "defaultRate": 60}]})
        assert len(items) == 1

    def test_malformed_output(self):
        assert parse_catalog_items("no json here") == []


class TestStripCodeFences:
    """Tests for strip_code_fences."""

    def test_plain(self):
        assert strip_code_fences('{"a": 1}') == '{"a": 1}'

    def test_fenced(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'
