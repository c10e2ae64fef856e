"""Unit tests for the AI collaborator service."""

import json

import pytest
from unittest.mock import AsyncMock, MagicMock

from config.errors import ErrorCode, ExternalCollaboratorError, JobLedgerError
from models.catalog import CatalogItem
from models.draft import AIIntent, DocumentDraft
from services.ai_service import DocumentAIService, truncate_history
from tests.fixtures.mock_document_data import get_ai_estimate_response


@pytest.fixture
def llm():
    """LLM service stub returning a canned estimate proposal."""
    service = MagicMock()
    service.generate_with_system_prompt = AsyncMock(return_value={
        "content": json.dumps(get_ai_estimate_response()),
        "tokens_used": 321,
    })
    return service


@pytest.fixture
def catalog():
    return [
        CatalogItem(id="cat-1", name="Vanity install", category="plumbing", unit="each", default_rate=240),
        CatalogItem(id="cat-2", name="Painter", category="painting", unit="hour", default_rate=50),
    ]


class TestTruncateHistory:
    """Tests for truncate_history."""

    def test_keeps_most_recent(self):
        history = [{"role": "user", "content": str(n)} for n in range(10)]
        kept = truncate_history(history, limit=3)
        assert [turn["content"] for turn in kept] == ["7", "8", "9"]

    def test_default_limit_from_settings(self, mock_settings):
        mock_settings.conversation_history_limit = 2
        history = [{"role": "user", "content": str(n)} for n in range(5)]
        assert len(truncate_history(history)) == 2

    def test_zero_limit(self):
        assert truncate_history([{"role": "user", "content": "hi"}], limit=0) == []


class TestDocumentAIService:
    """Tests for DocumentAIService."""

    @pytest.mark.asyncio
    async def test_generate_document_proposal(self, llm, catalog):
        service = DocumentAIService(llm_service=llm)

        proposal = await service.generate_document_proposal(
            "Estimate for a bathroom refresh",
            catalog,
            "Project: Smith Bathroom",
            history=[{"role": "user", "content": "hello"}, {"role": "assistant", "content": "hi"}]
        )

        assert proposal.intent == AIIntent.NEW_ESTIMATE
        assert isinstance(proposal.structured, DocumentDraft)

        system_prompt, user_message = llm.generate_with_system_prompt.await_args.args
        assert "Vanity install" in system_prompt
        assert "Project: Smith Bathroom" in system_prompt
        assert user_message == "Estimate for a bathroom refresh"
        assert len(llm.generate_with_system_prompt.await_args.kwargs["history"]) == 2

    @pytest.mark.asyncio
    async def test_pending_draft_in_prompt(self, llm, catalog):
        service = DocumentAIService(llm_service=llm)
        pending = DocumentDraft.model_validate(get_ai_estimate_response()["structured"])

        await service.generate_document_proposal("make it cheaper", catalog, "", pending_draft=pending)

        system_prompt = llm.generate_with_system_prompt.await_args.args[0]
        assert "Bathroom refresh" in system_prompt

    @pytest.mark.asyncio
    async def test_malformed_output_is_informational(self, llm, catalog):
        llm.generate_with_system_prompt.return_value = {"content": "I could not do that.", "tokens_used": 5}
        service = DocumentAIService(llm_service=llm)

        proposal = await service.generate_document_proposal("???", catalog, "")

        assert proposal.intent == AIIntent.GENERAL
        assert proposal.structured is None
        assert proposal.message == "I could not do that."

    @pytest.mark.asyncio
    async def test_llm_failure_raises_collaborator_error(self, llm, catalog):
        llm.generate_with_system_prompt.side_effect = JobLedgerError(
            code=ErrorCode.LLM_ERROR,
            message="LLM generation failed"
        )
        service = DocumentAIService(llm_service=llm)

        with pytest.raises(ExternalCollaboratorError) as exc_info:
            await service.generate_document_proposal("hi", catalog, "")

        assert exc_info.value.details["cause"] == ErrorCode.LLM_ERROR

    @pytest.mark.asyncio
    async def test_generate_catalog(self, llm):
        llm.generate_with_system_prompt.return_value = {
            "content": json.dumps([
                {"name": "Drywall repair", "category": "framing", "unit": "sqft", "defaultRate": 3.5},
            ]),
            "tokens_used": 50,
        }
        service = DocumentAIService(llm_service=llm)

        items = await service.generate_catalog_from_description("I patch drywall at $3.50/sqft")

        assert len(items) == 1
        assert items[0].name == "Drywall repair"
        system_prompt = llm.generate_with_system_prompt.await_args.args[0]
        assert "I patch drywall at $3.50/sqft" in system_prompt
