"""AI collaborator for JobLedger.

Wraps the LLM service: builds prompts, sends the conversation and
parses the reply into typed models at the boundary.
"""

from typing import Any, Dict, List, Optional, Sequence

import structlog

from config.errors import ErrorCode, ExternalCollaboratorError, JobLedgerError
from config.settings import settings
from models.catalog import CatalogItem
from models.draft import AIProposal
from services.llm_service import LLMService
from services.prompts import build_catalog_generation_prompt, build_processing_system_prompt
from validators.proposal_validator import parse_ai_response, parse_catalog_items

logger = structlog.get_logger()


def truncate_history(
    history: Sequence[Dict[str, Any]],
    limit: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Keep the most recent ``limit`` turns, oldest first."""
    limit = settings.conversation_history_limit if limit is None else limit
    if limit <= 0:
        return []
    return list(history)[-limit:]


class DocumentAIService:
    """Generates document proposals and catalog items from natural language."""

    def __init__(self, llm_service: Optional[LLMService] = None):
        self._llm = llm_service

    @property
    def llm(self) -> LLMService:
        """LLM service (lazy initialization)."""
        if self._llm is None:
            self._llm = LLMService()
        return self._llm

    async def generate_document_proposal(
        self,
        message: str,
        catalog: Sequence[CatalogItem],
        project_context: str,
        history: Sequence[Dict[str, Any]] = (),
        pending_draft: Optional[Any] = None
    ) -> AIProposal:
        """Ask the model to classify a message and propose a draft.

        Malformed output degrades to an informational proposal.

        Raises:
            ExternalCollaboratorError: If the model call itself fails.
        """
        system_prompt = build_processing_system_prompt(catalog, project_context, pending_draft)
        turns = truncate_history(history)

        try:
            result = await self.llm.generate_with_system_prompt(
                system_prompt,
                message,
                history=turns
            )
        except JobLedgerError as e:
            logger.warning("ai_proposal_failed", code=e.code, error=e.message)
            raise ExternalCollaboratorError(
                message="AI collaborator call failed",
                details={"cause": e.code, "original_error": e.message}
            )

        proposal = parse_ai_response(result["content"])

        logger.info(
            "ai_proposal_generated",
            intent=proposal.intent,
            has_structured=proposal.structured is not None,
            history_turns=len(turns),
            tokens_used=result.get("tokens_used", 0)
        )
        return proposal

    async def generate_catalog_from_description(self, text: str) -> List[CatalogItem]:
        """Turn a free-text description of services into catalog items.

        Raises:
            ExternalCollaboratorError: If the model call fails.
        """
        try:
            result = await self.llm.generate_with_system_prompt(
                build_catalog_generation_prompt(text),
                "Return the catalog items as a JSON array."
            )
        except JobLedgerError as e:
            logger.warning("ai_catalog_failed", code=e.code, error=e.message)
            raise ExternalCollaboratorError(
                message="AI catalog generation failed",
                code=ErrorCode.AI_COLLABORATOR_ERROR,
                details={"cause": e.code, "original_error": e.message}
            )

        items = parse_catalog_items(result["content"])
        logger.info("ai_catalog_generated", items=len(items))
        return items
