"""Draft reconciliation protocol for JobLedger.

Mediates between chat turns and the single pending draft of a
conversation. Every AI response is turned into exactly one decision:

- NewDocument: the structured proposal becomes the pending draft.
- ModifyDraft: the pending draft's rows are replaced wholesale by the
  proposal's rows (title and notes kept unless the proposal supplies them).
- Informational: nothing changes; the message is only displayed.

Responses are tagged with the generation they were requested at. Any
response that arrives after the draft has moved on (another turn,
discard or approval) is dropped.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

import structlog
from pydantic import TypeAdapter

from config.errors import ErrorCode, ExternalCollaboratorError, InconsistentStateError
from models.draft import (
    AIProposal,
    DOCUMENT_INTENTS,
    DRAFT_KEY_PREFIX,
    DocumentDraft,
    Draft,
    INFORMATIONAL_INTENTS,
    WorkEntryDraft,
)
from services.rollup_engine import link_draft_hierarchy

logger = structlog.get_logger()

FALLBACK_MESSAGE = "Sorry, something went wrong. Please try again."

_draft_adapter = TypeAdapter(Draft)


@dataclass(frozen=True)
class NewDocument:
    """Proposal replaces the pending draft (or there was none)."""
    draft: Union[DocumentDraft, WorkEntryDraft]
    message: str = ""


@dataclass(frozen=True)
class ModifyDraft:
    """Proposal edits the pending draft of the same type."""
    draft: Union[DocumentDraft, WorkEntryDraft]
    message: str = ""


@dataclass(frozen=True)
class Informational:
    """Display-only response; the pending draft is untouched."""
    message: str = ""
    proposal: Optional[AIProposal] = None


DraftDecision = Union[NewDocument, ModifyDraft, Informational]


class ConversationGenerations:
    """Server-held generation counter of one project's conversation.

    Sessions are rebuilt from client state on every request, so the
    counter that decides staleness lives in Firestore.
    """

    def __init__(self, firestore_service: Any, project_id: str):
        self.firestore_service = firestore_service
        self.project_id = project_id

    async def current(self) -> int:
        return await self.firestore_service.get_draft_generation(self.project_id)

    async def bump(self) -> int:
        return await self.firestore_service.bump_draft_generation(self.project_id)


def merge_draft(
    current: Union[DocumentDraft, WorkEntryDraft],
    proposed: Union[DocumentDraft, WorkEntryDraft]
) -> Union[DocumentDraft, WorkEntryDraft]:
    """Full-replace merge: rows come from the proposal, title/notes kept unless supplied."""
    update: Dict[str, Any] = {
        "title": proposed.title or current.title,
        "notes": proposed.notes if proposed.notes is not None else current.notes,
    }
    if isinstance(proposed, DocumentDraft):
        update["line_items"] = list(proposed.line_items)
        update["estimate_id"] = proposed.estimate_id or getattr(current, "estimate_id", None)
        update["change_order_type"] = (
            proposed.change_order_type or getattr(current, "change_order_type", None)
        )
    else:
        update["work_entries"] = list(proposed.work_entries)
    return current.model_copy(update=update)


def decide(
    proposal: AIProposal,
    current_draft: Optional[Union[DocumentDraft, WorkEntryDraft]]
) -> DraftDecision:
    """Classify an AI proposal against the pending draft.

    A proposal of a different type than the pending draft, without an
    explicit new-document signal, does not replace the pending draft.
    A payload whose type contradicts the stated intent is only displayed.
    """
    structured = proposal.structured

    if proposal.intent in INFORMATIONAL_INTENTS or structured is None:
        return Informational(message=proposal.message, proposal=proposal)

    expected = DOCUMENT_INTENTS.get(proposal.intent)
    if expected is not None and expected.value != structured.type:
        logger.info(
            "ai_intent_type_mismatch",
            intent=proposal.intent.value,
            structured_type=structured.type
        )
        return Informational(message=proposal.message, proposal=proposal)

    if current_draft is None or proposal.new_document:
        return NewDocument(draft=structured, message=proposal.message)

    if structured.type == current_draft.type:
        return ModifyDraft(draft=merge_draft(current_draft, structured), message=proposal.message)

    return Informational(message=proposal.message, proposal=proposal)


class DraftSession:
    """The one pending draft of a conversation, with its generation counter."""

    def __init__(
        self,
        current_draft: Optional[Union[DocumentDraft, WorkEntryDraft]] = None,
        generation: int = 0,
        key_counter: int = 0
    ):
        self.current_draft = current_draft
        self.generation = generation
        self._key_counter = key_counter

    def next_key(self) -> str:
        """Monotonic draft-local key for items entering the draft."""
        self._key_counter += 1
        return f"{DRAFT_KEY_PREFIX}{self._key_counter}"

    def begin_turn(self) -> int:
        """Start a turn; the returned token identifies this turn's response."""
        self.generation += 1
        return self.generation

    def _check_current(self, token: int) -> None:
        if token != self.generation:
            raise InconsistentStateError(
                message="AI response targets a draft that is no longer current",
                code=ErrorCode.DRAFT_STALE,
                details={"token": token, "generation": self.generation}
            )

    def _keyed(self, draft: Union[DocumentDraft, WorkEntryDraft]) -> Union[DocumentDraft, WorkEntryDraft]:
        if isinstance(draft, DocumentDraft):
            return draft.model_copy(
                update={"line_items": link_draft_hierarchy(draft.line_items, self.next_key)}
            )
        return draft

    def apply_proposal(self, proposal: AIProposal, token: int) -> Optional[DraftDecision]:
        """Apply one AI response to the session.

        Returns:
            The decision taken, or None if the response was stale and dropped.
        """
        try:
            self._check_current(token)
        except InconsistentStateError as e:
            logger.info("stale_ai_response_dropped", **e.details)
            return None

        decision = decide(proposal, self.current_draft)

        if isinstance(decision, NewDocument):
            if self.current_draft is not None:
                logger.info("draft_replaced", previous_type=self.current_draft.type)
            self.current_draft = self._keyed(decision.draft)
            decision = NewDocument(draft=self.current_draft, message=decision.message)
            logger.info(
                "draft_created",
                draft_type=self.current_draft.type,
                rows=len(self.current_draft.rows),
                generation=self.generation
            )
        elif isinstance(decision, ModifyDraft):
            self.current_draft = self._keyed(decision.draft)
            decision = ModifyDraft(draft=self.current_draft, message=decision.message)
            logger.info(
                "draft_modified",
                draft_type=self.current_draft.type,
                rows=len(self.current_draft.rows),
                generation=self.generation
            )
        else:
            logger.info("ai_response_informational", intent=proposal.intent)

        self.generation += 1
        return decision

    def discard(self) -> None:
        """Drop the pending draft. Nothing is persisted or audited."""
        if self.current_draft is not None:
            logger.info("draft_discarded", draft_type=self.current_draft.type)
        self.current_draft = None
        self.generation += 1

    async def approve(
        self,
        document_service: Any,
        project_id: str,
        user_id: str,
        expected_type: Optional[str] = None
    ) -> Optional[Any]:
        """Commit the pending draft as a persisted document.

        A validation failure propagates and leaves the draft intact. An
        approval with no pending draft, or for a different draft type
        than expected, is ignored.

        Returns:
            The persisted document (or work entries), or None if ignored.
        """
        try:
            draft = self._approvable(expected_type)
        except InconsistentStateError as e:
            logger.info("draft_approval_ignored", code=e.code, reason=e.message)
            return None

        generation = self.generation
        result = await document_service.commit_draft(project_id, user_id, draft)

        if self.generation == generation:
            self.current_draft = None
            self.generation += 1
        logger.info("draft_approved", draft_type=draft.type, project_id=project_id)
        return result

    def _approvable(self, expected_type: Optional[str]) -> Union[DocumentDraft, WorkEntryDraft]:
        if self.current_draft is None:
            raise InconsistentStateError(
                message="No pending draft to approve",
                code=ErrorCode.NO_PENDING_DRAFT
            )
        if expected_type is not None and self.current_draft.type != expected_type:
            raise InconsistentStateError(
                message=f"Pending draft is a {self.current_draft.type}, not a {expected_type}",
                code=ErrorCode.DRAFT_TYPE_MISMATCH,
                details={"expected": expected_type, "actual": self.current_draft.type}
            )
        return self.current_draft

    async def process_message(
        self,
        ai_service: Any,
        message: str,
        catalog: Any,
        project_context: str,
        history: Any = (),
        generations: Optional[ConversationGenerations] = None
    ) -> Optional[DraftDecision]:
        """Run one chat turn through the AI collaborator.

        AI failures are absorbed into an informational fallback message.
        With ``generations`` the turn token comes from the shared counter,
        so a turn, discard or approval handled by another request while
        the AI call is in flight makes this response stale.
        """
        if generations is not None:
            token = self.generation = await generations.bump()
        else:
            token = self.begin_turn()
        try:
            proposal = await ai_service.generate_document_proposal(
                message,
                catalog,
                project_context,
                history,
                self.current_draft
            )
        except ExternalCollaboratorError as e:
            logger.warning("ai_collaborator_failed", code=e.code, error=e.message)
            proposal = AIProposal.informational(FALLBACK_MESSAGE)

        if generations is None:
            return self.apply_proposal(proposal, token)

        self.generation = await generations.current()
        decision = self.apply_proposal(proposal, token)
        if decision is not None:
            self.generation = await generations.bump()
        return decision

    def to_state(self) -> Dict[str, Any]:
        """Client-held session state (the draft is never persisted server-side)."""
        draft = None
        if self.current_draft is not None:
            draft = self.current_draft.model_dump(by_alias=True, exclude_none=True, mode="json")
        return {
            "draft": draft,
            "generation": self.generation,
            "keyCounter": self._key_counter,
        }

    @classmethod
    def from_state(cls, state: Optional[Dict[str, Any]]) -> "DraftSession":
        """Rebuild a session from ``to_state`` output (None starts empty)."""
        state = state or {}
        draft = state.get("draft")
        return cls(
            current_draft=_draft_adapter.validate_python(draft) if draft else None,
            generation=int(state.get("generation") or 0),
            key_counter=int(state.get("keyCounter") or 0),
        )


def decision_to_dict(decision: Optional[DraftDecision]) -> Dict[str, Any]:
    """Wire format of a decision for the client."""
    if decision is None:
        return {"decision": "dropped"}
    if isinstance(decision, NewDocument):
        kind = "new_document"
    elif isinstance(decision, ModifyDraft):
        kind = "modify_draft"
    else:
        kind = "informational"
    payload: Dict[str, Any] = {"decision": kind, "message": decision.message}
    if isinstance(decision, Informational) and decision.proposal is not None:
        payload["followUpQuestion"] = decision.proposal.follow_up_question
        payload["intent"] = decision.proposal.intent.value
    return payload
