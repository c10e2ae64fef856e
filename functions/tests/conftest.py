"""Pytest configuration and shared fixtures for JobLedger tests."""

import os
import sys
import pytest
from unittest.mock import AsyncMock, MagicMock, patch


# ============================================================================
# Ensure local imports work (models/, services/, config/, validators/)
# ============================================================================
#
# The codebase uses absolute imports like `from models...` / `from services...`,
# so `functions/` must be importable as the top-level module root.
PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)


# ============================================================================
# Firebase Mocks
# ============================================================================

@pytest.fixture
def mock_firestore_client():
    """Mock Firestore client."""
    client = MagicMock()

    # Mock collection and document methods
    collection_mock = MagicMock()
    document_mock = MagicMock()

    # Set up chain: client.collection().document()
    client.collection.return_value = collection_mock
    collection_mock.document.return_value = document_mock
    document_mock.id = "test-document-id"

    # Mock async methods
    document_mock.get = AsyncMock(return_value=MagicMock(
        exists=True,
        id="test-document-id",
        to_dict=lambda: {"status": "draft"}
    ))
    document_mock.set = AsyncMock()
    document_mock.update = AsyncMock()
    document_mock.delete = AsyncMock()

    # Mock subcollection
    subcollection_mock = MagicMock()
    document_mock.collection.return_value = subcollection_mock
    subcollection_mock.document.return_value = document_mock

    # Batches
    batch_mock = MagicMock()
    batch_mock.commit = AsyncMock()
    client.batch.return_value = batch_mock

    return client


@pytest.fixture
def mock_firestore_service(mock_firestore_client):
    """Mock FirestoreService with mocked client."""
    from services.firestore_service import FirestoreService

    service = FirestoreService(db=mock_firestore_client)
    return service


@pytest.fixture
def mock_document_firestore():
    """Fully mocked persistence collaborator for DocumentService tests."""
    service = MagicMock()
    service.get_user_profile = AsyncMock(return_value={"defaultTaxRate": 8.5, "paymentTerms": "Net 30"})
    service.get_project = AsyncMock(return_value={"id": "proj-1", "name": "Smith Kitchen", "userId": "user-1"})
    service.get_document = AsyncMock(return_value=None)
    service.get_line_items = AsyncMock(return_value=[])
    service.list_documents = AsyncMock(return_value=[])
    service.next_document_number = AsyncMock(return_value=1)
    service.create_document = AsyncMock(return_value="doc-new")
    service.replace_line_items = AsyncMock()
    service.update_document = AsyncMock()
    service.apply_change_order = AsyncMock()
    service.delete_document = AsyncMock()
    service.list_versions = AsyncMock(return_value=[])
    service.create_work_entries = AsyncMock(return_value=["we-1"])
    service.get_work_entry = AsyncMock(return_value=None)
    service.update_work_entry = AsyncMock()
    service.list_work_entries = AsyncMock(return_value=[])
    service.record_audit = AsyncMock(return_value="audit-1")
    service.list_audit_logs = AsyncMock(return_value=[])
    service.list_catalog_items = AsyncMock(return_value=[])
    service.save_catalog_items = AsyncMock(return_value=[])
    service.replace_catalog_items = AsyncMock(return_value=[])
    service.list_messages = AsyncMock(return_value=[])
    service.add_message = AsyncMock()
    service.get_draft_generation = AsyncMock(return_value=0)
    service.bump_draft_generation = AsyncMock(return_value=1)
    return service


@pytest.fixture
def mock_audit_service():
    """Mock AuditService."""
    audit = MagicMock()
    audit.record = AsyncMock()
    audit.list_for_project = AsyncMock(return_value=[])
    return audit


@pytest.fixture
def document_service(mock_document_firestore, mock_audit_service):
    """DocumentService over mocked collaborators."""
    from services.document_service import DocumentService

    return DocumentService(
        firestore_service=mock_document_firestore,
        audit_service=mock_audit_service
    )


# ============================================================================
# LLM Mocks
# ============================================================================

@pytest.fixture
def mock_llm_response():
    """Standard mock LLM response."""
    return {
        "content": "Mock LLM response",
        "tokens_used": 100
    }


@pytest.fixture
def mock_chat_openai():
    """Mock ChatOpenAI client."""
    mock = AsyncMock()
    mock.ainvoke.return_value = MagicMock(
        content="Mock response content",
        response_metadata={"token_usage": {"total_tokens": 100}}
    )
    return mock


@pytest.fixture
def mock_llm_service(mock_chat_openai):
    """Mock LLMService."""
    from services.llm_service import LLMService

    with patch('services.llm_service.ChatOpenAI', return_value=mock_chat_openai):
        service = LLMService(api_key="test-api-key", retry_wait_seconds=0)
        service._client = mock_chat_openai
        return service


# ============================================================================
# Environment Setup
# ============================================================================

@pytest.fixture(autouse=True)
def mock_settings():
    """Pin settings for all tests (patched on the shared instance)."""
    from config.settings import settings

    with patch.multiple(
        settings,
        _openai_api_key="test-api-key",
        llm_model="gpt-4o",
        llm_temperature=0.1,
        llm_max_retries=3,
        use_firebase_emulators=True,
        default_tax_rate=0.0,
        default_payment_terms_days=30,
        max_hierarchy_depth=2,
        cost_tolerance=0.01,
        conversation_history_limit=50,
        audit_log_limit=100,
        log_level="INFO",
    ):
        yield settings
