"""Unit tests for the audit sink."""

import pytest
from unittest.mock import AsyncMock, MagicMock

from services.audit_service import AuditService


class TestAuditService:
    """Tests for AuditService."""

    @pytest.mark.asyncio
    async def test_record(self):
        firestore = MagicMock()
        firestore.record_audit = AsyncMock(return_value="audit-1")
        audit = AuditService(firestore_service=firestore)

        await audit.record("proj-1", "user-1", "estimate_created", "estimate", "est-1", {"total": 100})

        data = firestore.record_audit.await_args.args[0]
        assert data == {
            "projectId": "proj-1",
            "userId": "user-1",
            "action": "estimate_created",
            "entityType": "estimate",
            "entityId": "est-1",
            "details": {"total": 100},
        }

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self):
        """A failed audit write never fails the caller."""
        firestore = MagicMock()
        firestore.record_audit = AsyncMock(side_effect=RuntimeError("unavailable"))
        audit = AuditService(firestore_service=firestore)

        await audit.record("proj-1", "user-1", "invoice_paid", "invoice", "inv-1")

        firestore.record_audit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_list_for_project(self):
        firestore = MagicMock()
        firestore.list_audit_logs = AsyncMock(return_value=[{"id": "a1"}])
        audit = AuditService(firestore_service=firestore)

        assert await audit.list_for_project("proj-1", 10) == [{"id": "a1"}]
        firestore.list_audit_logs.assert_awaited_once_with("proj-1", 10)
