"""Audit sink for JobLedger.

Fire-and-forget: a failed audit write is logged and never fails the
operation that produced it.
"""

from typing import Any, Dict, List, Optional

import structlog

from services.firestore_service import FirestoreService

logger = structlog.get_logger()


class AuditService:
    """Records who did what to which entity."""

    def __init__(self, firestore_service: Optional[FirestoreService] = None):
        self.firestore = firestore_service or FirestoreService()

    async def record(
        self,
        project_id: str,
        user_id: str,
        action: str,
        entity_type: str,
        entity_id: str,
        details: Optional[Dict[str, Any]] = None
    ) -> None:
        """Write one audit record; failures are swallowed after logging."""
        data = {
            "projectId": project_id,
            "userId": user_id,
            "action": action,
            "entityType": entity_type,
            "entityId": entity_id,
        }
        if details:
            data["details"] = details

        try:
            await self.firestore.record_audit(data)
            logger.debug("audit_recorded", action=action, entity_id=entity_id)
        except Exception as e:
            logger.warning(
                "audit_record_failed",
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                error=str(e)
            )

    async def list_for_project(self, project_id: str, limit: int) -> List[Dict[str, Any]]:
        """Audit records of a project, newest first."""
        return await self.firestore.list_audit_logs(project_id, limit)
