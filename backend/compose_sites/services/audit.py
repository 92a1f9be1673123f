from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator

from sqlalchemy import desc
from sqlalchemy.orm import Session

from compose_sites.config import Settings
from compose_sites.database import AuditLog, Database
from compose_sites.schemas.audit import ActionStatus, AuditLogEntry, AuditLogResponse


logger = logging.getLogger(__name__)


def _to_entry(log: AuditLog) -> AuditLogEntry:
    return AuditLogEntry(
        id=log.id,
        timestamp=log.timestamp,
        action_type=log.action_type,
        site_id=log.site_id,
        target_name=log.target_name,
        status=log.status,
        output=log.output,
        error_message=log.error_message,
        metadata=log.get_metadata(),
        duration_ms=log.duration_ms,
    )


class AuditService:
    """Records what was done to each site, and whether it worked."""

    def __init__(self, settings: Settings, db: Database):
        self.settings = settings
        self.db = db

    def _get_session(self) -> Session:
        return self.db.get_session()

    def _truncate(self, text: str | None) -> str | None:
        limit = self.settings.audit_max_output_length
        if text and len(text) > limit:
            return text[:limit] + "... [truncated]"
        return text

    def log_action(
        self,
        action_type: str,
        target_name: str,
        site_id: int | None = None,
        status: str = ActionStatus.SUCCESS,
        output: str | None = None,
        error_message: str | None = None,
        metadata: dict[str, Any] | None = None,
        duration_ms: float | None = None,
    ) -> AuditLogEntry:
        """Log an action to the audit log with structured logging.

        Args:
            action_type: Type of action (e.g., site_install, compose-uninstall-failed)
            target_name: Domain of the site acted on
            site_id: Site identifier, kept after the site record is gone
            status: Action status (success, failure, pending)
            output: Command output or summary
            error_message: Error message if action failed
            metadata: Additional metadata dict
            duration_ms: Action duration in milliseconds
        """
        action_type = getattr(action_type, "value", action_type)
        status = getattr(status, "value", status)

        session = self._get_session()
        try:
            log_entry = AuditLog(
                timestamp=datetime.utcnow(),
                action_type=action_type,
                site_id=site_id,
                target_name=target_name,
                status=status,
                output=self._truncate(output),
                error_message=self._truncate(error_message),
                duration_ms=duration_ms,
            )
            if metadata:
                log_entry.set_metadata(metadata)

            session.add(log_entry)
            session.commit()
            session.refresh(log_entry)

            log_data = {
                "action": action_type,
                "site_id": site_id,
                "target": target_name,
                "status": status,
                "duration_ms": round(duration_ms, 2) if duration_ms else None,
            }
            if error_message:
                log_data["error"] = error_message[:200] if len(error_message) > 200 else error_message

            if status == ActionStatus.SUCCESS.value:
                logger.info(f"Action completed: {action_type} on site/{target_name}", extra=log_data)
            else:
                logger.warning(f"Action failed: {action_type} on site/{target_name}", extra=log_data)

            return _to_entry(log_entry)
        finally:
            session.close()

    def get_logs(self, site_id: int | None = None, limit: int = 50) -> AuditLogResponse:
        session = self._get_session()
        try:
            query = session.query(AuditLog)
            if site_id is not None:
                query = query.filter(AuditLog.site_id == site_id)
            total = query.count()
            logs = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit).all()
            return AuditLogResponse(logs=[_to_entry(log) for log in logs], total=total)
        finally:
            session.close()

    @contextmanager
    def track_action(
        self,
        action_type: str,
        target_name: str,
        site_id: int | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Generator[dict[str, Any], None, None]:
        """Context manager to track an action with timing and status."""
        context: dict[str, Any] = {"output": None}
        start_time = time.time()

        try:
            yield context
        except Exception as e:
            self.log_action(
                action_type=action_type,
                target_name=target_name,
                site_id=site_id,
                status=ActionStatus.FAILURE,
                output=context.get("output"),
                error_message=str(e),
                metadata=metadata,
                duration_ms=(time.time() - start_time) * 1000,
            )
            raise

        self.log_action(
            action_type=action_type,
            target_name=target_name,
            site_id=site_id,
            status=ActionStatus.SUCCESS,
            output=context.get("output"),
            metadata=metadata,
            duration_ms=(time.time() - start_time) * 1000,
        )
