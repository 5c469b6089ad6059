from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.meeting import MeetingLog
from app.schemas.meeting import MeetingLogType
from app.utils.clock import utc_now

logger = logging.getLogger("audit")


def _sanitize_meta(value: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not value:
        return None
    sanitized: Dict[str, Any] = {}
    for key, entry in value.items():
        if isinstance(entry, (str, int, float, bool)) or entry is None:
            sanitized[key] = entry
        elif isinstance(entry, (list, dict)):
            sanitized[key] = entry
        else:
            sanitized[key] = str(getattr(entry, "value", entry))
    return sanitized


class MeetingAuditLog:
    """
    Append-only writer for meeting log entries.

    Writes are best effort: each entry commits on its own after the primary
    change has been committed, and a failure is logged and rolled back
    without reaching the caller.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        meeting_id: str,
        log_type: MeetingLogType,
        *,
        by_uid: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
        at: Optional[datetime] = None,
    ) -> bool:
        entry_meta = _sanitize_meta(meta)
        logger.info(
            "meeting=%s event=%s by=%s meta=%s",
            meeting_id,
            MeetingLogType(log_type).value,
            by_uid or "-",
            entry_meta or {},
        )
        try:
            self.db.add(
                MeetingLog(
                    meeting_id=meeting_id,
                    type=MeetingLogType(log_type).value,
                    at=at or utc_now(),
                    by_uid=by_uid,
                    meta=entry_meta,
                )
            )
            self.db.commit()
            return True
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.warning(
                "Failed to persist %s log entry for meeting %s: %s",
                MeetingLogType(log_type).value,
                meeting_id,
                exc,
            )
            return False

    def entries(self, meeting_id: str) -> List[MeetingLog]:
        return (
            self.db.query(MeetingLog)
            .filter(MeetingLog.meeting_id == meeting_id)
            .order_by(MeetingLog.id.asc())
            .all()
        )

    def count(
        self,
        meeting_id: str,
        log_type: MeetingLogType,
        **meta_filters: Any,
    ) -> int:
        """Count entries of one type, optionally matching top-level meta values."""
        rows = (
            self.db.query(MeetingLog.meta)
            .filter(
                MeetingLog.meeting_id == meeting_id,
                MeetingLog.type == MeetingLogType(log_type).value,
            )
            .all()
        )
        if not meta_filters:
            return len(rows)
        total = 0
        for (meta,) in rows:
            meta = meta or {}
            if all(meta.get(key) == value for key, value in meta_filters.items()):
                total += 1
        return total
