"""Bounded audit trail of reconciliation activity."""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Callable, ContextManager, Deque, List, Optional, Union

logger = logging.getLogger(__name__)

MAX_ENTRIES = 200


@dataclass
class ActivityLogEntry:
    """One audited outcome."""

    message: str
    success: bool
    invoice_number: str = ""
    order_id: str = ""
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.strftime("%Y-%m-%d %H:%M:%S")
        return data


class ActivityLog:
    """
    Append-only ring buffer of activity entries.

    Holds at most `capacity` entries; the oldest is evicted first.
    """

    def __init__(self, capacity: int = MAX_ENTRIES):
        self.capacity = capacity
        self._entries: Deque[ActivityLogEntry] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    def record(
        self,
        message: str,
        success: bool,
        invoice_number: str = "",
        order_id: Union[int, str, None] = "",
        details: str = "",
    ) -> ActivityLogEntry:
        """Append an entry; details are joined to the message with ' - '."""
        entry = ActivityLogEntry(
            message=f"{message} - {details}" if details else message,
            success=success,
            invoice_number=invoice_number or "",
            order_id=str(order_id) if order_id else "",
        )
        if success:
            logger.info(f"{entry.message} [invoice={entry.invoice_number} order={entry.order_id}]")
        else:
            logger.warning(f"{entry.message} [invoice={entry.invoice_number} order={entry.order_id}]")

        self._append(entry)
        return entry

    def _append(self, entry: ActivityLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def entries(self) -> List[ActivityLogEntry]:
        """All retained entries, oldest first."""
        with self._lock:
            return list(self._entries)

    def recent(self, limit: int = 100) -> List[ActivityLogEntry]:
        """Newest entries first."""
        return list(reversed(self.entries()))[:limit]

    def __len__(self) -> int:
        return len(self._entries)


class DatabaseActivityLog(ActivityLog):
    """Activity log persisted to the xero_activity_log table, trimmed to capacity."""

    def __init__(
        self,
        capacity: int = MAX_ENTRIES,
        session_factory: Optional[Callable[[], ContextManager]] = None,
    ):
        super().__init__(capacity)
        if session_factory is None:
            from src.xero.database import get_session

            session_factory = get_session
        self.session_factory = session_factory

    def _append(self, entry: ActivityLogEntry) -> None:
        from src.xero.models import ActivityLogRecord

        with self.session_factory() as session:
            if session is None:
                super()._append(entry)
                return
            session.add(ActivityLogRecord(
                timestamp=entry.timestamp,
                invoice_number=entry.invoice_number,
                order_id=entry.order_id,
                success=entry.success,
                message=entry.message,
            ))
            session.flush()

            stale_ids = [
                row.id
                for row in session.query(ActivityLogRecord.id)
                .order_by(ActivityLogRecord.id.desc())
                .offset(self.capacity)
                .all()
            ]
            if stale_ids:
                session.query(ActivityLogRecord).filter(
                    ActivityLogRecord.id.in_(stale_ids)
                ).delete(synchronize_session=False)
            session.commit()

    def entries(self) -> List[ActivityLogEntry]:
        from src.xero.models import ActivityLogRecord

        with self.session_factory() as session:
            if session is None:
                return super().entries()
            rows = (
                session.query(ActivityLogRecord)
                .order_by(ActivityLogRecord.id.desc())
                .limit(self.capacity)
                .all()
            )
            return [
                ActivityLogEntry(
                    message=row.message,
                    success=row.success,
                    invoice_number=row.invoice_number,
                    order_id=row.order_id,
                    timestamp=row.timestamp,
                )
                for row in reversed(rows)
            ]

    def __len__(self) -> int:
        return len(self.entries())
