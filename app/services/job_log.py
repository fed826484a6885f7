from __future__ import annotations

import logging
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.db import SessionLocal
from app.models import JobLog
from app.utils.jsonx import to_json

logger = logging.getLogger(__name__)

_LEVELS = {"INFO": logging.INFO, "SUCCESS": logging.INFO, "ERROR": logging.ERROR}


class JobLogger:
    """Append-only job log: mirrored to `logging`, persisted as `JobLog` rows.

    Each row is written through its own short-lived session so a failing write
    never touches the caller's transaction. Failures are reported and dropped.
    """

    def __init__(self, session_factory: Callable[[], Session] | None = SessionLocal) -> None:
        self.session_factory = session_factory

    def log(self, job_type: str, status: str, details: Any) -> None:
        status = status if status in _LEVELS else "INFO"
        logger.log(_LEVELS[status], "[%s] %s: %s", job_type, status, details)
        if self.session_factory is None:
            return
        payload = details if isinstance(details, dict) else {"message": str(details)}
        try:
            with self.session_factory() as db:
                db.add(JobLog(job_type=job_type[:64], status=status, details_json=to_json(payload)))
                db.commit()
        except Exception:
            logger.exception("Failed to write job log entry for %s", job_type)

    def info(self, job_type: str, details: Any) -> None:
        self.log(job_type, "INFO", details)

    def success(self, job_type: str, details: Any) -> None:
        self.log(job_type, "SUCCESS", details)

    def error(self, job_type: str, details: Any) -> None:
        self.log(job_type, "ERROR", details)


def recent_job_logs(db: Session, limit: int = 50) -> list[JobLog]:
    rows = db.execute(
        select(JobLog).order_by(JobLog.created_at.desc(), JobLog.id.desc()).limit(max(1, limit))
    ).scalars()
    return list(rows)
