from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from app.db import get_db
from app.discovery.orchestrator import DiscoveryOptions, run_discovery
from app.services.extraction import process_all_pending
from app.services.job_log import JobLogger, recent_job_logs
from app.utils.jsonx import from_json

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

JOB_TYPE = "ADMIN-DISCOVERY"


class DiscoveryRequest(BaseModel):
    sources: list[str] = Field(default_factory=lambda: ["all"])
    extract: bool = True
    maxHubs: int | None = Field(default=None, ge=1)
    delayMs: int | None = Field(default=None, ge=0)
    maxExtract: int = Field(default=50, ge=0)


@router.post("/discovery")
def admin_run_discovery(payload: DiscoveryRequest | None = None, db: Session = Depends(get_db)):
    payload = payload or DiscoveryRequest()
    options = DiscoveryOptions(sources=list(payload.sources), max_hubs=payload.maxHubs, delay_ms=payload.delayMs)
    try:
        discovery = run_discovery(options, db=db)
    except ValueError as exc:
        return JSONResponse(status_code=400, content={"success": False, "error": str(exc)})
    except Exception as exc:
        logger.exception("Admin discovery run failed")
        JobLogger().error(JOB_TYPE, {"message": "Discovery failed", "error": str(exc)})
        return JSONResponse(status_code=500, content={"success": False, "error": "discovery failed"})

    extraction = None
    if payload.extract and discovery.new_documents > 0 and payload.maxExtract > 0:
        try:
            extraction = process_all_pending(max_documents=payload.maxExtract, delay_ms=payload.delayMs, db=db)
        except Exception as exc:
            logger.exception("Admin extraction batch failed")
            JobLogger().error(JOB_TYPE, {"message": "Extraction failed", "error": str(exc)})
            return JSONResponse(
                status_code=500,
                content={"success": False, "error": "extraction failed", "discovery": discovery.as_dict()},
            )

    return {"success": True, "discovery": discovery.as_dict(), "extraction": extraction}


@router.get("/logs")
def admin_job_logs(limit: int = Query(default=50, ge=1, le=500), db: Session = Depends(get_db)):
    rows = recent_job_logs(db, limit=limit)
    return {
        "logs": [
            {
                "id": row.id,
                "jobType": row.job_type,
                "status": row.status,
                "details": from_json(row.details_json, {}),
                "createdAt": row.created_at.isoformat() if row.created_at else None,
            }
            for row in rows
        ]
    }
