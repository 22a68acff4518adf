"""Pydantic schemas for settlement runs and background jobs."""
from datetime import datetime
from typing import Optional, List, Dict, Any

from pydantic import BaseModel

from settlement.schemas.base import BaseResponseSchema


class RunSummaryResponse(BaseResponseSchema):
    processed: int
    failed: int
    skipped: int
    retried: int
    reconciled: int
    vendors: int
    errors: List[Dict[str, Any]]
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None


class ReconcileResponse(BaseModel):
    reconciled: int


class JobStatusResponse(BaseModel):
    id: str
    name: str
    next_run_time: Optional[str] = None
    trigger: str
