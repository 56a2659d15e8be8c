"""FastAPI routes for the student profile engine.

Endpoints:
- Ingest an analysis payload into a student's profile
- Read the active profile and its change history
- Teacher actions: resolve a weakness, approve an AI change
"""
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from app.core.logging import LogTimer, get_logger
from app.domain.profile import ChangeEvent, IngestResult, ReportKind, StudentProfile, Weakness
from app.infrastructure.repository import EntryNotFoundError, LockUnavailableError, ProfileRepository, RepositoryError
from app.infrastructure.storage import build_repository
from app.services.profile_engine import ProfileEngine
from app.services.teacher_actions import approve_change, resolve_weakness

logger = get_logger(__name__)
router = APIRouter()


# -----------------
# REQUEST MODELS
# -----------------

class IngestRequest(BaseModel):
    """Analysis payload produced for one report."""
    report_id: int = Field(alias="reportId")
    report_kind: str = Field(alias="reportKind")
    analysis_payload: Optional[Dict[str, Any]] = Field(default=None, alias="analysisPayload")

    class Config:
        populate_by_name = True


class ResolveRequest(BaseModel):
    """Teacher decision that a weakness is resolved."""
    report_id: Optional[int] = Field(default=None, alias="reportId")
    note: Optional[str] = None

    class Config:
        populate_by_name = True


# -----------------
# DEPENDENCIES
# -----------------

@lru_cache()
def get_repository() -> ProfileRepository:
    """Process-wide repository chosen by PROFILE_BACKEND."""
    return build_repository()


def get_engine(repository: ProfileRepository = Depends(get_repository)) -> ProfileEngine:
    return ProfileEngine(repository)


# -----------------
# PROFILE ENDPOINTS
# -----------------

@router.post("/students/{student_id}/profile/ingest", response_model=IngestResult)
def ingest_report(student_id: int, req: IngestRequest, engine: ProfileEngine = Depends(get_engine)):
    """Merge an analysis payload into the student's profile.

    Partial failures still return 200; inspect ``success`` and ``failed``.

    Example:
        POST /students/7/profile/ingest
        {"reportId": 42, "reportKind": "test", "analysisPayload": {...}}
    """
    try:
        ReportKind(req.report_kind)
    except ValueError:
        supported = ", ".join(kind.value for kind in ReportKind)
        raise HTTPException(
            status_code=400,
            detail=f"Unsupported report kind '{req.report_kind}'. Expected one of: {supported}",
        )

    with LogTimer(logger, f"ingest_report:{student_id}"):
        return engine.ingest(student_id, req.report_id, req.report_kind, req.analysis_payload)


@router.get("/students/{student_id}/profile", response_model=StudentProfile)
def get_student_profile(student_id: int, engine: ProfileEngine = Depends(get_engine)):
    """Return active weaknesses, strengths and patterns for a student."""
    try:
        return engine.get_profile(student_id)
    except RepositoryError as exc:
        logger.error(f"Failed to load profile of student {student_id}: {exc}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Failed to load profile: {str(exc)}")


@router.get("/students/{student_id}/profile/history", response_model=List[ChangeEvent])
def get_profile_history(student_id: int, engine: ProfileEngine = Depends(get_engine)):
    """Return the student's change events, oldest first."""
    try:
        return engine.get_history(student_id)
    except RepositoryError as exc:
        logger.error(f"Failed to load history of student {student_id}: {exc}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Failed to load history: {str(exc)}")


# -----------------
# TEACHER ACTIONS
# -----------------

@router.post("/students/{student_id}/weaknesses/{weakness_id}/resolve", response_model=Weakness)
def resolve_student_weakness(
    student_id: int,
    weakness_id: int,
    req: Optional[ResolveRequest] = None,
    repository: ProfileRepository = Depends(get_repository),
):
    """Mark a weakness as resolved on behalf of a teacher."""
    req = req or ResolveRequest()
    try:
        return resolve_weakness(repository, student_id, weakness_id, report_id=req.report_id, note=req.note)
    except EntryNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except LockUnavailableError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except RepositoryError as exc:
        logger.error(f"Failed to resolve weakness {weakness_id}: {exc}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Failed to resolve weakness: {str(exc)}")


@router.post("/profile/history/{event_id}/approve", response_model=ChangeEvent)
def approve_profile_change(event_id: int, repository: ProfileRepository = Depends(get_repository)):
    """Record teacher approval of an AI-generated change."""
    try:
        return approve_change(repository, event_id)
    except EntryNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except RepositoryError as exc:
        logger.error(f"Failed to approve change event {event_id}: {exc}", exc_info=True)
        raise HTTPException(status_code=502, detail=f"Failed to approve change: {str(exc)}")
