"""
Schémas Pydantic pour les présences journalières.
Endpoints : /api/v1/attendance, /api/v1/attendance/batch, /api/v1/attendance/roster
"""

import uuid
from datetime import date as date_type, datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from app.config import settings

VALID_STATUSES = {"present", "absent", "late", "excused"}
MAX_NOTES_LENGTH = 5000


def _check_status(v: str) -> str:
    if v not in VALID_STATUSES:
        raise ValueError(f"Statut invalide. Valeurs acceptées : {sorted(VALID_STATUSES)}")
    return v


def _check_notes(v: Optional[str]) -> Optional[str]:
    if v is not None and len(v) > MAX_NOTES_LENGTH:
        raise ValueError(f"Les notes ne peuvent pas dépasser {MAX_NOTES_LENGTH} caractères.")
    return v


class AttendanceCreate(BaseModel):
    """Upsert unitaire (POST /attendance)."""

    org_id: Optional[uuid.UUID] = None       # doit correspondre à l'organisation résolue
    class_id: Optional[uuid.UUID] = None
    student_id: uuid.UUID
    date: date_type
    status: str = "present"
    notes: Optional[str] = None
    recorded_by: Optional[uuid.UUID] = None  # ignoré : toujours l'appelant

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check_status(v)

    @field_validator("notes")
    @classmethod
    def notes_length(cls, v: Optional[str]) -> Optional[str]:
        return _check_notes(v)


class BatchAttendanceItem(BaseModel):
    """Une ligne du batch, l'organisation et l'auteur viennent du contexte."""

    student_id: uuid.UUID
    status: str
    date: date_type
    class_id: Optional[uuid.UUID] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: str) -> str:
        return _check_status(v)

    @field_validator("notes")
    @classmethod
    def notes_length(cls, v: Optional[str]) -> Optional[str]:
        return _check_notes(v)


class AttendanceBatchRequest(BaseModel):
    records: List[BatchAttendanceItem]

    @field_validator("records")
    @classmethod
    def batch_size(cls, v: List[BatchAttendanceItem]) -> List[BatchAttendanceItem]:
        if not v:
            raise ValueError("Le batch doit contenir au moins un enregistrement.")
        if len(v) > settings.ATTENDANCE_MAX_BATCH:
            raise ValueError(
                f"Batch trop grand : maximum {settings.ATTENDANCE_MAX_BATCH} enregistrements par requête."
            )
        return v


class AttendanceUpdate(BaseModel):
    """Mise à jour des champs modifiables (PUT /attendance)."""

    id: uuid.UUID
    status: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def valid_status(cls, v: Optional[str]) -> Optional[str]:
        return _check_status(v) if v is not None else v

    @field_validator("notes")
    @classmethod
    def notes_length(cls, v: Optional[str]) -> Optional[str]:
        return _check_notes(v)


class AttendanceResponse(BaseModel):
    id: uuid.UUID
    org_id: uuid.UUID
    class_id: Optional[uuid.UUID]
    student_id: uuid.UUID
    date: date_type
    status: str
    notes: Optional[str]
    recorded_by: Optional[uuid.UUID]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class AttendanceListResponse(BaseModel):
    attendance: List[AttendanceResponse]
    total: int


class AttendanceSavedResponse(BaseModel):
    attendance: AttendanceResponse
    message: str


class AttendanceBatchResponse(BaseModel):
    attendance: List[AttendanceResponse]
    message: str
    count: int


class MessageResponse(BaseModel):
    message: str


class RosterClass(BaseModel):
    id: uuid.UUID
    name: str
    code: Optional[str] = None

    model_config = {"from_attributes": True}


class RosterStudent(BaseModel):
    id: uuid.UUID
    class_id: Optional[uuid.UUID]
    first_name: str
    last_name: Optional[str] = None

    model_config = {"from_attributes": True}


class RosterResponse(BaseModel):
    """Classes et élèves visibles par l'appelant (amorçage de l'écran de présences)."""

    classes: List[RosterClass]
    students: List[RosterStudent]
