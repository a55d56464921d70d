"""
Router pour les présences journalières.
Chaque route passe par le garde (organisation obligatoire) puis filtre par l'org_id résolu.

GET    /api/v1/attendance?classId&studentId&date
POST   /api/v1/attendance            upsert unitaire
POST   /api/v1/attendance/batch      upsert en lot
PUT    /api/v1/attendance            mise à jour status/notes
DELETE /api/v1/attendance?id=
GET    /api/v1/attendance/roster     classes + élèves de l'appelant
"""

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.auth_errors import ForbiddenError
from app.database import get_db
from app.guard import AuthContext, require_auth
from app.schemas.attendance import (
    AttendanceBatchRequest,
    AttendanceBatchResponse,
    AttendanceCreate,
    AttendanceListResponse,
    AttendanceSavedResponse,
    AttendanceUpdate,
    MessageResponse,
    RosterResponse,
)
from app.services import attendance_service, roster_service
from app.services.attendance_service import AttendanceServiceError, StudentScopeError

router = APIRouter(prefix="/api/v1/attendance", tags=["Présences"])

READ_ROLES = ("principal", "admin", "teacher", "guardian")
WRITE_ROLES = ("principal", "admin", "teacher", "guardian")
DELETE_ROLES = ("principal", "admin", "teacher")
ROSTER_ROLES = ("principal", "admin", "teacher")


@router.get("", response_model=AttendanceListResponse, summary="Lister les présences")
def list_attendance(
    class_id: Optional[uuid.UUID] = Query(None, alias="classId"),
    student_id: Optional[uuid.UUID] = Query(None, alias="studentId"),
    day: Optional[date] = Query(None, alias="date"),
    ctx: AuthContext = Depends(require_auth(*READ_ROLES)),
    db: Session = Depends(get_db),
):
    """Présences de l'organisation de l'appelant, filtrées par classe, élève et/ou jour."""
    try:
        records = attendance_service.fetch_attendance_by_filters(
            db, ctx.org_uuid, class_id=class_id, student_id=student_id, day=day
        )
    except AttendanceServiceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"attendance": records, "total": len(records)}


@router.get("/roster", response_model=RosterResponse, summary="Classes et élèves de l'appelant")
def get_roster(
    ctx: AuthContext = Depends(require_auth(*ROSTER_ROLES)),
    db: Session = Depends(get_db),
):
    return roster_service.get_roster(db, ctx.org_uuid, ctx.user_uuid, ctx.active_role)


@router.post("", response_model=AttendanceSavedResponse, status_code=201,
             summary="Enregistrer la présence d'un élève")
def create_attendance(
    data: AttendanceCreate,
    ctx: AuthContext = Depends(require_auth(*WRITE_ROLES)),
    db: Session = Depends(get_db),
):
    """
    Upsert sur (student_id, date) : crée la présence ou met à jour celle du jour.
    - org_id du corps, s'il est fourni, doit être celui de l'appelant (sinon 403)
    - recorded_by est toujours l'appelant, la valeur du corps est ignorée
    """
    if data.org_id is not None and data.org_id != ctx.org_uuid:
        raise ForbiddenError("org_id du corps différent de l'organisation de l'utilisateur.")

    try:
        record = attendance_service.upsert_attendance(db, ctx.org_uuid, ctx.user_uuid, data)
    except StudentScopeError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except AttendanceServiceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {"attendance": record, "message": "Présence enregistrée."}


@router.post("/batch", response_model=AttendanceBatchResponse, status_code=201,
             summary="Enregistrer un lot de présences")
def create_attendance_batch(
    data: AttendanceBatchRequest,
    ctx: AuthContext = Depends(require_auth(*WRITE_ROLES)),
    db: Session = Depends(get_db),
):
    """
    Upsert en une seule instruction. La réponse ne liste que les lignes écrites :
    count < nombre envoyé signale des lignes refusées (présence d'une autre organisation).
    """
    try:
        records = attendance_service.upsert_attendance_batch(db, ctx.org_uuid, ctx.user_uuid, data.records)
    except StudentScopeError as e:
        raise HTTPException(status_code=403, detail=str(e))
    except AttendanceServiceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    return {
        "attendance": records,
        "message": f"{len(records)} présence(s) enregistrée(s).",
        "count": len(records),
    }


@router.put("", response_model=AttendanceSavedResponse, summary="Modifier une présence")
def update_attendance(
    data: AttendanceUpdate,
    ctx: AuthContext = Depends(require_auth(*WRITE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        record = attendance_service.update_attendance(db, ctx.org_uuid, ctx.user_uuid, data)
    except AttendanceServiceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if record is None:
        raise HTTPException(status_code=404, detail="Présence introuvable.")
    return {"attendance": record, "message": "Présence mise à jour."}


@router.delete("", response_model=MessageResponse, summary="Supprimer une présence")
def delete_attendance(
    attendance_id: uuid.UUID = Query(..., alias="id"),
    ctx: AuthContext = Depends(require_auth(*DELETE_ROLES)),
    db: Session = Depends(get_db),
):
    try:
        deleted = attendance_service.delete_attendance(db, ctx.org_uuid, attendance_id)
    except AttendanceServiceError as e:
        raise HTTPException(status_code=500, detail=str(e))
    if not deleted:
        raise HTTPException(status_code=404, detail="Présence introuvable.")
    return {"message": "Présence supprimée."}
