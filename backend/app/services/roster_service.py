"""
Service d'amorçage de l'écran de présences.
Endpoint : GET /api/v1/attendance/roster

Agrège en une seule réponse les classes visibles par l'appelant et leurs élèves :
- enseignant          : ses classes (class_teachers)
- directeur / admin   : toutes les classes de l'organisation
"""

import logging
import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models.school_class import ClassTeacher, SchoolClass
from app.models.student import Student
from app.schemas.attendance import RosterClass, RosterResponse, RosterStudent

logger = logging.getLogger(__name__)


def get_roster(
    db: Session,
    org_id: uuid.UUID,
    user_id: Optional[uuid.UUID],
    active_role: str,
) -> RosterResponse:
    query = select(SchoolClass).where(SchoolClass.org_id == org_id)
    if active_role == "teacher":
        query = query.join(ClassTeacher, ClassTeacher.class_id == SchoolClass.id).where(
            ClassTeacher.teacher_id == user_id
        )
    classes = db.execute(query.order_by(SchoolClass.name)).scalars().all()

    class_ids = [c.id for c in classes]
    students = []
    if class_ids:
        students = db.execute(
            select(Student)
            .where(Student.org_id == org_id, Student.class_id.in_(class_ids))
            .order_by(Student.first_name, Student.last_name)
        ).scalars().all()

    logger.info(
        "Roster généré, org %s, rôle %s : %d classes, %d élèves",
        org_id, active_role, len(classes), len(students),
    )

    return RosterResponse(
        classes=[RosterClass.model_validate(c) for c in classes],
        students=[RosterStudent.model_validate(s) for s in students],
    )
