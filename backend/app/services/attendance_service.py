"""
Service des présences journalières.

Stratégie d'écriture : upsert sur la clé naturelle (student_id, date)
- Premier enregistrement d'un élève/jour → INSERT
- Enregistrements suivants → UPDATE sur place (jamais de doublon, jamais d'erreur de conflit)
- Le conflit n'écrase la ligne existante que si elle appartient à la même organisation :
  une ligne d'une autre organisation n'est jamais touchée et n'apparaît pas dans le retour
- Doublons intra-batch (même élève/jour deux fois) : le dernier gagne, dédupliqué en mémoire
  (PostgreSQL refuse qu'un même INSERT ... ON CONFLICT touche deux fois la même ligne)

Toutes les lectures et écritures sont filtrées par l'org_id résolu par le garde.
"""

import logging
import uuid
from datetime import date
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.models.attendance import AttendanceRecord
from app.models.school_class import SchoolClass
from app.models.student import Student
from app.schemas.attendance import AttendanceCreate, AttendanceUpdate, BatchAttendanceItem

logger = logging.getLogger(__name__)


class AttendanceServiceError(Exception):
    """Échec du stockage. Le message reprend l'erreur de la base."""


class StudentScopeError(Exception):
    """Élève ou classe hors de l'organisation de l'appelant."""


def _store_error(action: str, exc: SQLAlchemyError) -> AttendanceServiceError:
    detail = getattr(exc, "orig", None) or exc
    return AttendanceServiceError(f"{action} : {detail}")


def fetch_attendance_by_filters(
    db: Session,
    org_id: uuid.UUID,
    class_id: Optional[uuid.UUID] = None,
    student_id: Optional[uuid.UUID] = None,
    day: Optional[date] = None,
) -> List[AttendanceRecord]:
    """Présences de l'organisation, filtres optionnels, de la plus récente à la plus ancienne."""
    query = select(AttendanceRecord).where(AttendanceRecord.org_id == org_id)
    if class_id:
        query = query.where(AttendanceRecord.class_id == class_id)
    if student_id:
        query = query.where(AttendanceRecord.student_id == student_id)
    if day:
        query = query.where(AttendanceRecord.date == day)

    try:
        return list(db.execute(query.order_by(AttendanceRecord.date.desc())).scalars().all())
    except SQLAlchemyError as exc:
        logger.error("Lecture des présences impossible (org %s) : %s", org_id, exc)
        raise _store_error("Échec de la lecture des présences", exc) from exc


def _assert_in_org(
    db: Session,
    org_id: uuid.UUID,
    student_ids: Iterable[uuid.UUID],
    class_ids: Iterable[uuid.UUID] = (),
) -> None:
    """Vérifie que chaque élève (et chaque classe citée) appartient à l'organisation."""
    wanted_students = set(student_ids)
    wanted_classes = {c for c in class_ids if c is not None}

    try:
        found_students = set(db.execute(
            select(Student.id).where(Student.org_id == org_id, Student.id.in_(list(wanted_students)))
        ).scalars().all())
        found_classes = set()
        if wanted_classes:
            found_classes = set(db.execute(
                select(SchoolClass.id).where(SchoolClass.org_id == org_id, SchoolClass.id.in_(list(wanted_classes)))
            ).scalars().all())
    except SQLAlchemyError as exc:
        logger.error("Vérification des élèves impossible (org %s) : %s", org_id, exc)
        raise _store_error("Échec de la vérification des élèves", exc) from exc

    missing = wanted_students - found_students
    if missing:
        raise StudentScopeError(
            f"{len(missing)} élève(s) n'appartiennent pas à cette organisation."
        )

    if wanted_classes - found_classes:
        raise StudentScopeError("Classe hors de cette organisation.")


def _upsert(db: Session, rows: List[dict]) -> List[AttendanceRecord]:
    """Un seul INSERT ... ON CONFLICT (student_id, date) DO UPDATE ... RETURNING."""
    insert = sqlite_insert if db.get_bind().dialect.name == "sqlite" else pg_insert
    stmt = insert(AttendanceRecord).values(rows)
    stmt = stmt.on_conflict_do_update(
        index_elements=[AttendanceRecord.student_id, AttendanceRecord.date],
        set_={
            "class_id": stmt.excluded.class_id,
            "status": stmt.excluded.status,
            "notes": stmt.excluded.notes,
            "recorded_by": stmt.excluded.recorded_by,
            "updated_at": func.now(),
        },
        where=AttendanceRecord.org_id == stmt.excluded.org_id,
    )
    try:
        records = list(db.execute(
            stmt.returning(AttendanceRecord),
            execution_options={"populate_existing": True},
        ).scalars().all())
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Upsert des présences impossible (%d lignes) : %s", len(rows), exc)
        raise _store_error("Échec de l'enregistrement des présences", exc) from exc
    return records


def _row(org_id: uuid.UUID, user_id: Optional[uuid.UUID], item) -> dict:
    return {
        "id": uuid.uuid4(),
        "org_id": org_id,
        "class_id": item.class_id,
        "student_id": item.student_id,
        "date": item.date,
        "status": item.status,
        "notes": item.notes,
        "recorded_by": user_id,
    }


def upsert_attendance(
    db: Session,
    org_id: uuid.UUID,
    user_id: Optional[uuid.UUID],
    payload: AttendanceCreate,
) -> AttendanceRecord:
    """Crée ou met à jour la présence d'un élève pour un jour."""
    _assert_in_org(db, org_id, [payload.student_id], [payload.class_id])

    records = _upsert(db, [_row(org_id, user_id, payload)])
    if not records:
        # La ligne existante appartient à une autre organisation
        raise StudentScopeError("Présence existante hors de cette organisation.")

    logger.info("Présence enregistrée : élève %s, %s → %s", payload.student_id, payload.date, payload.status)
    return records[0]


def upsert_attendance_batch(
    db: Session,
    org_id: uuid.UUID,
    user_id: Optional[uuid.UUID],
    items: List[BatchAttendanceItem],
) -> List[AttendanceRecord]:
    """
    Enregistre un lot de présences en une seule instruction.
    Le retour ne contient que les lignes effectivement écrites.
    """
    latest: Dict[Tuple[uuid.UUID, date], BatchAttendanceItem] = {}
    for item in items:
        key = (item.student_id, item.date)
        if key in latest:
            logger.debug("Doublon intra-batch, dernier conservé : %s", key)
        latest[key] = item

    unique_items = list(latest.values())
    _assert_in_org(
        db,
        org_id,
        [item.student_id for item in unique_items],
        [item.class_id for item in unique_items],
    )

    records = _upsert(db, [_row(org_id, user_id, item) for item in unique_items])

    logger.info(
        "Batch présences org=%s : %d reçus, %d uniques, %d écrits",
        org_id, len(items), len(unique_items), len(records),
    )
    return records


def _find_record(db: Session, org_id: uuid.UUID, attendance_id: uuid.UUID) -> Optional[AttendanceRecord]:
    try:
        return db.execute(
            select(AttendanceRecord).where(
                AttendanceRecord.id == attendance_id,
                AttendanceRecord.org_id == org_id,
            )
        ).scalar()
    except SQLAlchemyError as exc:
        logger.error("Lecture de la présence %s impossible : %s", attendance_id, exc)
        raise _store_error("Échec de la lecture de la présence", exc) from exc


def update_attendance(
    db: Session,
    org_id: uuid.UUID,
    user_id: Optional[uuid.UUID],
    payload: AttendanceUpdate,
) -> Optional[AttendanceRecord]:
    """Met à jour status/notes d'une présence de l'organisation. None si introuvable."""
    record = _find_record(db, org_id, payload.id)
    if record is None:
        return None

    update_data = payload.model_dump(exclude_unset=True, exclude={"id"})
    for field, value in update_data.items():
        setattr(record, field, value)
    record.recorded_by = user_id

    try:
        db.commit()
        db.refresh(record)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Mise à jour de la présence %s impossible : %s", payload.id, exc)
        raise _store_error("Échec de la mise à jour de la présence", exc) from exc
    return record


def delete_attendance(db: Session, org_id: uuid.UUID, attendance_id: uuid.UUID) -> bool:
    """Supprime une présence de l'organisation. Retourne False si introuvable."""
    record = _find_record(db, org_id, attendance_id)
    if record is None:
        return False

    try:
        db.delete(record)
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Suppression de la présence %s impossible : %s", attendance_id, exc)
        raise _store_error("Échec de la suppression de la présence", exc) from exc
    return True
