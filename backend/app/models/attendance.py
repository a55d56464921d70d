"""
Modèle SQLAlchemy pour les présences journalières.

Clé naturelle : (student_id, date) : au plus un enregistrement par élève et par jour.
Le premier enregistrement d'un élève/jour est créé, les suivants le mettent à jour
sur place (upsert, jamais de doublon). L'id technique n'est pas la clé de conflit.
"""

import uuid
from sqlalchemy import Column, Date, DateTime, ForeignKey, String, Text, UniqueConstraint, Uuid, func

from app.database import Base


class AttendanceRecord(Base):
    """Présence d'un élève pour un jour calendaire (sans composante horaire)."""
    __tablename__ = "attendance"
    __table_args__ = (
        UniqueConstraint("student_id", "date", name="uq_attendance_student_date"),
    )

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="SET NULL"), nullable=True)
    student_id = Column(Uuid, ForeignKey("students.id", ondelete="CASCADE"), nullable=False)

    date = Column(Date, nullable=False)
    status = Column(String(20), nullable=False)     # present, absent, late, excused
    notes = Column(Text, nullable=True)
    recorded_by = Column(Uuid, ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
