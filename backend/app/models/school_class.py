"""
Modèles SQLAlchemy pour les classes et leurs enseignants.
Nommé school_class pour éviter le conflit avec le mot-clé Python 'class'.
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid, func

from app.database import Base


class SchoolClass(Base):
    __tablename__ = "classes"
    __table_args__ = (UniqueConstraint("org_id", "name", name="uq_classes_org_name"),)

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(100), nullable=False)
    code = Column(String(50), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class ClassTeacher(Base):
    """Association classe ↔ enseignants responsables."""
    __tablename__ = "class_teachers"

    class_id = Column(Uuid, ForeignKey("classes.id", ondelete="CASCADE"), primary_key=True)
    teacher_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    assigned_at = Column(DateTime, server_default=func.now())
