"""
Modèle SQLAlchemy pour les organisations (frontière de locataire).
Chaque enregistrement métier porte exactement un org_id.
"""

import uuid
from sqlalchemy import Column, DateTime, String, Uuid, func

from app.database import Base


class Organization(Base):
    __tablename__ = "orgs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    slug = Column(String(100), unique=True, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
