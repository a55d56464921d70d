"""
Modèle SQLAlchemy pour les utilisateurs.
L'identité elle-même vit chez le fournisseur d'authentification ; cette table
sert de deuxième source pour l'org_id quand les métadonnées du jeton n'en ont pas.
"""

import uuid
from sqlalchemy import Column, DateTime, ForeignKey, String, Uuid, func

from app.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)  # = sub du jeton
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    org_id = Column(Uuid, ForeignKey("orgs.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
