"""
Schémas Pydantic pour l'identité, ses métadonnées et la portée d'organisation.

Les métadonnées du fournisseur d'identité arrivent comme un sac de clés libre ;
elles sont migrées vers UserMetadata (version 2, typée) à la lecture du jeton.
"""

import uuid
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Role = Literal["admin", "principal", "teacher", "guardian"]

VALID_ROLES = {"admin", "principal", "teacher", "guardian"}
ROLE_ALIASES = {"parent": "guardian"}  # ancien nom du rôle tuteur

METADATA_VERSION = 2


class UserMetadata(BaseModel):
    """Métadonnées normalisées d'une identité."""

    version: int = METADATA_VERSION
    roles: List[Role] = []
    active_role: Optional[Role] = Field(default=None, alias="activeRole")
    org_id: Optional[str] = None

    model_config = {"populate_by_name": True}


class Identity(BaseModel):
    """Identité authentifiée, en lecture seule pour ce système."""

    id: str
    email: Optional[str] = None  # opaque, tel que fourni par le fournisseur d'identité
    metadata: UserMetadata = UserMetadata()


class ResolvedScope(BaseModel):
    """Résultat du résolveur : organisation + rôles pour une requête."""

    org_id: Optional[str]
    org_source: Optional[str] = None   # metadata, user_record, default
    roles: List[Role]
    active_role: Role
    warnings: List[str] = []


class UserContextResponse(BaseModel):
    userId: str
    email: Optional[str]
    orgId: Optional[str]
    orgSource: Optional[str]
    roles: List[str]
    activeRole: str


class SwitchRoleRequest(BaseModel):
    role: str

    @field_validator("role")
    @classmethod
    def valid_role(cls, v: str) -> str:
        role = ROLE_ALIASES.get(v.strip().lower(), v.strip().lower())
        if role not in VALID_ROLES:
            raise ValueError(f"Rôle invalide. Valeurs acceptées : {sorted(VALID_ROLES)}")
        return role


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    activeRole: str
    roles: List[str]


class UserOrgIdResponse(BaseModel):
    org_id: Optional[uuid.UUID]
